"""矢量输出的复杂度判断。

精简效果不佳的 SVG 可能比同等画质的栅格图还大。此时把原始 SVG 以高倍率栅格化后
转码为对比格式，若栅格结果更小，则把它的字节数记为提示信息，不改变保存的结果。
"""

from __future__ import annotations

import logging
from typing import Optional

from image_transcoder.core.config import PipelineConfig
from image_transcoder.core.exceptions import ImageTranscoderError
from image_transcoder.core.formats import INTERMEDIATE_FORMAT
from image_transcoder.processing.codecs import CodecSet
from image_transcoder.processing.executor_pool import ExecutorPool
from image_transcoder.processing.worker import TranscodeJob

LOGGER = logging.getLogger(__name__)


async def evaluate_complexity(
    pool: ExecutorPool,
    codecs: CodecSet,
    svg_text: str,
    optimized_size: int,
    quality: int,
    config: PipelineConfig,
) -> Optional[int]:
    """返回更小的栅格对比结果大小；无需标记或对比失败时返回 None。"""

    if optimized_size <= config.complexity_threshold_bytes:
        return None

    try:
        rendered = await pool.call(
            codecs.render_vector,
            svg_text,
            config.complexity_scale,
            config.max_render_dimension,
        )
        comparison = await pool.submit(
            TranscodeJob(
                source=rendered.data,
                source_format=INTERMEDIATE_FORMAT,
                target_format=config.comparison_format,
                quality=quality,
                lossless=False,
            )
        )
    except ImageTranscoderError as exc:
        LOGGER.warning("复杂度对比失败，跳过标记: %s", exc)
        return None

    raster_size = len(comparison.data)
    LOGGER.debug(
        "复杂度对比：SVG %d 字节，%s@%dx %d 字节",
        optimized_size,
        config.comparison_format.value,
        config.complexity_scale,
        raster_size,
    )
    if raster_size < optimized_size * config.complexity_ratio:
        return raster_size
    return None
