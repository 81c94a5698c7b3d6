"""矢量转栅格时的多倍率导出。"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional, Sequence

from image_transcoder.core.config import CompressionSettings, PipelineConfig
from image_transcoder.core.formats import INTERMEDIATE_FORMAT, ImageFormat
from image_transcoder.core.models import ScaledArtifact
from image_transcoder.processing.codecs import CodecSet
from image_transcoder.processing.executor_pool import ExecutorPool
from image_transcoder.processing.worker import TranscodeJob

ScaleCallback = Optional[Callable[[ScaledArtifact], None]]


async def export_scales(
    pool: ExecutorPool,
    codecs: CodecSet,
    svg_text: str,
    target_format: ImageFormat,
    settings: CompressionSettings,
    config: PipelineConfig,
    scales: Sequence[int] = (1,),
    on_scale_done: ScaleCallback = None,
) -> list[ScaledArtifact]:
    """每个倍率独立栅格化并独立提交执行池，结果按倍率排序。

    任一倍率失败时取消其余倍率并向上传播异常，整个条目视为失败。
    """

    async def export_one(scale: int) -> ScaledArtifact:
        rendered = await pool.call(codecs.render_vector, svg_text, scale, config.max_render_dimension)
        result = await pool.submit(
            TranscodeJob(
                source=rendered.data,
                source_format=INTERMEDIATE_FORMAT,
                target_format=target_format,
                quality=settings.quality,
                lossless=settings.lossless,
                # 最大边长只约束 1x 主输出，2x/3x 只受渲染上限约束。
                max_dimension=settings.max_dimension if scale == 1 else None,
            )
        )
        artifact = ScaledArtifact(scale=scale, data=result.data, width=result.width, height=result.height)
        if on_scale_done is not None:
            on_scale_done(artifact)
        return artifact

    tasks = [asyncio.ensure_future(export_one(scale)) for scale in scales]
    try:
        artifacts = await asyncio.gather(*tasks)
    except BaseException:
        # 其余倍率不能再回写进度，否则可能落到下一次处理尝试上。
        for task in tasks:
            task.cancel()
        raise
    return sorted(artifacts, key=lambda artifact: artifact.scale)
