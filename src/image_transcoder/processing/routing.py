"""格式决策矩阵：确定输出格式并选择处理策略。"""

from __future__ import annotations

from enum import Enum

from image_transcoder.core.exceptions import UnsupportedRoute
from image_transcoder.core.formats import (
    KEEP_SOURCE,
    FormatKind,
    ImageFormat,
    OutputChoice,
)

RASTER_KINDS = frozenset({FormatKind.RASTER_LOSSY, FormatKind.RASTER_LOSSLESS, FormatKind.RASTER_MODERN})


class Strategy(str, Enum):
    """条目处理策略。"""

    VECTOR_OPTIMIZE = "vector-optimize"
    VECTOR_RASTERIZE = "vector-rasterize"
    NORMALIZE_PROPRIETARY = "normalize-proprietary"
    RASTER_TRANSCODE = "raster-transcode"


def resolve_output_format(source: ImageFormat, requested: OutputChoice) -> ImageFormat:
    """将“保持源格式”等设置解析为具体输出格式。"""

    if requested == KEEP_SOURCE:
        return source.keep_source_target

    target = ImageFormat(requested)
    if not target.is_output:
        raise UnsupportedRoute(f"{target.value} 不能作为输出格式")
    return target


def select_strategy(source: ImageFormat, target: ImageFormat) -> Strategy:
    """按优先级选择唯一的处理策略。"""

    source_kind = source.kind
    target_kind = target.kind

    if not target.is_output:
        raise UnsupportedRoute(f"{target.value} 不能作为输出格式")

    if source_kind is FormatKind.VECTOR:
        if target_kind is FormatKind.VECTOR:
            return Strategy.VECTOR_OPTIMIZE
        return Strategy.VECTOR_RASTERIZE

    if target_kind is FormatKind.VECTOR:
        raise UnsupportedRoute(f"无法将 {source.value} 转换为矢量格式 {target.value}")

    if source_kind is FormatKind.PROPRIETARY:
        return Strategy.NORMALIZE_PROPRIETARY

    if source_kind in RASTER_KINDS:
        return Strategy.RASTER_TRANSCODE

    raise UnsupportedRoute(f"没有对应的处理策略: {source.value} -> {target.value}")
