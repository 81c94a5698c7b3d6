"""图片格式枚举与相关映射。"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional, Union


class FormatKind(str, Enum):
    """格式类别，决定处理路由。"""

    RASTER_LOSSY = "raster-lossy"
    RASTER_LOSSLESS = "raster-lossless"
    RASTER_MODERN = "raster-modern"
    VECTOR = "vector"
    PROPRIETARY = "proprietary-input-only"


class ImageFormat(str, Enum):
    """支持的具体图片格式。"""

    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    AVIF = "avif"
    GIF = "gif"
    SVG = "svg"
    HEIC = "heic"

    @property
    def kind(self) -> FormatKind:
        return _KINDS[self]

    @property
    def mime_type(self) -> str:
        return _MIME_TYPES[self]

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def is_output(self) -> bool:
        """专有格式与 GIF 只能作为输入。"""

        return self not in _KEEP_SOURCE_FALLBACKS

    @property
    def keep_source_target(self) -> "ImageFormat":
        """“保持源格式”时实际使用的输出格式。"""

        return _KEEP_SOURCE_FALLBACKS.get(self, self)

    @property
    def pillow_name(self) -> Optional[str]:
        """Pillow 中对应的格式名称，矢量/专有格式没有。"""

        return _PILLOW_NAMES.get(self)


_KINDS = {
    ImageFormat.JPEG: FormatKind.RASTER_LOSSY,
    ImageFormat.PNG: FormatKind.RASTER_LOSSLESS,
    ImageFormat.GIF: FormatKind.RASTER_LOSSLESS,
    ImageFormat.WEBP: FormatKind.RASTER_MODERN,
    ImageFormat.AVIF: FormatKind.RASTER_MODERN,
    ImageFormat.SVG: FormatKind.VECTOR,
    ImageFormat.HEIC: FormatKind.PROPRIETARY,
}

_MIME_TYPES = {
    ImageFormat.JPEG: "image/jpeg",
    ImageFormat.PNG: "image/png",
    ImageFormat.GIF: "image/gif",
    ImageFormat.WEBP: "image/webp",
    ImageFormat.AVIF: "image/avif",
    ImageFormat.SVG: "image/svg+xml",
    ImageFormat.HEIC: "image/heic",
}

_EXTENSIONS = {
    ImageFormat.JPEG: ".jpg",
    ImageFormat.PNG: ".png",
    ImageFormat.GIF: ".gif",
    ImageFormat.WEBP: ".webp",
    ImageFormat.AVIF: ".avif",
    ImageFormat.SVG: ".svg",
    ImageFormat.HEIC: ".heic",
}

_PILLOW_NAMES = {
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
    ImageFormat.WEBP: "WEBP",
    ImageFormat.AVIF: "AVIF",
}

SUFFIX_TO_FORMAT = {
    ".jpg": ImageFormat.JPEG,
    ".jpeg": ImageFormat.JPEG,
    ".png": ImageFormat.PNG,
    ".gif": ImageFormat.GIF,
    ".webp": ImageFormat.WEBP,
    ".avif": ImageFormat.AVIF,
    ".svg": ImageFormat.SVG,
    ".heic": ImageFormat.HEIC,
    ".heif": ImageFormat.HEIC,
}

# 设置中的“保持源格式”。
KEEP_SOURCE = "same"

# 专有格式在“保持源格式”下的回退输出格式。
FALLBACK_RASTER_FORMAT = ImageFormat.JPEG

# 栅格无损中间表示。
INTERMEDIATE_FORMAT = ImageFormat.PNG

# 只能作为输入的格式在“保持源格式”下的输出；GIF 没有编码器，转为同属无损的 PNG。
_KEEP_SOURCE_FALLBACKS = {
    ImageFormat.HEIC: FALLBACK_RASTER_FORMAT,
    ImageFormat.GIF: INTERMEDIATE_FORMAT,
}

OutputChoice = Union[ImageFormat, str]


def format_from_path(path: Path) -> Optional[ImageFormat]:
    """根据扩展名识别格式，无法识别时返回 None。"""

    return SUFFIX_TO_FORMAT.get(path.suffix.lower())


def parse_output_choice(value: str) -> OutputChoice:
    """解析用户输入的输出格式（含 same）。"""

    lowered = value.strip().lower()
    if lowered == KEEP_SOURCE:
        return KEEP_SOURCE
    if lowered == "jpg":
        lowered = "jpeg"
    try:
        fmt = ImageFormat(lowered)
    except ValueError as exc:
        raise ValueError(f"未知的输出格式: {value}") from exc
    if not fmt.is_output:
        raise ValueError(f"{fmt.value} 只能作为输入格式")
    return fmt
