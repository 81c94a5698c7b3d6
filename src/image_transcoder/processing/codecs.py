"""编解码能力集合。

对 Pillow、pillow-heif、cairosvg 与 scour 的薄封装，所有第三方异常都在这里转换为
项目内的 DecodeFailure / EncodeFailure / ConversionFailure。本模块中的函数均为模块级
函数，可以直接提交到进程池中执行。
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple
from xml.parsers.expat import ExpatError

import pillow_heif
from PIL import Image, ImageOps, UnidentifiedImageError
from scour import scour

from image_transcoder.core.exceptions import ConversionFailure, DecodeFailure, EncodeFailure
from image_transcoder.core.formats import FormatKind, ImageFormat
from image_transcoder.utils.dimensions import fit_within

LOGGER = logging.getLogger(__name__)

pillow_heif.register_heif_opener()

# 渲染矢量图时单边像素上限，用于限制内存占用。
MAX_RENDER_DIMENSION = 8192

RASTER_DECODABLE = frozenset(
    {ImageFormat.JPEG, ImageFormat.PNG, ImageFormat.GIF, ImageFormat.WEBP, ImageFormat.AVIF}
)

# 对应 PNG 的“优化力度”：无损模式使用更高的压缩等级。
PNG_COMPRESS_LEVEL = 6
PNG_COMPRESS_LEVEL_LOSSLESS = 9


@dataclass(slots=True)
class RenderedRaster:
    """栅格无损中间表示（PNG 字节）及其尺寸。"""

    data: bytes
    width: int
    height: int


def probe_dimensions(data: bytes, fmt: ImageFormat) -> Optional[Tuple[int, int]]:
    """只读取文件头获得尺寸；矢量与专有格式需要完整解码，返回 None。"""

    if fmt not in RASTER_DECODABLE:
        return None
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as exc:
        LOGGER.debug("无法读取图像尺寸: %s", exc)
        return None


def decode_image(data: bytes, fmt: ImageFormat) -> Image.Image:
    """解码栅格图片，执行 EXIF 旋转并归一化颜色模式。

    返回值为新的 Image 对象，调用者负责关闭。
    """

    if fmt not in RASTER_DECODABLE:
        raise DecodeFailure(f"执行器无法解码该格式: {fmt.value}")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
            return _normalize_mode(img).copy()
    except (UnidentifiedImageError, OSError) as exc:
        raise DecodeFailure(f"无法解码 {fmt.value} 图像: {exc}") from exc


def resize_to_fit(image: Image.Image, max_dimension: Optional[int]) -> Image.Image:
    """最长边超过 max_dimension 时等比缩小，使用 LANCZOS 重采样。"""

    target = fit_within(image.width, image.height, max_dimension)
    if target == image.size:
        return image
    return image.resize(target, Image.LANCZOS)


def encode_parameters(fmt: ImageFormat, quality: int, lossless: bool) -> dict[str, Any]:
    """将质量与无损开关映射为各格式的 Pillow 保存参数。"""

    if fmt is ImageFormat.JPEG:
        # JPEG 没有无损模式，以最高质量近似。
        return {"quality": 100 if lossless else quality, "optimize": True}
    if fmt is ImageFormat.PNG:
        # PNG 本身无损，开关只决定优化力度。
        if lossless:
            return {"optimize": True, "compress_level": PNG_COMPRESS_LEVEL_LOSSLESS}
        return {"compress_level": PNG_COMPRESS_LEVEL}
    if fmt is ImageFormat.WEBP:
        if lossless:
            return {"lossless": True, "quality": 100, "method": 6}
        return {"quality": quality, "method": 4}
    if fmt is ImageFormat.AVIF:
        if lossless:
            return {"quality": 100, "subsampling": "4:4:4", "speed": 4}
        return {"quality": quality, "speed": 6}
    raise EncodeFailure(f"不支持的输出格式: {fmt.value}")


def encode_image(
    image: Image.Image,
    fmt: ImageFormat,
    quality: int,
    lossless: bool,
    keep_metadata: bool = False,
) -> bytes:
    """将图像编码为目标格式字节。"""

    image_format = fmt.pillow_name
    if image_format is None:
        raise EncodeFailure(f"不支持的输出格式: {fmt.value}")

    save_params = encode_parameters(fmt, quality, lossless)
    image_to_save = _prepare_for_format(image, fmt)

    if keep_metadata:
        for key in ("exif", "icc_profile"):
            value = image.info.get(key)
            if value:
                save_params[key] = value
    else:
        for key in ("exif", "icc_profile"):
            image_to_save.info.pop(key, None)

    buffer = io.BytesIO()
    try:
        image_to_save.save(buffer, format=image_format, **save_params)
    except KeyError as exc:
        raise EncodeFailure(f"当前 Pillow 未启用 {image_format} 编码器") from exc
    except (OSError, ValueError) as exc:
        raise EncodeFailure(f"编码 {fmt.value} 失败: {exc}") from exc
    finally:
        if image_to_save is not image:
            image_to_save.close()
    return buffer.getvalue()


def load_svg_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise DecodeFailure("SVG 文件不是有效的 UTF-8 文本") from exc


def optimize_svg(text: str) -> str:
    """使用 scour 精简 SVG 文本。"""

    options = scour.sanitizeOptions()
    options.quiet = True
    options.strip_comments = True
    options.remove_metadata = True
    options.remove_descriptive_elements = True
    options.strip_xml_prolog = True
    options.enable_viewboxing = True
    options.shorten_ids = True
    options.strip_xml_space_attribute = True
    options.indent_type = "none"
    options.newlines = False

    try:
        return scour.scourString(text, options)
    except (ExpatError, ValueError) as exc:
        raise DecodeFailure(f"无法解析 SVG: {exc}") from exc


def render_svg(text: str, scale: int, max_dimension: int = MAX_RENDER_DIMENSION) -> RenderedRaster:
    """按倍率将 SVG 栅格化为 PNG，超出 max_dimension 时整体等比缩小。"""

    try:
        import cairosvg
    except (ImportError, OSError) as exc:
        raise ConversionFailure(f"cairosvg 不可用: {exc}") from exc

    source = text.encode("utf-8")
    try:
        natural_png = cairosvg.svg2png(bytestring=source)
        with Image.open(io.BytesIO(natural_png)) as natural:
            natural_width, natural_height = natural.size

        width, height = fit_within(natural_width * scale, natural_height * scale, max_dimension)
        if (width, height) == (natural_width, natural_height):
            png = natural_png
        else:
            png = cairosvg.svg2png(bytestring=source, output_width=width, output_height=height)
    except Exception as exc:  # noqa: BLE001
        raise ConversionFailure(f"SVG 栅格化失败 ({scale}x): {exc}") from exc

    return RenderedRaster(data=png, width=width, height=height)


def normalize_heic(data: bytes) -> RenderedRaster:
    """将 HEIC/HEIF 解码并转存为 PNG 中间表示，同时取得真实尺寸。"""

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
            normalized = _normalize_mode(img)
            buffer = io.BytesIO()
            normalized.save(buffer, format="PNG")
            width, height = normalized.size
    except (UnidentifiedImageError, OSError, ValueError, RuntimeError) as exc:
        raise ConversionFailure(f"HEIC 转换失败: {exc}") from exc

    return RenderedRaster(data=buffer.getvalue(), width=width, height=height)


@dataclass(slots=True, frozen=True)
class CodecSet:
    """处理策略使用的外部编解码能力，测试中可替换。"""

    optimize_vector: Callable[[str], str] = optimize_svg
    render_vector: Callable[[str, int, int], RenderedRaster] = render_svg
    normalize_proprietary: Callable[[bytes], RenderedRaster] = normalize_heic


def _normalize_mode(img: Image.Image) -> Image.Image:
    """统一为 RGB 或 RGBA。"""

    if img.mode in {"RGB", "RGBA"}:
        return img
    if img.mode in {"LA", "PA", "RGBa"} or "transparency" in img.info:
        return img.convert("RGBA")
    return img.convert("RGB")


def _prepare_for_format(image: Image.Image, fmt: ImageFormat) -> Image.Image:
    if fmt.kind is FormatKind.RASTER_LOSSY and image.mode != "RGB":
        # JPEG 不支持透明通道，与白色背景混合。
        if image.mode == "RGBA":
            background = Image.new("RGB", image.size, (255, 255, 255))
            background.paste(image, mask=image.split()[-1])
            background.info = dict(image.info)
            return background
        return image.convert("RGB")
    if image.mode not in {"RGB", "RGBA"}:
        return _normalize_mode(image)
    # 复制一份，避免剥离元数据时修改调用者的对象。
    return image.copy()
