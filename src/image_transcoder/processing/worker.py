"""执行池中的工作单元：解码、可选缩放、编码。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from PIL import Image

from image_transcoder.core.exceptions import DecodeFailure, EncodeFailure
from image_transcoder.core.formats import ImageFormat
from image_transcoder.processing.codecs import decode_image, encode_image, resize_to_fit


@dataclass(slots=True)
class TranscodeJob:
    """一次自包含的转码请求。"""

    source: bytes
    source_format: ImageFormat
    target_format: ImageFormat
    quality: int
    lossless: bool = False
    max_dimension: Optional[int] = None
    keep_metadata: bool = False


@dataclass(slots=True)
class TranscodeResult:
    """转码产物，字节缓冲区归调用者所有。"""

    data: bytes
    mime_type: str
    width: int
    height: int


@dataclass(slots=True)
class JobOutcome:
    """工作进程返回的带标签结果。"""

    status: str
    result: Optional[TranscodeResult] = None
    message: Optional[str] = None


def run_job(job: TranscodeJob) -> JobOutcome:
    """在工作进程中执行完整的转码流程。"""

    image: Optional[Image.Image] = None
    resized: Optional[Image.Image] = None

    try:
        image = decode_image(job.source, job.source_format)
    except DecodeFailure as exc:
        return JobOutcome(status="error-decode", message=str(exc))

    try:
        resized = resize_to_fit(image, job.max_dimension)
        width, height = resized.size
        data = encode_image(resized, job.target_format, job.quality, job.lossless, job.keep_metadata)
    except EncodeFailure as exc:
        return JobOutcome(status="error-encode", message=str(exc))
    finally:
        _close_if_needed(image, resized)

    return JobOutcome(
        status="ok",
        result=TranscodeResult(
            data=data,
            mime_type=job.target_format.mime_type,
            width=width,
            height=height,
        ),
    )


def warm_up() -> bool:
    """预热工作进程：导入编解码模块并注册插件。"""

    Image.init()
    return True


def _close_if_needed(*images: Optional[Image.Image]) -> None:
    closed: set[int] = set()
    for img in images:
        if img is not None and id(img) not in closed:
            closed.add(id(img))
            img.close()
