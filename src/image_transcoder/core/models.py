"""核心数据模型定义。"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from image_transcoder.core.formats import FormatKind, ImageFormat


class ItemStatus(str, Enum):
    """条目生命周期状态。"""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ItemStatus.COMPLETED, ItemStatus.ERROR)


@dataclass(slots=True)
class SourceImage:
    """扫描阶段得到的源图片信息。"""

    source_path: Path
    root: Path
    relative_path: Path
    image_format: ImageFormat


@dataclass(slots=True)
class ScaledArtifact:
    """矢量转栅格时某一倍率的导出结果。"""

    scale: int
    data: bytes
    width: int
    height: int

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(slots=True)
class ImageItem:
    """用户提交的单个图片条目。"""

    id: str
    name: str
    source_bytes: Optional[bytes]
    source_format: ImageFormat
    output_format: ImageFormat
    status: ItemStatus = ItemStatus.PENDING
    progress: int = 0
    original_size: int = 0
    result_size: Optional[int] = None
    result_artifact: Optional[bytes] = None
    result_mime_type: Optional[str] = None
    dimensions: Optional[tuple[int, int]] = None
    # 登记时探测到的源尺寸，重新处理时恢复。
    source_dimensions: Optional[tuple[int, int]] = None
    complexity_flag: Optional[int] = None
    scaled_artifacts: Optional[list[ScaledArtifact]] = None
    last_error: Optional[str] = None

    @property
    def source_kind(self) -> FormatKind:
        return self.source_format.kind

    @property
    def savings_ratio(self) -> Optional[float]:
        """压缩后相对原始大小节省的比例。"""

        if self.result_size is None or self.original_size <= 0:
            return None
        return 1.0 - self.result_size / self.original_size


# 离开终态或失败时需要清空的结果字段。
RESULT_FIELDS = (
    "result_size",
    "result_artifact",
    "result_mime_type",
    "complexity_flag",
    "scaled_artifacts",
    "last_error",
)


@dataclass(slots=True)
class BatchStats:
    """一次队列排空周期的统计信息。"""

    start_time: Optional[float] = None
    end_time: Optional[float] = None
    total_count: int = 0
    completed_count: int = 0
    failed_count: int = 0

    @property
    def is_open(self) -> bool:
        return self.start_time is not None and self.end_time is None

    @property
    def finished_count(self) -> int:
        return self.completed_count + self.failed_count

    @property
    def duration(self) -> Optional[float]:
        if self.start_time is None:
            return None
        end = self.end_time if self.end_time is not None else time.time()
        return end - self.start_time


@dataclass(slots=True)
class FileOutcome:
    """记录单个文件的处理结果（用于报告/日志）。"""

    source_path: Path
    status: str
    output_path: Optional[Path] = None
    message: Optional[str] = None
    original_size: Optional[int] = None
    result_size: Optional[int] = None
    complexity_flag: Optional[int] = None
    extra_outputs: list[Path] = field(default_factory=list)


@dataclass(slots=True)
class BatchResult:
    """批处理阶段性的产出。"""

    succeeded: list[FileOutcome]
    skipped: list[FileOutcome]
    failed: list[FileOutcome]
    batch: BatchStats = field(default_factory=BatchStats)

    def all_outcomes(self) -> list[FileOutcome]:
        """返回所有结果记录，方便生成报告。"""

        return [*self.succeeded, *self.skipped, *self.failed]
