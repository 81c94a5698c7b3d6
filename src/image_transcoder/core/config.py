"""处理任务的配置模型。"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from image_transcoder.core.exceptions import InvalidConfigurationError
from image_transcoder.core.formats import KEEP_SOURCE, FormatKind, ImageFormat, OutputChoice

CONFLICT_STRATEGIES = ("overwrite", "skip", "rename")


@dataclass(slots=True)
class CompressionSettings:
    """用户压缩设置，每次条目开始处理时读取一次快照。"""

    quality: int = 80
    output_format: OutputChoice = KEEP_SOURCE
    lossless: bool = False
    max_dimension: Optional[int] = None
    export_2x: bool = False
    export_3x: bool = False
    strip_metadata: bool = True

    def __post_init__(self) -> None:
        if not 0 <= self.quality <= 100:
            raise InvalidConfigurationError(f"质量必须位于 0~100 之间: {self.quality}")
        if self.max_dimension is not None and self.max_dimension <= 0:
            raise InvalidConfigurationError(f"最大边长必须大于 0: {self.max_dimension}")
        if isinstance(self.output_format, ImageFormat):
            if not self.output_format.is_output:
                raise InvalidConfigurationError(f"{self.output_format.value} 不能作为输出格式")
        elif self.output_format != KEEP_SOURCE:
            raise InvalidConfigurationError(f"未知的输出格式: {self.output_format}")

    @property
    def export_scales(self) -> list[int]:
        """矢量转栅格时需要导出的倍率，1x 始终在首位。"""

        scales = [1]
        if self.export_2x:
            scales.append(2)
        if self.export_3x:
            scales.append(3)
        return scales


@dataclass(slots=True)
class PipelineConfig:
    """调度与执行池相关配置。"""

    max_workers: int = 4
    complexity_threshold_bytes: int = 5 * 1024
    complexity_ratio: float = 1.0
    complexity_scale: int = 3
    comparison_format: ImageFormat = ImageFormat.WEBP
    max_render_dimension: int = 8192

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise InvalidConfigurationError("并发数量至少为 1")
        if self.complexity_ratio <= 0:
            raise InvalidConfigurationError("复杂度比例必须大于 0")
        if self.max_render_dimension <= 0:
            raise InvalidConfigurationError("渲染尺寸上限必须大于 0")
        if self.comparison_format.kind is FormatKind.VECTOR or not self.comparison_format.is_output:
            raise InvalidConfigurationError("对比格式必须是栅格格式")


@dataclass(slots=True)
class OutputConfig:
    """输出目录与冲突策略配置。"""

    output_dir: Path
    conflict_strategy: str = "rename"  # overwrite | skip | rename
    name_suffix: str = "-optimized"


@dataclass(slots=True)
class JobConfig:
    """单次批处理任务的配置集合。"""

    sources: Sequence[Path]
    output: OutputConfig
    settings: CompressionSettings = field(default_factory=CompressionSettings)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    allow_recursive: bool = True
    include_patterns: Sequence[str] = field(default_factory=tuple)
    exclude_patterns: Sequence[str] = field(default_factory=tuple)
    report_filename: str = "report.csv"
