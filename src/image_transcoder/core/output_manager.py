"""输出命名、冲突处理与写入。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import count
from pathlib import Path
from typing import Optional

from image_transcoder.core.config import CONFLICT_STRATEGIES, OutputConfig
from image_transcoder.core.exceptions import ImageWriteError, InvalidConfigurationError
from image_transcoder.core.formats import ImageFormat

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DestinationDecision:
    """封装输出文件决策。"""

    destination: Optional[Path]
    action: str
    note: Optional[str] = None


class OutputManager:
    """负责输出目录、文件名推导、冲突策略与字节写入。"""

    def __init__(self, config: OutputConfig) -> None:
        if config.conflict_strategy not in CONFLICT_STRATEGIES:
            raise InvalidConfigurationError(f"未知的冲突策略: {config.conflict_strategy}")
        self.config = config
        self.output_dir = config.output_dir.resolve()
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self._reserved: set[Path] = set()

    def derive_filename(self, original_name: str, fmt: ImageFormat, scale: int = 1) -> str:
        """生成 ``<stem>-optimized[@2x]<ext>`` 形式的文件名。"""

        stem = Path(original_name).stem
        scale_suffix = f"@{scale}x" if scale > 1 else ""
        return f"{stem}{self.config.name_suffix}{scale_suffix}{fmt.extension}"

    def decide_destination(self, filename: str) -> DestinationDecision:
        """根据冲突策略确定输出路径；同一批次内的重名总是重命名。"""

        destination = self.output_dir / filename

        if destination in self._reserved:
            renamed = self._generate_renamed_path(destination)
            self._reserved.add(renamed)
            return DestinationDecision(
                destination=renamed,
                action="rename",
                note=f"批次内重名 {destination.name} -> 重命名为 {renamed.name}",
            )

        if not destination.exists():
            self._reserved.add(destination)
            return DestinationDecision(destination=destination, action="write")

        strategy = self.config.conflict_strategy
        existing_msg = f"目标已存在: {destination.name}"

        if strategy == "overwrite":
            self._reserved.add(destination)
            return DestinationDecision(destination=destination, action="overwrite", note=existing_msg)
        if strategy == "skip":
            return DestinationDecision(destination=destination, action="skip", note=existing_msg)

        renamed = self._generate_renamed_path(destination)
        self._reserved.add(renamed)
        return DestinationDecision(
            destination=renamed,
            action="rename",
            note=f"{existing_msg} -> 重命名为 {renamed.name}",
        )

    def write_bytes(self, data: bytes, destination: Path) -> None:
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(data)
        except OSError as exc:
            raise ImageWriteError(f"写入文件失败: {destination}") from exc
        LOGGER.debug("已写入 %s (%d 字节)", destination, len(data))

    def _generate_renamed_path(self, destination: Path) -> Path:
        """在 rename 策略下生成新的文件名。"""

        stem = destination.stem
        suffix = destination.suffix

        for idx in count(1):
            candidate = destination.with_name(f"{stem}_{idx}{suffix}")
            if not candidate.exists() and candidate not in self._reserved:
                return candidate

        # 理论上不会执行到此处
        return destination
