"""源图片扫描：按扩展名识别格式并应用筛选规则。"""

from __future__ import annotations

import logging
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterator, Optional, Sequence

from image_transcoder.core.config import JobConfig
from image_transcoder.core.formats import format_from_path
from image_transcoder.core.models import SourceImage

LOGGER = logging.getLogger(__name__)

# 隐藏文件与编辑器临时文件。
IGNORED_PREFIXES = (".", "~$")


def _walk(root: Path, recursive: bool) -> Iterator[Path]:
    if root.is_file():
        yield root
        return
    if not root.is_dir():
        LOGGER.warning("源路径不存在: %s", root)
        return

    entries = root.rglob("*") if recursive else root.iterdir()
    yield from (entry for entry in entries if entry.is_file())


def _matches(name: str, patterns: Sequence[str]) -> bool:
    return any(fnmatch(name, pattern.lower()) for pattern in patterns)


def _accepts(name: str, config: JobConfig) -> bool:
    if name.startswith(IGNORED_PREFIXES):
        return False
    lowered = name.lower()
    if config.include_patterns and not _matches(lowered, config.include_patterns):
        return False
    return not _matches(lowered, config.exclude_patterns)


def _nested_output_dir(root: Path, output_dir: Path) -> Optional[Path]:
    """输出目录位于扫描根目录之下时返回它，扫描时需要跳过。"""

    if root in output_dir.parents:
        return output_dir
    return None


def collect_source_images(config: JobConfig) -> list[SourceImage]:
    """根据配置扫描源路径，返回可识别格式的图片列表（按路径排序）。"""

    output_dir = config.output.output_dir.resolve()
    found: dict[Path, SourceImage] = {}

    for source in config.sources:
        root = source.resolve()
        base = root if root.is_dir() else root.parent
        skipped_dir = _nested_output_dir(root, output_dir)

        for path in _walk(root, config.allow_recursive):
            if path in found or not _accepts(path.name, config):
                continue
            if skipped_dir is not None and skipped_dir in path.parents:
                continue

            image_format = format_from_path(path)
            if image_format is None:
                LOGGER.debug("忽略无法识别的文件: %s", path)
                continue

            found[path] = SourceImage(
                source_path=path,
                root=base,
                relative_path=path.relative_to(base),
                image_format=image_format,
            )

    return sorted(found.values(), key=lambda image: str(image.source_path).lower())
