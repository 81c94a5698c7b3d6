"""处理流水线：扫描、登记条目、调度转码、写出结果与报告。"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from image_transcoder.core.config import JobConfig
from image_transcoder.core.exceptions import ImageWriteError
from image_transcoder.core.models import BatchResult, FileOutcome, ImageItem, ItemStatus, SourceImage
from image_transcoder.core.output_manager import OutputManager
from image_transcoder.core.progress import ProgressUpdate
from image_transcoder.core.report import write_csv_report
from image_transcoder.core.scanner import collect_source_images
from image_transcoder.core.store import ItemStore
from image_transcoder.processing.codecs import probe_dimensions
from image_transcoder.processing.executor_pool import ExecutorPool
from image_transcoder.processing.routing import resolve_output_format
from image_transcoder.processing.scheduler import Scheduler

LOGGER = logging.getLogger(__name__)


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]


def process_batch(
    config: JobConfig,
    progress_callback: ProgressCallback = None,
    pool: Optional[ExecutorPool] = None,
) -> BatchResult:
    """批量处理入口：扫描、并发转码与输出。"""

    LOGGER.info("开始扫描输入路径")
    sources = collect_source_images(config)
    total = len(sources)
    LOGGER.info("发现 %d 个候选图片文件", total)

    if total == 0:
        _emit_progress(progress_callback, completed=0, total=0, message="没有需要处理的图片")
        return BatchResult(succeeded=[], skipped=[], failed=[])

    output_manager = OutputManager(config.output)
    result = asyncio.run(_run_batch(config, sources, output_manager, progress_callback, pool))
    _write_report(config, output_manager, result)
    _emit_progress(progress_callback, total, total, "处理完成")
    return result


async def _run_batch(
    config: JobConfig,
    sources: list[SourceImage],
    output_manager: OutputManager,
    progress_callback: ProgressCallback,
    pool: Optional[ExecutorPool],
) -> BatchResult:
    owns_pool = pool is None
    if pool is None:
        pool = ExecutorPool(max_workers=config.pipeline.max_workers)

    store = ItemStore()
    scheduler = Scheduler(
        store,
        pool,
        lambda: config.settings,
        config.pipeline,
        progress_callback=progress_callback,
    )

    succeeded: list[FileOutcome] = []
    skipped: list[FileOutcome] = []
    failed: list[FileOutcome] = []
    admitted: dict[str, SourceImage] = {}

    for source in sources:
        try:
            data = source.source_path.read_bytes()
        except OSError as exc:
            LOGGER.error("读取文件失败：%s", exc)
            failed.append(FileOutcome(source_path=source.source_path, status="error-read", message=str(exc)))
            continue

        item = store.create(
            source.source_path.name,
            data,
            source.image_format,
            resolve_output_format(source.image_format, config.settings.output_format),
            dimensions=probe_dimensions(data, source.image_format),
        )
        admitted[item.id] = source

    try:
        await pool.start()
        scheduler.admit(list(admitted))
        await scheduler.join()
    finally:
        if owns_pool:
            pool.shutdown()

    for item_id, source in admitted.items():
        item = store.require(item_id)
        if item.status is ItemStatus.COMPLETED:
            outcome = _write_outputs(output_manager, item, source)
        else:
            outcome = FileOutcome(
                source_path=source.source_path,
                status="error",
                message=item.last_error,
                original_size=item.original_size,
            )
        _record_outcome(outcome, succeeded, skipped, failed)

    return BatchResult(succeeded=succeeded, skipped=skipped, failed=failed, batch=store.batch)


def _write_outputs(output_manager: OutputManager, item: ImageItem, source: SourceImage) -> FileOutcome:
    decision = output_manager.decide_destination(
        output_manager.derive_filename(item.name, item.output_format)
    )
    base = FileOutcome(
        source_path=source.source_path,
        status="skip-existing",
        output_path=decision.destination,
        message=decision.note,
        original_size=item.original_size,
        result_size=item.result_size,
        complexity_flag=item.complexity_flag,
    )
    if decision.action == "skip":
        LOGGER.info("跳过输出（已存在）：%s", decision.destination)
        return base

    assert decision.destination is not None and item.result_artifact is not None
    try:
        output_manager.write_bytes(item.result_artifact, decision.destination)
        for artifact in item.scaled_artifacts or []:
            if artifact.scale == 1:
                continue
            extra = output_manager.decide_destination(
                output_manager.derive_filename(item.name, item.output_format, artifact.scale)
            )
            if extra.action == "skip" or extra.destination is None:
                continue
            output_manager.write_bytes(artifact.data, extra.destination)
            base.extra_outputs.append(extra.destination)
    except ImageWriteError as exc:
        LOGGER.error("写入输出失败：%s", exc)
        base.status = "error-write"
        base.message = str(exc)
        return base

    base.status = "processed"
    if decision.action == "overwrite":
        base.status = "processed-overwrite"
    elif decision.action == "rename":
        base.status = "processed-rename"
    base.message = _compose_note(decision.note, item)
    return base


def _compose_note(decision_note: Optional[str], item: ImageItem) -> Optional[str]:
    parts: list[str] = []
    if decision_note:
        parts.append(decision_note)
    if item.scaled_artifacts and len(item.scaled_artifacts) > 1:
        parts.append("scales: " + ", ".join(f"{a.scale}x" for a in item.scaled_artifacts))
    if item.complexity_flag is not None:
        parts.append(f"complexity: 栅格版本仅 {item.complexity_flag} 字节")
    if not parts:
        return None
    return "; ".join(parts)


def _record_outcome(
    outcome: FileOutcome,
    successes: list[FileOutcome],
    skipped: list[FileOutcome],
    failed: list[FileOutcome],
) -> None:
    if outcome.status.startswith("processed"):
        successes.append(outcome)
    elif outcome.status == "skip-existing":
        skipped.append(outcome)
    else:
        failed.append(outcome)


def _emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    message: Optional[str] = None,
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, message=message))


def _write_report(config: JobConfig, output_manager: OutputManager, result: BatchResult) -> None:
    try:
        write_csv_report(result.all_outcomes(), output_manager.output_dir, config.report_filename)
    except OSError as exc:
        LOGGER.error("写入报告失败：%s", exc)
