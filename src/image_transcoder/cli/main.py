"""命令行入口。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from image_transcoder.core.config import (
    CONFLICT_STRATEGIES,
    CompressionSettings,
    JobConfig,
    OutputConfig,
    PipelineConfig,
)
from image_transcoder.core.exceptions import InvalidConfigurationError
from image_transcoder.core.formats import OutputChoice, parse_output_choice
from image_transcoder.core.progress import ProgressUpdate
from image_transcoder.processing.pipeline import process_batch
from image_transcoder.utils.logging import setup_logging

app = typer.Typer(help="批量图片压缩与格式转换工具。")


def _parse_format(value: str) -> OutputChoice:
    try:
        return parse_output_choice(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("压缩图片", total=update.total)
        # 批次总数可能在处理过程中增长。
        progress.update(task_id, total=update.total, completed=update.completed)
        if update.message:
            progress.log(update.message)

    return callback


@app.command("run")
def run_cli(  # noqa: PLR0913
    source: List[Path] = typer.Argument(..., help="源图片文件或目录，可指定多个"),
    output: Path = typer.Option(..., "--output", "-o", help="输出目录"),
    output_format: str = typer.Option(
        "same", "--format", "-f", help="输出格式：same/jpeg/png/webp/avif/svg"
    ),
    quality: int = typer.Option(80, "--quality", "-q", min=0, max=100, help="压缩质量 0~100"),
    lossless: bool = typer.Option(False, "--lossless", help="无损模式（JPEG 以最高质量近似）"),
    max_dimension: Optional[int] = typer.Option(None, "--max-dimension", help="输出最长边上限"),
    export_2x: bool = typer.Option(False, "--export-2x", help="SVG 转栅格时额外导出 2x"),
    export_3x: bool = typer.Option(False, "--export-3x", help="SVG 转栅格时额外导出 3x"),
    keep_metadata: bool = typer.Option(False, "--keep-metadata", help="保留 EXIF 与 ICC 信息"),
    complexity_threshold: int = typer.Option(
        5 * 1024, "--complexity-threshold", help="SVG 超过该字节数时与栅格版本比较"
    ),
    max_workers: int = typer.Option(4, "--workers", "-w", help="并发进程数量"),
    allow_recursive: bool = typer.Option(True, "--recursive/--no-recursive", help="是否递归扫描目录"),
    conflict_strategy: str = typer.Option("rename", "--on-conflict", help="文件名冲突策略"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出调试日志"),
) -> None:
    """执行批量压缩。"""

    setup_logging(logging.DEBUG if verbose else logging.INFO)
    logging.getLogger(__name__).debug("CLI 参数解析完成")

    if conflict_strategy not in CONFLICT_STRATEGIES:
        raise typer.BadParameter(f"冲突策略必须为 {'/'.join(CONFLICT_STRATEGIES)}")

    sources = [p.expanduser().resolve() for p in source]
    output_dir = output.expanduser().resolve()

    try:
        settings = CompressionSettings(
            quality=quality,
            output_format=_parse_format(output_format),
            lossless=lossless,
            max_dimension=max_dimension,
            export_2x=export_2x,
            export_3x=export_3x,
            strip_metadata=not keep_metadata,
        )
        pipeline = PipelineConfig(max_workers=max_workers, complexity_threshold_bytes=complexity_threshold)
    except InvalidConfigurationError as exc:
        raise typer.BadParameter(str(exc)) from exc

    job = JobConfig(
        sources=sources,
        output=OutputConfig(output_dir=output_dir, conflict_strategy=conflict_strategy),
        settings=settings,
        pipeline=pipeline,
        allow_recursive=allow_recursive,
    )

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    with progress:
        result = process_batch(job, progress_callback=_build_progress_callback(progress))

    original_total = sum(o.original_size or 0 for o in result.succeeded)
    result_total = sum(o.result_size or 0 for o in result.succeeded)
    typer.echo(
        f"处理完成：成功 {len(result.succeeded)} 张，跳过 {len(result.skipped)} 张，失败 {len(result.failed)} 张。"
    )
    if original_total:
        typer.echo(f"体积：{original_total} -> {result_total} 字节（节省 {(1 - result_total / original_total) * 100:.1f}%）")
    if result.batch.duration is not None:
        typer.echo(f"耗时：{result.batch.duration:.2f} 秒")
    typer.echo(f"报告文件：{output_dir / job.report_filename}")


if __name__ == "__main__":
    app()
