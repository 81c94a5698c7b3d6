"""端到端测试：扫描、转码、输出命名冲突与报告。"""

from __future__ import annotations

import csv
from pathlib import Path

from PIL import Image
from typer.testing import CliRunner

from image_transcoder.cli.main import app
from image_transcoder.core.config import CompressionSettings, JobConfig, OutputConfig, PipelineConfig
from image_transcoder.core.formats import ImageFormat
from image_transcoder.core.report import HEADER
from image_transcoder.processing.pipeline import process_batch

SVG_TEXT = """<?xml version="1.0" encoding="UTF-8"?>
<!-- 图标 -->
<svg xmlns="http://www.w3.org/2000/svg" width="16" height="16">
  <metadata>editor data</metadata>
  <circle cx="8" cy="8" r="6" fill="#336699"/>
</svg>
"""


def make_config(
    source: Path,
    output: Path,
    *,
    settings: CompressionSettings | None = None,
    conflict_strategy: str = "rename",
) -> JobConfig:
    return JobConfig(
        sources=[source],
        output=OutputConfig(output_dir=output, conflict_strategy=conflict_strategy),
        settings=settings or CompressionSettings(),
        pipeline=PipelineConfig(max_workers=1),
    )


def prepare_dirs(tmp_path: Path) -> tuple[Path, Path]:
    source = tmp_path / "input"
    output = tmp_path / "output"
    source.mkdir()
    output.mkdir()
    return source, output


def test_process_batch_handles_valid_and_invalid_images(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)
    Image.new("RGB", (64, 64), "blue").save(source / "valid.png")
    Image.new("RGB", (32, 48), "green").save(source / "photo.jpg")
    (source / "corrupted.png").write_text("not an image")
    (source / "notes.txt").write_text("hello")

    result = process_batch(make_config(source, output, settings=CompressionSettings(output_format=ImageFormat.WEBP)))

    assert len(result.succeeded) == 2
    assert len(result.failed) == 1
    assert len(result.skipped) == 0
    assert result.batch.total_count == 3
    assert result.batch.completed_count == 2
    assert result.batch.failed_count == 1

    names = sorted(outcome.output_path.name for outcome in result.succeeded)
    assert names == ["photo-optimized.webp", "valid-optimized.webp"]
    for outcome in result.succeeded:
        with Image.open(outcome.output_path) as img:
            assert img.format == "WEBP"

    failure = result.failed[0]
    assert failure.source_path.name == "corrupted.png"
    assert failure.message

    with (output / "report.csv").open(encoding="utf-8") as handle:
        rows = list(csv.DictReader(handle))
    assert list(rows[0].keys()) == HEADER
    assert len(rows) == 3
    assert {row["status"] for row in rows} == {"processed", "error"}


def test_keep_source_format_and_max_dimension(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)
    Image.new("RGB", (400, 200), "red").save(source / "wide.jpg")

    settings = CompressionSettings(max_dimension=100)
    result = process_batch(make_config(source, output, settings=settings))

    outcome = result.succeeded[0]
    assert outcome.output_path == output / "wide-optimized.jpg"
    with Image.open(outcome.output_path) as img:
        assert img.format == "JPEG"
        assert img.size == (100, 50)


def test_existing_output_is_renamed(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)
    Image.new("RGB", (16, 16), "blue").save(source / "icon.png")
    (output / "icon-optimized.png").write_bytes(b"existing")

    result = process_batch(make_config(source, output))

    outcome = result.succeeded[0]
    assert outcome.status == "processed-rename"
    assert outcome.output_path == output / "icon-optimized_1.png"
    assert (output / "icon-optimized.png").read_bytes() == b"existing"


def test_existing_output_is_skipped(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)
    Image.new("RGB", (16, 16), "blue").save(source / "icon.png")
    (output / "icon-optimized.png").write_bytes(b"existing")

    result = process_batch(make_config(source, output, conflict_strategy="skip"))

    assert not result.succeeded
    assert len(result.skipped) == 1
    assert result.skipped[0].status == "skip-existing"
    assert (output / "icon-optimized.png").read_bytes() == b"existing"


def test_existing_output_is_overwritten(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)
    Image.new("RGB", (16, 16), "blue").save(source / "icon.png")
    (output / "icon-optimized.png").write_bytes(b"existing")

    result = process_batch(make_config(source, output, conflict_strategy="overwrite"))

    assert result.succeeded[0].status == "processed-overwrite"
    with Image.open(output / "icon-optimized.png") as img:
        assert img.size == (16, 16)


def test_same_name_within_batch_is_renamed(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)
    (source / "sub").mkdir()
    Image.new("RGB", (8, 8), "blue").save(source / "cover.png")
    Image.new("RGB", (8, 8), "red").save(source / "sub" / "cover.jpg")

    settings = CompressionSettings(output_format=ImageFormat.WEBP)
    result = process_batch(make_config(source, output, settings=settings))

    names = sorted(outcome.output_path.name for outcome in result.succeeded)
    assert names == ["cover-optimized.webp", "cover-optimized_1.webp"]


def test_svg_is_optimized_as_svg(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)
    (source / "icon.svg").write_text(SVG_TEXT, encoding="utf-8")

    result = process_batch(make_config(source, output))

    outcome = result.succeeded[0]
    assert outcome.output_path == output / "icon-optimized.svg"
    written = outcome.output_path.read_text(encoding="utf-8")
    assert "<circle" in written
    assert "metadata" not in written
    assert outcome.result_size < outcome.original_size
    assert outcome.complexity_flag is None


def test_no_images_returns_empty_result(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)
    (source / "readme.md").write_text("nothing here")
    updates = []

    result = process_batch(make_config(source, output), progress_callback=updates.append)

    assert result.all_outcomes() == []
    assert updates[-1].total == 0


def test_cli_runs_batch(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)
    Image.new("RGB", (40, 40), "blue").save(source / "a.png")

    runner = CliRunner()
    outcome = runner.invoke(
        app,
        [str(source), "--output", str(output), "--format", "jpg", "--quality", "70", "--workers", "1"],
    )

    assert outcome.exit_code == 0, outcome.output
    assert "成功 1 张" in outcome.output
    with Image.open(output / "a-optimized.jpg") as img:
        assert img.format == "JPEG"
    assert (output / "report.csv").exists()


def test_cli_rejects_unknown_format(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)

    outcome = CliRunner().invoke(app, [str(source), "--output", str(output), "--format", "bmp"])

    assert outcome.exit_code != 0


def test_gif_source_keeps_lossless_png_output(tmp_path: Path) -> None:
    source, output = prepare_dirs(tmp_path)
    Image.new("P", (24, 12), 3).save(source / "anim.gif")

    result = process_batch(make_config(source, output))

    outcome = result.succeeded[0]
    assert outcome.output_path == output / "anim-optimized.png"
    with Image.open(outcome.output_path) as img:
        assert img.format == "PNG"
        assert img.size == (24, 12)
