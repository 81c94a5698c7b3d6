"""报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, Optional

from image_transcoder.core.models import FileOutcome

HEADER = [
    "source_path",
    "output_path",
    "status",
    "message",
    "original_size",
    "result_size",
    "saved_percent",
    "complexity_flag",
]


def write_csv_report(outcomes: Iterable[FileOutcome], output_dir: Path, filename: str) -> Path:
    """将处理结果写入 CSV 报告。"""

    report_path = output_dir / filename
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in outcomes:
            writer.writerow(
                [
                    str(record.source_path),
                    str(record.output_path) if record.output_path else "",
                    record.status,
                    record.message or "",
                    _format_int(record.original_size),
                    _format_int(record.result_size),
                    _format_saved(record.original_size, record.result_size),
                    _format_int(record.complexity_flag),
                ]
            )
    return report_path


def _format_int(value: Optional[int]) -> str:
    if value is None:
        return ""
    return str(value)


def _format_saved(original: Optional[int], result: Optional[int]) -> str:
    if not original or result is None:
        return ""
    return f"{(1 - result / original) * 100:.1f}"
