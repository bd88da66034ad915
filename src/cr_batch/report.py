"""Build and write the per-sample completion report."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import polars as pl

from cr_batch.completion import outs_marker_exists, output_folder_exists
from cr_batch.discover import discover_work_units
from cr_batch.utils.paths import atomic_temp_path

LOGGER = logging.getLogger(__name__)

REPORT_FILE = "cellranger_completion_report.tsv"
REPORT_COLUMNS: tuple[str, ...] = ("Sample", "Output_Folder_Exists", "Outs_Subfolder_Exists")


@dataclass(frozen=True, slots=True)
class ReportRow:
    """Raw output-folder and ``outs`` presence for one sample."""

    sample: str
    output_folder_exists: bool
    outs_subfolder_exists: bool


def _yes_no(value: bool) -> str:
    return "Yes" if value else "No"


def build_report(
    input_root: Path,
    output_root: Path,
    logger: logging.Logger | None = None,
) -> list[ReportRow]:
    """Re-discover work units and record what is on disk for each of them."""

    units = discover_work_units(input_root, output_root, logger=logger)
    return [
        ReportRow(
            sample=unit.sample,
            output_folder_exists=output_folder_exists(unit),
            outs_subfolder_exists=outs_marker_exists(unit),
        )
        for unit in units
    ]


def report_frame(rows: Sequence[ReportRow]) -> pl.DataFrame:
    """Render report rows as a string-typed frame with Yes/No values."""

    return pl.DataFrame(
        {
            "Sample": [row.sample for row in rows],
            "Output_Folder_Exists": [_yes_no(row.output_folder_exists) for row in rows],
            "Outs_Subfolder_Exists": [_yes_no(row.outs_subfolder_exists) for row in rows],
        },
        schema={column: pl.String for column in REPORT_COLUMNS},
    )


def report_counts(rows: Sequence[ReportRow]) -> dict[str, int]:
    """Return totals of complete, incomplete and missing outputs."""

    complete = sum(1 for row in rows if row.output_folder_exists and row.outs_subfolder_exists)
    incomplete = sum(1 for row in rows if row.output_folder_exists and not row.outs_subfolder_exists)
    missing = sum(1 for row in rows if not row.output_folder_exists)
    return {"samples": len(rows), "complete": complete, "incomplete": incomplete, "missing": missing}


def write_report(rows: Sequence[ReportRow], output_path: Path) -> Path:
    """Write the report as tab-separated text, replacing any previous report."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = atomic_temp_path(output_path)
    try:
        report_frame(rows).write_csv(temp_path, separator="\t")
        os.replace(temp_path, output_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()
    LOGGER.info("report.written path=%s rows=%s", output_path, len(rows))
    return output_path
