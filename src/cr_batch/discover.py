"""Discover per-sample input directories and derive their work units."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from cr_batch.errors import DuplicateWorkUnitError, NotFoundError

LOGGER = logging.getLogger(__name__)

LOG_FILE_TEMPLATE = "cellranger_{sample}.log"


@dataclass(frozen=True, slots=True)
class WorkUnit:
    """One sample's input directory and the output directory it maps to."""

    sample: str
    input_path: Path
    output_path: Path

    @property
    def log_path(self) -> Path:
        return self.output_path / LOG_FILE_TEMPLATE.format(sample=self.sample)


def output_path_for(sample: str, output_root: Path) -> Path:
    """Return the deterministic output directory for a sample."""

    return output_root / sample


def build_work_units(input_dirs: Iterable[Path], output_root: Path) -> list[WorkUnit]:
    """Build work units from input directories, rejecting base-name collisions."""

    units: list[WorkUnit] = []
    seen: dict[str, Path] = {}
    for input_dir in input_dirs:
        sample = input_dir.name
        if sample in seen:
            raise DuplicateWorkUnitError(
                f"Input directories {seen[sample]} and {input_dir} share sample name '{sample}'."
            )
        seen[sample] = input_dir
        units.append(
            WorkUnit(
                sample=sample,
                input_path=input_dir,
                output_path=output_path_for(sample, output_root),
            )
        )
    return units


def discover_work_units(
    input_root: Path,
    output_root: Path,
    logger: logging.Logger | None = None,
) -> list[WorkUnit]:
    """List immediate subdirectories of ``input_root`` as work units, sorted by name."""

    effective_logger = logger or LOGGER
    if not input_root.is_dir():
        raise NotFoundError(f"Fastq folder does not exist: {input_root}")

    # Symlinked entries are not samples.
    input_dirs = sorted(
        (child for child in input_root.iterdir() if child.is_dir() and not child.is_symlink()),
        key=lambda p: p.name,
    )
    units = build_work_units(input_dirs, output_root)
    effective_logger.debug("discover.complete input_root=%s units=%s", input_root, len(units))
    return units
