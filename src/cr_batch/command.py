"""Structured external command descriptions and the default cellranger builder."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from cr_batch.discover import WorkUnit


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """Program path plus ordered argument vector, executed without a shell."""

    program: Path
    args: tuple[str, ...] = ()

    @property
    def argv(self) -> list[str]:
        return [str(self.program), *self.args]

    def render(self) -> str:
        """Shell-quoted rendering used for log output only."""

        return shlex.join(self.argv)


CommandBuilder = Callable[[WorkUnit, Path, Path], CommandSpec]


def build_cellranger_count_command(
    unit: WorkUnit,
    executable: Path,
    reference: Path,
    *,
    create_bam: bool = True,
) -> CommandSpec:
    """Build ``cellranger count`` for one sample directory."""

    return CommandSpec(
        program=executable,
        args=(
            "count",
            f"--id={unit.sample}",
            f"--transcriptome={reference}",
            f"--create-bam={'true' if create_bam else 'false'}",
            f"--fastqs={unit.input_path}",
            f"--sample={unit.sample}",
            f"--output-dir={unit.output_path}",
            "--disable-ui",
        ),
    )
