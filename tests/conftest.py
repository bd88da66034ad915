"""Shared fixtures: sample folder layouts and a fake cellranger runner."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Iterable

import pytest

from cr_batch.command import CommandSpec
from cr_batch.config import RunnerConfig


class FakeRunner:
    """Stand-in for the cellranger process that records calls and concurrency."""

    def __init__(
        self,
        *,
        delay: float = 0.0,
        fail_samples: Iterable[str] = (),
        create_outs: bool = True,
    ) -> None:
        self.delay = delay
        self.fail_samples = set(fail_samples)
        self.create_outs = create_outs
        self.calls: list[str] = []
        self.commands: list[CommandSpec] = []
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def __call__(self, command: CommandSpec, log_path: Path, timeout_seconds: float | None) -> int:
        sample = log_path.parent.name
        with self._lock:
            self.calls.append(sample)
            self.commands.append(command)
            self.active += 1
            self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if sample in self.fail_samples:
                return 1
            if self.create_outs:
                (log_path.parent / "outs").mkdir()
            return 0
        finally:
            with self._lock:
                self.active -= 1


def make_target(root: Path, samples: Iterable[str]) -> Path:
    """Create ``<root>/Raw/fastq/<sample>/`` folders with a placeholder fastq each."""

    fastq_root = root / "Raw" / "fastq"
    fastq_root.mkdir(parents=True, exist_ok=True)
    for sample in samples:
        sample_dir = fastq_root / sample
        sample_dir.mkdir()
        (sample_dir / f"{sample}_S1_L001_R1_001.fastq.gz").write_bytes(b"")
    return root


@pytest.fixture
def runner_config(tmp_path: Path) -> RunnerConfig:
    return RunnerConfig(
        cellranger_path=tmp_path / "opt" / "cellranger-8.0.1",
        reference_path=tmp_path / "refs" / "refdata-gex-GRCh38-2024-A",
    )


@pytest.fixture
def target_root(tmp_path: Path) -> Path:
    return make_target(tmp_path / "project", ["S1", "S2", "S3"])
