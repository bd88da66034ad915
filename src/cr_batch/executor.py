"""Run the external command for a single work unit."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Literal

from cr_batch.command import CommandBuilder, CommandSpec, build_cellranger_count_command
from cr_batch.completion import classify
from cr_batch.discover import WorkUnit

LOGGER = logging.getLogger(__name__)

JobStatus = Literal["SKIPPED", "SUCCEEDED", "FAILED"]
JOB_STATUS_VALUES: tuple[JobStatus, ...] = ("SKIPPED", "SUCCEEDED", "FAILED")

LOG_SEPARATOR = "-" * 40
TIMEOUT_EXIT_CODE = 124
LAUNCH_FAILURE_EXIT_CODE = 127

CommandRunner = Callable[[CommandSpec, Path, float | None], int]


@dataclass(frozen=True, slots=True)
class JobResult:
    """Outcome of one work unit. ``exit_code`` is None when the unit was skipped."""

    sample: str
    status: JobStatus
    exit_code: int | None
    log_path: Path | None
    stale_output_removed: bool = False

    @property
    def skipped(self) -> bool:
        return self.exit_code is None


def run_subprocess(command: CommandSpec, log_path: Path, timeout_seconds: float | None = None) -> int:
    """Run ``command`` without a shell, appending its output to ``log_path``."""

    with log_path.open("a", encoding="utf-8") as log_handle:
        try:
            completed = subprocess.run(
                command.argv,
                stdin=subprocess.DEVNULL,
                stdout=log_handle,
                stderr=subprocess.STDOUT,
                timeout=timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired:
            log_handle.write(f"Command timed out after {timeout_seconds} seconds.\n")
            return TIMEOUT_EXIT_CODE
        except OSError as exc:
            log_handle.write(f"Failed to launch command: {exc}\n")
            return LAUNCH_FAILURE_EXIT_CODE
    return completed.returncode


def _write_log_header(log_path: Path, command: CommandSpec) -> None:
    log_path.write_text(f"Running command:\n{command.render()}\n{LOG_SEPARATOR}\n", encoding="utf-8")


def _append_log_line(log_path: Path, line: str) -> None:
    with log_path.open("a", encoding="utf-8") as log_handle:
        log_handle.write(line + "\n")


class JobExecutor:
    """Execute work units one at a time; safe to share across worker threads."""

    def __init__(
        self,
        executable: Path,
        reference: Path,
        *,
        command_builder: CommandBuilder = build_cellranger_count_command,
        runner: CommandRunner = run_subprocess,
        timeout_seconds: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.executable = executable
        self.reference = reference
        self.command_builder = command_builder
        self.runner = runner
        self.timeout_seconds = timeout_seconds
        self.logger = logger or LOGGER

    def execute(self, unit: WorkUnit) -> JobResult:
        """Skip, clean and re-run, or run ``unit`` depending on its current state."""

        self.logger.info("job.processing sample=%s", unit.sample)
        state = classify(unit)
        if state == "DONE":
            self.logger.info(
                "job.skipped sample=%s reason=outs_present output_path=%s",
                unit.sample,
                unit.output_path,
            )
            return JobResult(sample=unit.sample, status="SKIPPED", exit_code=None, log_path=None)

        stale_removed = False
        if state == "PARTIAL_STALE":
            self.logger.info(
                "job.stale_output_removing sample=%s output_path=%s reason=outs_missing",
                unit.sample,
                unit.output_path,
            )
            if unit.output_path.is_symlink():
                unit.output_path.unlink()
            else:
                shutil.rmtree(unit.output_path)
            self.logger.info("job.stale_output_removed sample=%s output_path=%s", unit.sample, unit.output_path)
            stale_removed = True

        command = self.command_builder(unit, self.executable, self.reference)
        unit.output_path.mkdir(parents=True, exist_ok=True)
        log_path = unit.log_path
        _write_log_header(log_path, command)

        self.logger.info("job.start sample=%s log_path=%s", unit.sample, log_path)
        exit_code = self.runner(command, log_path, self.timeout_seconds)

        if exit_code == 0:
            _append_log_line(log_path, f"Cellranger run complete for {unit.sample}.")
            self.logger.info("job.complete sample=%s log_path=%s", unit.sample, log_path)
            status: JobStatus = "SUCCEEDED"
        else:
            _append_log_line(
                log_path,
                f"Error occurred during cellranger run for {unit.sample} (exit code {exit_code}).",
            )
            self.logger.error(
                "job.failed sample=%s exit_code=%s log_path=%s",
                unit.sample,
                exit_code,
                log_path,
            )
            status = "FAILED"

        return JobResult(
            sample=unit.sample,
            status=status,
            exit_code=exit_code,
            log_path=log_path,
            stale_output_removed=stale_removed,
        )
