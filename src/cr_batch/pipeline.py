"""End-to-end batch orchestration for cellranger runs."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from cr_batch.command import CommandBuilder, build_cellranger_count_command
from cr_batch.completion import classify, completion_state_counts
from cr_batch.config import RunnerConfig
from cr_batch.discover import WorkUnit, discover_work_units
from cr_batch.executor import JOB_STATUS_VALUES, CommandRunner, JobExecutor, JobResult, run_subprocess
from cr_batch.report import REPORT_FILE, ReportRow, build_report, report_counts, write_report
from cr_batch.scheduler import run_jobs, validate_max_concurrency
from cr_batch.utils.paths import write_json_atomically

LOGGER = logging.getLogger(__name__)

OUTPUT_DIR_NAME = "cellranger"
FASTQ_SUBDIR = Path("Raw") / "fastq"
SUMMARY_FILE = "cr_batch_run_summary.json"
RUN_LOG_FILE = "cr_batch.log"


def now_utc() -> datetime:
    """Return current timezone-aware UTC timestamp."""

    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class BatchPaths:
    """Resolved input and output locations under a target folder."""

    target_root: Path
    fastq_root: Path
    output_root: Path
    report_path: Path
    summary_path: Path
    run_log_path: Path


def get_batch_paths(target_root: Path) -> BatchPaths:
    """Return the standard batch layout for a target folder."""

    output_root = target_root / OUTPUT_DIR_NAME
    return BatchPaths(
        target_root=target_root,
        fastq_root=target_root / FASTQ_SUBDIR,
        output_root=output_root,
        report_path=output_root / REPORT_FILE,
        summary_path=output_root / SUMMARY_FILE,
        run_log_path=output_root / RUN_LOG_FILE,
    )


@dataclass(frozen=True, slots=True)
class BatchRunOptions:
    """Runtime options for a batch run."""

    dry_run: bool = False
    timeout_seconds: float | None = None


@dataclass(frozen=True, slots=True)
class BatchRunResult:
    """Return object for batch run outcomes."""

    run_id: str
    job_results: list[JobResult]
    report_rows: list[ReportRow]
    summary: dict[str, Any]
    report_path: Path | None
    summary_path: Path | None


def _status_counts(results: list[JobResult]) -> dict[str, int]:
    counts = {status: 0 for status in JOB_STATUS_VALUES}
    for result in results:
        counts[result.status] += 1
    return counts


def run_batch(
    config: RunnerConfig,
    target_root: Path,
    max_concurrency: int,
    *,
    options: BatchRunOptions | None = None,
    command_builder: CommandBuilder = build_cellranger_count_command,
    runner: CommandRunner = run_subprocess,
    logger: logging.Logger | None = None,
) -> BatchRunResult:
    """Run every pending sample under ``target_root`` and write the completion report.

    Precondition failures raise before any job starts. Individual job failures
    are recorded in the results, the logs and the report; they never raise.
    """

    effective_logger = logger or LOGGER
    run_options = options or BatchRunOptions()
    validate_max_concurrency(max_concurrency)

    run_id = f"cr-batch-{uuid4().hex[:12]}"
    started_ts = now_utc()
    started_mono = time.monotonic()
    paths = get_batch_paths(target_root)

    effective_logger.info("batch.target_folder path=%s", paths.target_root)
    effective_logger.info("batch.executable path=%s", config.executable_path)
    effective_logger.info("batch.reference path=%s", config.reference_path)
    effective_logger.info("batch.max_concurrency value=%s", max_concurrency)

    if not run_options.dry_run:
        paths.output_root.mkdir(parents=True, exist_ok=True)
        effective_logger.info("batch.output_root_ready path=%s", paths.output_root)

    units = discover_work_units(paths.fastq_root, paths.output_root, logger=effective_logger)
    state_counts = completion_state_counts(units)
    effective_logger.info(
        "batch.start run_id=%s discovered=%s state_counts=%s dry_run=%s",
        run_id,
        len(units),
        state_counts,
        run_options.dry_run,
    )

    pending: list[WorkUnit] = []
    skipped: dict[str, JobResult] = {}
    for unit in units:
        if classify(unit) == "DONE":
            effective_logger.info("batch.already_processed sample=%s output_path=%s", unit.sample, unit.output_path)
            skipped[unit.sample] = JobResult(sample=unit.sample, status="SKIPPED", exit_code=None, log_path=None)
        else:
            pending.append(unit)

    if run_options.dry_run:
        for unit in pending:
            effective_logger.info("batch.would_run sample=%s state=%s", unit.sample, classify(unit))
        dispatched: dict[str, JobResult] = {}
    else:
        executor = JobExecutor(
            config.executable_path,
            config.reference_path,
            command_builder=command_builder,
            runner=runner,
            timeout_seconds=run_options.timeout_seconds,
            logger=effective_logger,
        )
        dispatched = {
            result.sample: result
            for result in run_jobs(pending, max_concurrency, executor.execute, logger=effective_logger)
        }
        effective_logger.info("All Cellranger runs completed.")

    job_results = [
        skipped[unit.sample] if unit.sample in skipped else dispatched[unit.sample]
        for unit in units
        if unit.sample in skipped or unit.sample in dispatched
    ]

    report_rows = build_report(paths.fastq_root, paths.output_root, logger=effective_logger)
    report_path: Path | None = None
    if not run_options.dry_run:
        report_path = write_report(report_rows, paths.report_path)
        effective_logger.info("TSV report saved to: %s", report_path)

    status_counts = _status_counts(job_results)
    failed_samples = [result.sample for result in job_results if result.status == "FAILED"]
    summary: dict[str, Any] = {
        "run_id": run_id,
        "started_ts": started_ts.isoformat(),
        "finished_ts": now_utc().isoformat(),
        "duration_sec": round(time.monotonic() - started_mono, 3),
        "target_root": str(paths.target_root),
        "max_concurrency": max_concurrency,
        "dry_run": run_options.dry_run,
        "samples_discovered_total": len(units),
        "samples_dispatched_total": len(pending) if not run_options.dry_run else 0,
        "initial_state_counts": state_counts,
        "job_status_counts": status_counts,
        "stale_outputs_removed": sorted(result.sample for result in job_results if result.stale_output_removed),
        "failed_samples": failed_samples,
        "report_counts": report_counts(report_rows),
        "outputs": {
            "output_root": str(paths.output_root),
            "report_path": str(report_path) if report_path else None,
        },
    }

    summary_path: Path | None = None
    if not run_options.dry_run:
        summary_path = write_json_atomically(summary, paths.summary_path)

    effective_logger.info(
        "batch.complete run_id=%s discovered=%s dispatched=%s status_counts=%s failed=%s",
        run_id,
        len(units),
        summary["samples_dispatched_total"],
        status_counts,
        failed_samples,
    )

    return BatchRunResult(
        run_id=run_id,
        job_results=job_results,
        report_rows=report_rows,
        summary=summary,
        report_path=report_path,
        summary_path=summary_path,
    )
