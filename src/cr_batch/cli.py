"""Typer CLI entrypoint for cr_batch."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
import yaml

from cr_batch.config import DEFAULT_CONFIG_FILE, RunnerConfig, load_config
from cr_batch.errors import BatchError
from cr_batch.logging_utils import configure_logging
from cr_batch.pipeline import BatchRunOptions, get_batch_paths, run_batch
from cr_batch.report import build_report, report_counts, report_frame, write_report

app = typer.Typer(
    add_completion=False,
    help="Run cellranger count over every sample folder with bounded parallelism.",
    no_args_is_help=True,
)


def _config_file_option() -> Any:
    return typer.Option(
        DEFAULT_CONFIG_FILE,
        "--config-file",
        help="key=value file with cellranger_path and reference_path.",
        exists=False,
        file_okay=True,
        dir_okay=False,
    )


def _load_config_or_exit(config_file: Path) -> RunnerConfig:
    try:
        return load_config(config_file)
    except BatchError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


@app.command("run")
def run_cmd(
    target_folder: Path = typer.Argument(
        ...,
        help="Folder containing Raw/fastq/<sample>/ directories.",
        file_okay=False,
    ),
    max_concurrent_jobs: int = typer.Argument(
        ...,
        min=1,
        help="Maximum number of cellranger processes running at once.",
    ),
    config_file: Path = _config_file_option(),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Classify samples and print the report without running anything.",
    ),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        min=1.0,
        help="Kill a cellranger process after this many seconds.",
    ),
) -> None:
    """Run cellranger for every pending sample, then write the completion report."""

    config = _load_config_or_exit(config_file)
    paths = get_batch_paths(target_folder)
    logger = configure_logging(None if dry_run else paths.run_log_path)

    options = BatchRunOptions(dry_run=dry_run, timeout_seconds=timeout)
    try:
        result = run_batch(config, target_folder, max_concurrent_jobs, options=options, logger=logger)
    except BatchError as exc:
        logger.error("batch.aborted error=%s", exc)
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    summary = result.summary
    typer.echo(f"run_id: {summary['run_id']}")
    typer.echo(f"samples_discovered_total: {summary['samples_discovered_total']}")
    typer.echo(f"samples_dispatched_total: {summary['samples_dispatched_total']}")
    for status, count in summary["job_status_counts"].items():
        typer.echo(f"{status.lower()}: {count}")
    if summary["failed_samples"]:
        typer.echo(f"failed_samples: {', '.join(summary['failed_samples'])}")
    if dry_run:
        typer.echo(str(report_frame(result.report_rows)))
    else:
        typer.echo(f"report_path: {result.report_path}")
        typer.echo(f"summary_path: {result.summary_path}")
        typer.echo("Done.")


@app.command("report")
def report_cmd(
    target_folder: Path = typer.Argument(
        ...,
        help="Folder containing Raw/fastq/ and cellranger/.",
        file_okay=False,
    ),
) -> None:
    """Rebuild the completion report without running anything."""

    logger = configure_logging(None)
    paths = get_batch_paths(target_folder)
    try:
        rows = build_report(paths.fastq_root, paths.output_root, logger=logger)
    except BatchError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    report_path = write_report(rows, paths.report_path)
    counts = report_counts(rows)
    for key, value in counts.items():
        typer.echo(f"{key}: {value}")
    typer.echo(f"report_path: {report_path}")


@app.command("show-config")
def show_config(config_file: Path = _config_file_option()) -> None:
    """Print the effective configuration after env overrides."""

    config = _load_config_or_exit(config_file)
    typer.echo(yaml.safe_dump(config.as_dict(), sort_keys=False))


def main() -> None:
    """CLI script entrypoint."""

    app()


if __name__ == "__main__":
    main()
