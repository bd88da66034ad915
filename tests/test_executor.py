from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import pytest

from conftest import FakeRunner
from cr_batch.command import CommandSpec
from cr_batch.discover import WorkUnit
from cr_batch.executor import (
    LAUNCH_FAILURE_EXIT_CODE,
    LOG_SEPARATOR,
    TIMEOUT_EXIT_CODE,
    JobExecutor,
    run_subprocess,
)


@pytest.fixture
def unit(tmp_path: Path) -> WorkUnit:
    input_path = tmp_path / "Raw" / "fastq" / "S1"
    input_path.mkdir(parents=True)
    return WorkUnit(sample="S1", input_path=input_path, output_path=tmp_path / "cellranger" / "S1")


def _executor(runner: FakeRunner, **kwargs) -> JobExecutor:
    return JobExecutor(Path("/opt/cellranger/bin/cellranger"), Path("/refs/GRCh38"), runner=runner, **kwargs)


def test_done_unit_is_skipped_without_running(unit: WorkUnit) -> None:
    (unit.output_path / "outs").mkdir(parents=True)
    runner = FakeRunner()

    result = _executor(runner).execute(unit)

    assert runner.calls == []
    assert result.status == "SKIPPED"
    assert result.exit_code is None
    assert result.skipped
    assert result.log_path is None


def test_not_started_unit_runs_and_logs(unit: WorkUnit) -> None:
    runner = FakeRunner()

    result = _executor(runner).execute(unit)

    assert runner.calls == ["S1"]
    assert result.status == "SUCCEEDED"
    assert result.exit_code == 0
    assert result.log_path == unit.log_path
    lines = unit.log_path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "Running command:"
    assert lines[1].startswith("/opt/cellranger/bin/cellranger count --id=S1 ")
    assert lines[2] == LOG_SEPARATOR
    assert lines[-1] == "Cellranger run complete for S1."


def test_log_header_is_written_before_execution(unit: WorkUnit) -> None:
    seen: list[str] = []

    def runner(command: CommandSpec, log_path: Path, timeout_seconds: float | None) -> int:
        seen.append(log_path.read_text(encoding="utf-8"))
        return 0

    JobExecutor(Path("cellranger"), Path("ref"), runner=runner).execute(unit)

    assert seen[0].startswith("Running command:\n")
    assert seen[0].endswith(LOG_SEPARATOR + "\n")


def test_failed_command_is_recorded_not_raised(unit: WorkUnit) -> None:
    runner = FakeRunner(fail_samples={"S1"})

    result = _executor(runner).execute(unit)

    assert result.status == "FAILED"
    assert result.exit_code == 1
    assert unit.output_path.is_dir()
    assert not (unit.output_path / "outs").exists()
    last_line = unit.log_path.read_text(encoding="utf-8").splitlines()[-1]
    assert last_line == "Error occurred during cellranger run for S1 (exit code 1)."


def test_stale_output_is_removed_before_rerun(unit: WorkUnit, caplog: pytest.LogCaptureFixture) -> None:
    unit.output_path.mkdir(parents=True)
    leftover = unit.output_path / "SC_RNA_COUNTER_CS" / "leftover.txt"
    leftover.parent.mkdir()
    leftover.write_text("partial\n", encoding="utf-8")
    runner = FakeRunner()

    with caplog.at_level(logging.INFO):
        result = _executor(runner).execute(unit)

    assert result.stale_output_removed
    assert result.status == "SUCCEEDED"
    assert not leftover.exists()
    assert not leftover.parent.exists()
    assert unit.log_path.exists()
    assert any("job.stale_output_removed sample=S1" in message for message in caplog.messages)


def test_custom_command_builder_receives_resolved_paths(unit: WorkUnit) -> None:
    received: list[tuple[str, Path, Path]] = []

    def builder(work_unit: WorkUnit, executable: Path, reference: Path) -> CommandSpec:
        received.append((work_unit.sample, executable, reference))
        return CommandSpec(program=executable, args=("--version",))

    runner = FakeRunner()
    JobExecutor(Path("/bin/cr"), Path("/ref"), command_builder=builder, runner=runner).execute(unit)

    assert received == [("S1", Path("/bin/cr"), Path("/ref"))]
    assert runner.commands[0].argv == ["/bin/cr", "--version"]


def test_timeout_is_passed_to_runner(unit: WorkUnit) -> None:
    timeouts: list[float | None] = []

    def runner(command: CommandSpec, log_path: Path, timeout_seconds: float | None) -> int:
        timeouts.append(timeout_seconds)
        return 0

    JobExecutor(Path("cr"), Path("ref"), runner=runner, timeout_seconds=30.0).execute(unit)
    assert timeouts == [30.0]


def test_run_subprocess_appends_output_and_returns_exit_code(tmp_path: Path) -> None:
    log_path = tmp_path / "job.log"
    log_path.write_text("header\n", encoding="utf-8")
    command = CommandSpec(
        program=Path(sys.executable),
        args=("-c", "import sys; print('hello from job'); sys.exit(3)"),
    )

    exit_code = run_subprocess(command, log_path)

    assert exit_code == 3
    text = log_path.read_text(encoding="utf-8")
    assert text.startswith("header\n")
    assert "hello from job" in text


def test_run_subprocess_does_not_use_a_shell(tmp_path: Path) -> None:
    log_path = tmp_path / "job.log"
    marker = tmp_path / "injected"
    command = CommandSpec(
        program=Path(sys.executable),
        args=("-c", "import sys; print(sys.argv[1])", f"x; touch {marker}"),
    )

    assert run_subprocess(command, log_path) == 0
    assert not marker.exists()
    assert f"x; touch {marker}" in log_path.read_text(encoding="utf-8")


def test_run_subprocess_missing_program(tmp_path: Path) -> None:
    log_path = tmp_path / "job.log"
    command = CommandSpec(program=tmp_path / "does-not-exist" / "cellranger", args=("count",))

    assert run_subprocess(command, log_path) == LAUNCH_FAILURE_EXIT_CODE
    assert "Failed to launch command" in log_path.read_text(encoding="utf-8")


@pytest.mark.skipif(os.name == "nt", reason="process timing differs on Windows")
def test_run_subprocess_timeout(tmp_path: Path) -> None:
    log_path = tmp_path / "job.log"
    command = CommandSpec(program=Path(sys.executable), args=("-c", "import time; time.sleep(30)"))

    assert run_subprocess(command, log_path, timeout_seconds=0.5) == TIMEOUT_EXIT_CODE
    assert "timed out" in log_path.read_text(encoding="utf-8")


@pytest.mark.skipif(os.name == "nt", reason="directory symlinks need privileges on Windows")
def test_symlinked_stale_output_is_unlinked_and_rerun(unit: WorkUnit, tmp_path: Path) -> None:
    link_target = tmp_path / "scratch" / "S1_previous"
    link_target.mkdir(parents=True)
    (link_target / "partial.bam").write_bytes(b"")
    unit.output_path.parent.mkdir(parents=True)
    unit.output_path.symlink_to(link_target, target_is_directory=True)
    runner = FakeRunner()

    result = _executor(runner).execute(unit)

    assert result.status == "SUCCEEDED"
    assert result.stale_output_removed
    assert runner.calls == ["S1"]
    assert not unit.output_path.is_symlink()
    assert (unit.output_path / "outs").is_dir()
    assert (link_target / "partial.bam").exists()


def test_stale_cleanup_is_logged_only_after_removal(
    unit: WorkUnit,
    caplog: pytest.LogCaptureFixture,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    unit.output_path.mkdir(parents=True)

    def refuse(path: Path) -> None:
        raise PermissionError(f"cannot remove {path}")

    monkeypatch.setattr("cr_batch.executor.shutil.rmtree", refuse)

    with caplog.at_level(logging.INFO), pytest.raises(PermissionError):
        _executor(FakeRunner()).execute(unit)

    assert any("job.stale_output_removing sample=S1" in message for message in caplog.messages)
    assert not any("job.stale_output_removed sample=S1" in message for message in caplog.messages)
