"""Classify work units by the state of their output directories."""

from __future__ import annotations

from typing import Iterable, Literal

from cr_batch.discover import WorkUnit

CompletionState = Literal["DONE", "PARTIAL_STALE", "NOT_STARTED"]
COMPLETION_STATE_VALUES: tuple[CompletionState, ...] = ("DONE", "PARTIAL_STALE", "NOT_STARTED")

OUTS_MARKER = "outs"


def output_folder_exists(unit: WorkUnit) -> bool:
    return unit.output_path.is_dir()


def outs_marker_exists(unit: WorkUnit) -> bool:
    return (unit.output_path / OUTS_MARKER).is_dir()


def classify(unit: WorkUnit) -> CompletionState:
    """Return the completion state from the filesystem as it is right now."""

    if not output_folder_exists(unit):
        return "NOT_STARTED"
    if outs_marker_exists(unit):
        return "DONE"
    return "PARTIAL_STALE"


def completion_state_counts(units: Iterable[WorkUnit]) -> dict[str, int]:
    """Return DONE/PARTIAL_STALE/NOT_STARTED counts for the given units."""

    counts = {state: 0 for state in COMPLETION_STATE_VALUES}
    for unit in units:
        counts[classify(unit)] += 1
    return counts
