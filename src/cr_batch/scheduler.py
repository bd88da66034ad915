"""Bounded-concurrency dispatch of work units over a thread pool."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Sequence

from cr_batch.discover import WorkUnit
from cr_batch.errors import InvalidConcurrencyError
from cr_batch.executor import JobResult

LOGGER = logging.getLogger(__name__)

ExecuteFn = Callable[[WorkUnit], JobResult]


def validate_max_concurrency(max_concurrency: int) -> int:
    """Return ``max_concurrency`` unchanged, or raise if it is not a positive integer."""

    if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int) or max_concurrency < 1:
        raise InvalidConcurrencyError(f"max_concurrency must be an integer >= 1, got {max_concurrency!r}")
    return max_concurrency


def run_jobs(
    units: Sequence[WorkUnit],
    max_concurrency: int,
    execute: ExecuteFn,
    logger: logging.Logger | None = None,
) -> list[JobResult]:
    """Run ``execute`` over ``units`` with at most ``max_concurrency`` in flight.

    Units are submitted in order and the pool pulls them first-in first-out as
    slots free up. Blocks until every unit has finished and returns results in
    the order of ``units``. A job that raises is logged and reported as
    ``FAILED``; the remaining jobs keep running.
    """

    effective_logger = logger or LOGGER
    validate_max_concurrency(max_concurrency)
    if not units:
        return []

    effective_logger.info("scheduler.start units=%s max_concurrency=%s", len(units), max_concurrency)
    with ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix="cr-batch-worker") as pool:
        futures: list[tuple[WorkUnit, Future[JobResult]]] = [(unit, pool.submit(execute, unit)) for unit in units]

    results: list[JobResult] = []
    for unit, future in futures:
        try:
            results.append(future.result())
        except Exception:
            effective_logger.exception("scheduler.job_crashed sample=%s", unit.sample)
            results.append(
                JobResult(sample=unit.sample, status="FAILED", exit_code=-1, log_path=unit.log_path)
            )
    effective_logger.info("scheduler.complete units=%s", len(results))
    return results
