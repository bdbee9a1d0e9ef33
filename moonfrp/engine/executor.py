"""Bounded parallel executor for batches of WorkUnits."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional

from .models import (
    CANCELLED_DETAIL,
    BatchCancelled,
    BatchReport,
    UnitResult,
    WorkUnit,
)
from .progress import ProgressLine

logger = logging.getLogger(__name__)

Runner = Callable[[WorkUnit, threading.Event], UnitResult]
ResultCallback = Callable[[WorkUnit, UnitResult], None]

POLL_INTERVAL_SECONDS = 0.05
MAX_PARALLEL_CEILING = 256


class BoundedExecutor:
    """Runs every unit of a batch exactly once with at most N in flight.

    A failing unit never stops the batch. Results are recorded under the
    unit id, so the report is ordered by enqueue position regardless of
    completion order.
    """

    def __init__(
        self,
        progress: Optional[ProgressLine] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self.progress = progress or ProgressLine(enabled=False)
        self.poll_interval = poll_interval

    def run_batch(
        self,
        units: Iterable[WorkUnit],
        runner: Runner,
        max_parallel: int,
        on_result: Optional[ResultCallback] = None,
    ) -> BatchReport:
        units = list(units)
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
        ids = [unit.id for unit in units]
        if len(set(ids)) != len(ids):
            raise ValueError("WorkUnit ids must be unique within a batch")
        if not units:
            return BatchReport(total=0, succeeded=0, failed=0)

        slots = min(max_parallel, len(units), MAX_PARALLEL_CEILING)
        started = time.monotonic()
        cancel = threading.Event()
        results: Dict[int, UnitResult] = {}
        queue = deque(units)
        in_flight: Dict[Future, WorkUnit] = {}
        completed = 0

        logger.info(
            "Starting %s batch of %d units with %d slots",
            units[0].operation.value,
            len(units),
            slots,
        )
        self.progress.update(0, len(units))
        pool = ThreadPoolExecutor(max_workers=slots, thread_name_prefix="moonfrp-unit")
        try:
            while queue or in_flight:
                while queue and len(in_flight) < slots:
                    unit = queue.popleft()
                    in_flight[pool.submit(_run_unit, runner, unit, cancel)] = unit
                done, _ = wait(in_flight, timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for future in done:
                    unit = in_flight[future]
                    result = future.result()
                    results[unit.id] = result
                    del in_flight[future]
                    completed += 1
                    logger.debug(
                        "Unit %s (%s) finished: %s", unit.id, unit.target, result.status.value
                    )
                    if on_result is not None:
                        on_result(unit, result)
                    self.progress.update(completed, len(units))
        except KeyboardInterrupt:
            cancel.set()
            logger.warning(
                "Batch interrupted: %d in flight, %d not started", len(in_flight), len(queue)
            )
            for future, unit in in_flight.items():
                if future.exception() is None:
                    results[unit.id] = future.result()
                else:
                    results[unit.id] = UnitResult.failure(unit.id, CANCELLED_DETAIL)
            for unit in queue:
                results[unit.id] = UnitResult.failure(unit.id, CANCELLED_DETAIL)
            raise BatchCancelled(_build_report(units, results, started)) from None
        finally:
            pool.shutdown(wait=True, cancel_futures=True)
            self.progress.finish()

        report = _build_report(units, results, started)
        logger.info(
            "Finished batch: total=%d succeeded=%d failed=%d duration=%.2fs",
            report.total,
            report.succeeded,
            report.failed,
            report.duration_seconds,
        )
        return report


def _run_unit(runner: Runner, unit: WorkUnit, cancel: threading.Event) -> UnitResult:
    if cancel.is_set():
        return UnitResult.failure(unit.id, CANCELLED_DETAIL)
    try:
        result = runner(unit, cancel)
    except Exception as exc:
        logger.debug("Runner raised for unit %s (%s)", unit.id, unit.target, exc_info=True)
        return UnitResult.failure(unit.id, f"{type(exc).__name__}: {exc}")
    if result.unit_id != unit.id:
        result = replace(result, unit_id=unit.id)
    return result


def _build_report(
    units: List[WorkUnit], results: Dict[int, UnitResult], started: float
) -> BatchReport:
    succeeded = 0
    failures = []
    for unit in units:
        result = results[unit.id]
        if result.ok:
            succeeded += 1
        else:
            failures.append((unit.target, result.detail))
    return BatchReport(
        total=len(units),
        succeeded=succeeded,
        failed=len(failures),
        failures=failures,
        duration_seconds=time.monotonic() - started,
    )


def make_units(targets: Iterable[str], operation, timeout_seconds: float) -> List[WorkUnit]:
    """Number targets in enqueue order."""
    return [
        WorkUnit(id=index, target=target, operation=operation, timeout_seconds=timeout_seconds)
        for index, target in enumerate(targets)
    ]
