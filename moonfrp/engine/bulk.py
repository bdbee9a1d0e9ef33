"""Bulk service operations over the bounded executor."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .executor import BoundedExecutor, make_units
from .models import BatchReport, Operation
from .runners import ServiceRunner

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_PARALLEL = 10
DEFAULT_SERVICE_TIMEOUT = 8.0


class BulkServiceOperator:
    """Applies one operation to many services, continuing past failures."""

    def __init__(
        self,
        supervisor,
        executor: Optional[BoundedExecutor] = None,
        timeout_seconds: float = DEFAULT_SERVICE_TIMEOUT,
    ) -> None:
        self.supervisor = supervisor
        self.executor = executor or BoundedExecutor()
        self.timeout_seconds = timeout_seconds

    def run(
        self,
        operation: Operation,
        services: Sequence[str],
        max_parallel: int = DEFAULT_SERVICE_PARALLEL,
    ) -> BatchReport:
        operation = Operation(operation)
        if operation not in Operation.service_operations():
            raise ValueError(f"Invalid operation: {operation.value}")
        self.supervisor.ensure_available()

        logger.info(
            "Bulk %s on %d services (max_parallel=%d)",
            operation.value,
            len(services),
            max_parallel,
        )
        units = make_units(services, operation, self.timeout_seconds)
        report = self.executor.run_batch(units, ServiceRunner(self.supervisor), max_parallel)
        for service, reason in report.failures:
            logger.warning("Bulk %s failed for %s: %s", operation.value, service, reason)
        return report
