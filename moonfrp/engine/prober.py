"""TCP reachability checks for client configs."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from .executor import BoundedExecutor, make_units
from .models import BatchReport, Operation, UnitResult, WorkUnit
from .runners import tcp_probe

logger = logging.getLogger(__name__)

DEFAULT_PROBE_PARALLEL = 20
DEFAULT_PROBE_TIMEOUT = 1.0


@dataclass(frozen=True)
class Endpoint:
    host: str
    port: int
    config_path: Optional[Path] = None

    @property
    def target(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{host}:{self.port}"


def format_probe_line(unit: WorkUnit, result: UnitResult) -> str:
    return f"{unit.target} ✓ OK" if result.ok else f"{unit.target} ✗ FAIL"


def summary_line(report: BatchReport) -> str:
    return f"✓ Reachable: {report.succeeded} | ✗ Unreachable: {report.failed}"


class ConnectivityProber:
    """Probes endpoints in parallel and reports each result as it lands."""

    def __init__(
        self,
        executor: Optional[BoundedExecutor] = None,
        timeout_seconds: float = DEFAULT_PROBE_TIMEOUT,
        echo: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.executor = executor or BoundedExecutor()
        self.timeout_seconds = timeout_seconds
        self.echo = echo

    def discover(self, index) -> List[Endpoint]:
        """Endpoints of every indexed client config with a server address."""
        endpoints = []
        for path in index.query_by_type("client"):
            resolved = index.resolve_endpoint(path)
            if resolved is None:
                logger.debug("Skipping %s: no serverAddr/serverPort", path)
                continue
            host, port = resolved
            endpoints.append(Endpoint(host=host, port=port, config_path=path))
        return endpoints

    def run(
        self, endpoints: Iterable[Endpoint | str], max_parallel: int = DEFAULT_PROBE_PARALLEL
    ) -> BatchReport:
        targets: Sequence[str] = [
            ep.target if isinstance(ep, Endpoint) else ep for ep in endpoints
        ]
        units = make_units(targets, Operation.PROBE, self.timeout_seconds)
        report = self.executor.run_batch(
            units, tcp_probe, max_parallel, on_result=self._report_live
        )
        logger.info(
            "Connectivity check: %d reachable, %d unreachable", report.succeeded, report.failed
        )
        return report

    def _report_live(self, unit: WorkUnit, result: UnitResult) -> None:
        if self.echo is None:
            return
        self.executor.progress.clear()
        self.echo(format_probe_line(unit, result))
