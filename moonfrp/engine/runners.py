"""Unit runners: what one worker does with one WorkUnit.

A runner is any callable ``(WorkUnit, threading.Event) -> UnitResult``.
The event is set when the batch is cancelled; runners must return
promptly once it is.
"""

from __future__ import annotations

import logging
import os
import signal
import socket
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .models import CANCELLED_DETAIL, Operation, UnitResult, WorkUnit

logger = logging.getLogger(__name__)

OUTPUT_TAIL = 2000
COMMAND_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False
    timeout_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.cancelled

    @property
    def detail(self) -> str:
        if self.cancelled:
            return CANCELLED_DETAIL
        if self.timed_out:
            return f"timed out after {self.timeout_seconds:g}s"
        if self.ok:
            return self.stdout.strip()
        return self.stderr.strip() or f"exit_code={self.exit_code}"


def run_command(
    cmd: Sequence[str],
    timeout: float,
    cancel: Optional[threading.Event] = None,
    poll_interval: float = COMMAND_POLL_SECONDS,
) -> CommandResult:
    """Run ``cmd`` with a hard timeout, killing it on timeout or cancellation."""
    try:
        proc = subprocess.Popen(
            list(cmd),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            # Keep terminal SIGINT away from children; cancellation kills them.
            start_new_session=True,
        )
    except OSError as exc:
        return CommandResult(exit_code=127, stderr=str(exc))

    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        try:
            stdout, stderr = proc.communicate(timeout=max(min(poll_interval, remaining), 0.001))
        except subprocess.TimeoutExpired:
            cancelled = cancel is not None and cancel.is_set()
            timed_out = time.monotonic() >= deadline
            if not (cancelled or timed_out):
                continue
            _kill_group(proc)
            stdout, stderr = proc.communicate()
            logger.debug("Killed %s (cancelled=%s timed_out=%s)", cmd[0], cancelled, timed_out)
            return CommandResult(
                exit_code=proc.returncode,
                stdout=(stdout or "")[-OUTPUT_TAIL:],
                stderr=(stderr or "")[-OUTPUT_TAIL:],
                timed_out=timed_out and not cancelled,
                cancelled=cancelled,
                timeout_seconds=timeout,
            )
        return CommandResult(
            exit_code=proc.returncode,
            stdout=(stdout or "")[-OUTPUT_TAIL:],
            stderr=(stderr or "")[-OUTPUT_TAIL:],
            timeout_seconds=timeout,
        )


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except OSError:
        proc.kill()


class ServiceRunner:
    """Runs a service operation through a supervisor."""

    def __init__(self, supervisor) -> None:
        self.supervisor = supervisor

    def __call__(self, unit: WorkUnit, cancel: threading.Event) -> UnitResult:
        if unit.operation is Operation.PROBE:
            raise ValueError("ServiceRunner cannot run probe units")
        result = self.supervisor.run(
            unit.operation, unit.target, timeout=unit.timeout_seconds, cancel=cancel
        )
        if result.ok:
            return UnitResult.success(unit.id, result.detail)
        return UnitResult.failure(unit.id, result.detail)


def split_endpoint(target: str) -> Tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts."""
    host, sep, port_text = target.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Invalid endpoint '{target}', expected host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"Invalid port in endpoint '{target}'") from None
    if not 1 <= port <= 65535:
        raise ValueError(f"Port out of range in endpoint '{target}'")
    return host, port


def tcp_probe(unit: WorkUnit, cancel: threading.Event) -> UnitResult:
    """Open and immediately close a TCP connection to ``unit.target``."""
    if cancel.is_set():
        return UnitResult.failure(unit.id, CANCELLED_DETAIL)
    try:
        host, port = split_endpoint(unit.target)
    except ValueError as exc:
        return UnitResult.failure(unit.id, str(exc))

    started = time.monotonic()
    try:
        with socket.create_connection((host, port), timeout=unit.timeout_seconds):
            pass
    except socket.timeout:
        return UnitResult.failure(unit.id, f"timed out after {unit.timeout_seconds:g}s")
    except OSError as exc:
        return UnitResult.failure(unit.id, exc.strerror or str(exc))
    elapsed_ms = (time.monotonic() - started) * 1000
    return UnitResult.success(unit.id, f"connected in {elapsed_ms:.0f}ms")
