"""
Systemd integration for MoonFRP services.

Every FRP config maps to one ``moonfrp-*`` unit. Operations shell out to
``systemctl`` with a hard timeout and are safe to call from worker threads.
"""

from __future__ import annotations

import logging
import re
import shutil
import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Optional

from moonfrp.engine.models import (
    FilterKind,
    Operation,
    SupervisorUnavailable,
    TargetFilter,
)
from moonfrp.engine.runners import CommandResult, run_command
from moonfrp.store.config_store import config_type_for

logger = logging.getLogger(__name__)

SERVICE_PREFIX = "moonfrp-"
LIST_TIMEOUT_SECONDS = 10.0
AVAILABILITY_TIMEOUT_SECONDS = 5.0

_SERVICE_RE = re.compile(r"^moonfrp-(server|client|visitor)[\w.@-]*$")


def service_name_for_config(path: Path) -> Optional[str]:
    """Map ``frps.toml`` / ``frpc-eu.toml`` / ``visitor1.toml`` to its unit name."""
    stem = Path(path).stem
    config_type = config_type_for(path)
    if config_type == "server":
        return "moonfrp-server"
    if config_type == "client":
        return f"moonfrp-client{stem[len('frpc'):]}"
    if config_type == "visitor":
        return f"moonfrp-visitor{stem[len('visitor'):]}"
    return None


class SystemdSupervisor:
    """Start, stop, restart and reload moonfrp units through systemctl."""

    def __init__(self, systemctl: str = "systemctl"):
        self.systemctl = systemctl
        self._available: Optional[bool] = None
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        """Check that systemctl exists and can talk to the manager."""
        with self._lock:
            if self._available is not None:
                return self._available
            if shutil.which(self.systemctl) is None:
                self._available = False
                return False
            result = run_command(
                [self.systemctl, "list-units", "--type=service", "--no-pager", "--no-legend"],
                timeout=AVAILABILITY_TIMEOUT_SECONDS,
            )
            # "Failed to connect to bus" means there is no usable manager
            self._available = result.ok and "Failed to connect to bus" not in result.stderr
            return self._available

    def ensure_available(self) -> None:
        if not self.is_available():
            raise SupervisorUnavailable(f"Service supervisor '{self.systemctl}' is not available")

    def _systemctl(
        self,
        args: list[str],
        deadline: float,
        cancel: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        remaining = max(deadline - time.monotonic(), 0.01)
        result = run_command([self.systemctl, *args], timeout=remaining, cancel=cancel)
        if result.timed_out and timeout is not None:
            # Report the unit budget, not what was left of it
            result = replace(result, timeout_seconds=timeout)
        return result

    def start(
        self, name: str, timeout: float = 8.0, cancel: Optional[threading.Event] = None
    ) -> CommandResult:
        deadline = time.monotonic() + timeout
        if self._systemctl(["is-active", "--quiet", name], deadline, cancel, timeout).ok:
            logger.debug("%s already running", name)
            return CommandResult(exit_code=0, stdout="already running")
        return self._systemctl(["start", name], deadline, cancel, timeout)

    def stop(
        self, name: str, timeout: float = 8.0, cancel: Optional[threading.Event] = None
    ) -> CommandResult:
        deadline = time.monotonic() + timeout
        if not self._systemctl(["is-active", "--quiet", name], deadline, cancel, timeout).ok:
            logger.debug("%s already stopped", name)
            return CommandResult(exit_code=0, stdout="already stopped")
        return self._systemctl(["stop", name], deadline, cancel, timeout)

    def restart(
        self, name: str, timeout: float = 8.0, cancel: Optional[threading.Event] = None
    ) -> CommandResult:
        return self._systemctl(["restart", name], time.monotonic() + timeout, cancel, timeout)

    def reload(
        self, name: str, timeout: float = 8.0, cancel: Optional[threading.Event] = None
    ) -> CommandResult:
        return self._systemctl(["reload", name], time.monotonic() + timeout, cancel, timeout)

    def run(
        self,
        operation: Operation,
        name: str,
        timeout: float = 8.0,
        cancel: Optional[threading.Event] = None,
    ) -> CommandResult:
        handlers = {
            Operation.START: self.start,
            Operation.STOP: self.stop,
            Operation.RESTART: self.restart,
            Operation.RELOAD: self.reload,
        }
        try:
            handler = handlers[Operation(operation)]
        except KeyError:
            raise ValueError(f"Unsupported service operation: {operation}") from None
        return handler(name, timeout=timeout, cancel=cancel)

    def service_states(self) -> dict[str, str]:
        """Map every loaded moonfrp unit to its ActiveState."""
        result = run_command(
            [self.systemctl, "list-units", "--type=service", "--all", "--no-pager", "--no-legend"],
            timeout=LIST_TIMEOUT_SECONDS,
        )
        if not result.ok:
            logger.warning("Could not list services: %s", result.detail)
            return {}
        states: dict[str, str] = {}
        for line in result.stdout.splitlines():
            tokens = line.split()
            # Failed units are prefixed with a bullet marker
            if tokens and tokens[0] in ("●", "*"):
                tokens = tokens[1:]
            if len(tokens) < 3:
                continue
            name = tokens[0].removesuffix(".service")
            if _SERVICE_RE.match(name):
                states[name] = tokens[2]
        return states

    def list_services(self) -> list[str]:
        return sorted(self.service_states())

    def resolve_targets(self, target: TargetFilter, index=None) -> list[str]:
        """Resolve a filter to a sorted list of unit names."""
        if target.kind is FilterKind.ALL:
            return self.list_services()
        if target.kind is FilterKind.STATUS:
            states = self.service_states()
            return sorted(name for name, state in states.items() if state == target.value)
        if target.kind is FilterKind.NAME:
            return [name for name in self.list_services() if (target.value or "") in name]
        if target.kind is FilterKind.TYPE:
            prefix = f"{SERVICE_PREFIX}{target.value}"
            return [name for name in self.list_services() if name.startswith(prefix)]
        if target.kind is FilterKind.TAG:
            if index is None:
                raise ValueError("Tag filters need the config index")
            names = {
                service_name_for_config(path)
                for path in index.query_by_tag(target.value or "", target.tag_value)
            }
            return sorted(name for name in names if name)
        raise ValueError(f"Unsupported service filter: {target}")
