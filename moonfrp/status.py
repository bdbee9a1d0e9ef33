"""
Quick status summary.

The summary is cheap to render but expensive to compute (it scans the
index and asks systemd for every unit), so it is served through the
stale-while-revalidate cache.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Callable

from rich.console import Console
from rich.table import Table

from moonfrp.engine.runners import run_command
from moonfrp.engine.stale_cache import StaleCache

logger = logging.getLogger(__name__)

STATUS_KEY = "status"
FRP_VERSION_KEY = "frp_version"
FRP_VERSION_TTL_SECONDS = 3600
NOT_INSTALLED = "not installed"
VERSION_TIMEOUT_SECONDS = 2.0

_VERSION_RE = re.compile(r"\d+\.\d+(\.\d+)?")


def detect_frp_version(frp_dir: Path) -> str:
    """Ask ``frps``/``frpc`` for their version, then fall back to ``.version``."""
    frp_dir = Path(frp_dir)
    for binary in ("frps", "frpc"):
        path = frp_dir / binary
        if not path.is_file():
            continue
        result = run_command([str(path), "--version"], timeout=VERSION_TIMEOUT_SECONDS)
        match = _VERSION_RE.search(result.stdout) if result.ok else None
        if match:
            return match.group(0)
    version_file = frp_dir / ".version"
    if version_file.is_file():
        text = version_file.read_text(encoding="utf-8").strip()
        if text:
            return text
    return NOT_INSTALLED


def generate_quick_status(index, supervisor, frp_version: Callable[[], str]) -> dict[str, Any]:
    """Collect the figures shown by ``moonfrp status``."""
    total_configs, total_proxies = index.stats()
    states = supervisor.service_states() if supervisor.is_available() else {}
    counts = {"active": 0, "failed": 0, "inactive": 0}
    for state in states.values():
        if state in counts:
            counts[state] += 1
        else:
            counts["inactive"] += 1
    return {
        "frp_version": frp_version(),
        "total_configs": total_configs,
        "total_proxies": total_proxies,
        "active_services": counts["active"],
        "failed_services": counts["failed"],
        "inactive_services": counts["inactive"],
    }


def build_status_cache(settings, index, supervisor) -> StaleCache:
    """Register the status and FRP version entries on a fresh cache."""
    cache = StaleCache(side_dir=settings.cache_dir)

    def frp_version() -> str:
        version, _ = cache.get(FRP_VERSION_KEY)
        return version

    cache.register(
        FRP_VERSION_KEY,
        lambda: detect_frp_version(settings.frp_dir),
        ttl_seconds=FRP_VERSION_TTL_SECONDS,
    )
    cache.register(
        STATUS_KEY,
        lambda: generate_quick_status(index, supervisor, frp_version),
        ttl_seconds=settings.status_cache_ttl_seconds,
    )
    return cache


def render_status(
    console: Console, payload: dict[str, Any], stale: bool = False, refreshing: bool = False
) -> None:
    table = Table(title="MoonFRP Status", show_header=False)
    table.add_column("Item", style="bold")
    table.add_column("Value")
    table.add_row("FRP Version", str(payload.get("frp_version", NOT_INSTALLED)))
    table.add_row("Configs", str(payload.get("total_configs", 0)))
    table.add_row("Proxies", str(payload.get("total_proxies", 0)))
    table.add_row("Active", f"[green]{payload.get('active_services', 0)}[/green]")
    table.add_row("Failed", f"[red]{payload.get('failed_services', 0)}[/red]")
    table.add_row("Inactive", f"[yellow]{payload.get('inactive_services', 0)}[/yellow]")
    console.print(table)
    if refreshing:
        console.print("[dim]Refreshing...[/dim]")
    elif stale:
        console.print("[yellow]Stale data[/yellow]")
