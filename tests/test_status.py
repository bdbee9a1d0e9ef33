"""Quick status summary and FRP version detection."""

from pathlib import Path

import pytest
from rich.console import Console

from moonfrp.config import load_settings
from moonfrp.status import (
    NOT_INSTALLED,
    STATUS_KEY,
    build_status_cache,
    detect_frp_version,
    generate_quick_status,
    render_status,
)
from moonfrp.store import ConfigIndex
from moonfrp.supervisor import SystemdSupervisor
from tests._utils.frp import client_toml, server_toml

# These tests start real subprocesses; subprocess waits call time.sleep.
pytestmark = pytest.mark.allow_sleep


def _fake_binary(path: Path, output: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!/bin/sh\necho '{output}'\n")
    path.chmod(0o755)


def test_version_from_frps_binary(tmp_path: Path):
    _fake_binary(tmp_path / "frp" / "frps", "0.58.1")
    assert detect_frp_version(tmp_path / "frp") == "0.58.1"


def test_version_falls_back_to_frpc_then_file(tmp_path: Path):
    frp_dir = tmp_path / "frp"
    frp_dir.mkdir()
    (frp_dir / ".version").write_text("0.52.0\n")
    assert detect_frp_version(frp_dir) == "0.52.0"

    _fake_binary(frp_dir / "frpc", "frpc version 0.60.0")
    assert detect_frp_version(frp_dir) == "0.60.0"


def test_version_not_installed(tmp_path: Path):
    assert detect_frp_version(tmp_path / "missing") == NOT_INSTALLED


def test_quick_status_counts(config_dir: Path, tmp_path: Path, fake_systemd):
    (config_dir / "frps.toml").write_text(server_toml())
    (config_dir / "frpc-a.toml").write_text(client_toml())
    (config_dir / "frpc-b.toml").write_text(client_toml())
    index = ConfigIndex(tmp_path / "index.db")
    index.rebuild(config_dir)
    fake_systemd.add("moonfrp-server", "active")
    fake_systemd.add("moonfrp-client-a", "active")
    fake_systemd.add("moonfrp-client-b", "failed")

    payload = generate_quick_status(
        index, SystemdSupervisor(str(fake_systemd.path)), lambda: "0.58.1"
    )

    assert payload == {
        "frp_version": "0.58.1",
        "total_configs": 3,
        "total_proxies": 2,
        "active_services": 2,
        "failed_services": 1,
        "inactive_services": 0,
    }


def test_quick_status_without_systemd(config_dir: Path, tmp_path: Path):
    index = ConfigIndex(tmp_path / "index.db")
    supervisor = SystemdSupervisor(str(tmp_path / "no-systemctl"))

    payload = generate_quick_status(index, supervisor, lambda: NOT_INSTALLED)

    assert payload["active_services"] == 0
    assert payload["total_configs"] == 0


def test_status_cache_persists_payload(config_dir: Path, tmp_path: Path):
    settings = load_settings()
    index = ConfigIndex(settings.index_db_path)
    supervisor = SystemdSupervisor(str(tmp_path / "no-systemctl"))

    cache = build_status_cache(settings, index, supervisor)
    payload, stale = cache.get(STATUS_KEY)

    assert not stale
    assert payload["frp_version"] == NOT_INSTALLED
    assert (settings.cache_dir / "status.cache.json").exists()
    assert (settings.cache_dir / "frp_version.cache.json").exists()


def test_render_status_marks_stale_data():
    console = Console(record=True, width=80)
    payload = {"frp_version": "0.58.1", "total_configs": 3, "active_services": 2}

    render_status(console, payload, stale=True)
    text = console.export_text()

    assert "0.58.1" in text
    assert "Stale data" in text

    render_status(console, payload, stale=True, refreshing=True)
    assert "Refreshing..." in console.export_text()
