"""Settings loader for MoonFRP.

Precedence, lowest first: built-in defaults, the TOML settings file,
``MOONFRP_*`` environment variables.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "~/.moonfrp/moonfrp.toml"
DEFAULT_CONFIG_DIR = "/etc/frp"
DEFAULT_DATA_DIR = "~/.moonfrp"
DEFAULT_FRP_DIR = "/opt/frp"
DEFAULT_SERVICE_PARALLEL = 10
DEFAULT_PROBE_PARALLEL = 20
DEFAULT_PROBE_TIMEOUT = 1.0
DEFAULT_SERVICE_TIMEOUT = 8.0
DEFAULT_STATUS_TTL = 5
DEFAULT_MAX_BACKUPS = 10


class SettingsError(ValueError):
    """Raised when the settings file exists but cannot be parsed."""


@dataclass(frozen=True)
class Settings:
    """Runtime settings, treated as immutable once loaded."""

    config_dir: Path
    data_dir: Path
    backup_dir: Path
    index_db_path: Path
    log_dir: Path
    frp_dir: Path
    log_level: str = "INFO"
    service_parallel: int = DEFAULT_SERVICE_PARALLEL
    probe_parallel: int = DEFAULT_PROBE_PARALLEL
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT
    service_timeout_seconds: float = DEFAULT_SERVICE_TIMEOUT
    status_cache_ttl_seconds: int = DEFAULT_STATUS_TTL
    max_backups_per_file: int = DEFAULT_MAX_BACKUPS
    systemctl: str = "systemctl"

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "cache"


def _expand(path: str | Path) -> Path:
    return Path(os.path.expanduser(str(path))).resolve()


def _positive_int(raw: Any, default: int) -> int:
    if raw is None:
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return value if value > 0 else default


def _positive_float(raw: Any, default: float) -> float:
    if raw is None:
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        return default
    return value if value > 0 else default


def _read_settings_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise SettingsError(f"Malformed settings file {path}: {exc}") from exc
    # Accept both a flat file and one with a [moonfrp] table.
    section = raw.get("moonfrp")
    return dict(section) if isinstance(section, dict) else raw


def load_settings(
    path: Optional[str | Path] = None, env: Optional[Dict[str, str]] = None
) -> Settings:
    """Load settings from the TOML file and the environment."""
    env = dict(os.environ) if env is None else env
    if path is None:
        path = env.get("MOONFRP_SETTINGS", DEFAULT_SETTINGS_FILE)
    raw = _read_settings_file(_expand(path))

    def get(key: str, env_key: str, default: Any) -> Any:
        if env_key in env and env[env_key] != "":
            return env[env_key]
        return raw.get(key, default)

    data_dir = _expand(get("data_dir", "MOONFRP_DATA_DIR", DEFAULT_DATA_DIR))
    ttl_raw = env.get("STATUS_CACHE_TTL") or env.get("MOONFRP_STATUS_TTL")
    if ttl_raw is None:
        ttl_raw = raw.get("status_cache_ttl_seconds")

    settings = Settings(
        config_dir=_expand(get("config_dir", "MOONFRP_CONFIG_DIR", DEFAULT_CONFIG_DIR)),
        data_dir=data_dir,
        backup_dir=_expand(get("backup_dir", "MOONFRP_BACKUP_DIR", data_dir / "backups")),
        index_db_path=_expand(get("index_db_path", "MOONFRP_INDEX_DB_PATH", data_dir / "index.db")),
        log_dir=_expand(get("log_dir", "MOONFRP_LOG_DIR", data_dir / "logs")),
        frp_dir=_expand(get("frp_dir", "MOONFRP_FRP_DIR", DEFAULT_FRP_DIR)),
        log_level=str(get("log_level", "MOONFRP_LOG_LEVEL", "INFO")).upper(),
        service_parallel=_positive_int(
            get("service_parallel", "MOONFRP_SERVICE_PARALLEL", None), DEFAULT_SERVICE_PARALLEL
        ),
        probe_parallel=_positive_int(
            get("probe_parallel", "MOONFRP_PROBE_PARALLEL", None), DEFAULT_PROBE_PARALLEL
        ),
        probe_timeout_seconds=_positive_float(
            get("probe_timeout_seconds", "MOONFRP_PROBE_TIMEOUT", None), DEFAULT_PROBE_TIMEOUT
        ),
        service_timeout_seconds=_positive_float(
            get("service_timeout_seconds", "MOONFRP_SERVICE_TIMEOUT", None),
            DEFAULT_SERVICE_TIMEOUT,
        ),
        status_cache_ttl_seconds=_positive_int(ttl_raw, DEFAULT_STATUS_TTL),
        max_backups_per_file=_positive_int(raw.get("max_backups_per_file"), DEFAULT_MAX_BACKUPS),
        systemctl=str(get("systemctl", "MOONFRP_SYSTEMCTL", "systemctl")),
    )
    logger.debug("Loaded settings: %s", settings)
    return settings
