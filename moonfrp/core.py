from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from moonfrp.config import Settings, load_settings
from moonfrp.engine.transaction import TransactionManager
from moonfrp.store import BackupManager, ConfigIndex, ConfigStore, ConfigValidator
from moonfrp.supervisor import SystemdSupervisor

MOONFRP_VERSION = "2.1.0"

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_MAX_FAILURES = 254
EXIT_ENGINE_ERROR = 255
EXIT_INTERRUPTED = 130


def failure_exit_code(failures: int) -> int:
    """Exit status for ``failures`` failed units, capped below the error code."""
    return min(failures, EXIT_MAX_FAILURES)


@dataclass
class Runtime:
    """Wired-up collaborators for one CLI invocation."""

    settings: Settings
    store: ConfigStore
    index: ConfigIndex
    validator: ConfigValidator
    backups: BackupManager
    supervisor: SystemdSupervisor

    def transactions(self) -> TransactionManager:
        return TransactionManager(
            self.store,
            self.validator,
            self.backups,
            index=self.index,
            scratch_root=self.settings.data_dir / "tmp",
        )

    def close(self) -> None:
        self.index.close()


def open_runtime(settings: Settings | None = None, settings_path: Path | None = None) -> Runtime:
    """
    Build the runtime and bring the index up to date with the config dir.
    """
    if settings is None:
        settings = load_settings(settings_path)
    index = ConfigIndex(settings.index_db_path)
    index.refresh(settings.config_dir)
    return Runtime(
        settings=settings,
        store=ConfigStore(settings.config_dir, index=index),
        index=index,
        validator=ConfigValidator(),
        backups=BackupManager(settings.backup_dir, settings.max_backups_per_file),
        supervisor=SystemdSupervisor(settings.systemctl),
    )
