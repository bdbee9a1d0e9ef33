"""Timestamped backups of config files, rotated per file."""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from datetime import datetime
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write(path: Path, data: bytes) -> None:
    """Replace ``path`` with ``data`` via a sibling temp file and ``os.replace``."""
    path = Path(path)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        tmp.write_bytes(data)
        if path.exists():
            shutil.copymode(path, tmp)
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


class BackupManager:
    """Keeps ``<name>.<YYYYmmdd-HHMMSS-ffffff>.bak`` copies in one directory."""

    def __init__(self, backup_dir: Path, max_per_file: int = 10):
        self.backup_dir = Path(backup_dir)
        self.max_per_file = max_per_file

    def backup(self, path: Path) -> Path:
        """Copy ``path`` into the backup dir and rotate old copies."""
        path = Path(path)
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        backup_path = self.backup_dir / f"{path.name}.{timestamp}.bak"
        shutil.copy2(path, backup_path)
        logger.debug("Backed up %s to %s", path, backup_path)
        self._rotate(path.name)
        return backup_path

    def list_backups(self, path: Path) -> list[Path]:
        """Backups of ``path``, newest first."""
        if not self.backup_dir.is_dir():
            return []
        name = Path(path).name
        return sorted(self.backup_dir.glob(f"{name}.*.bak"), reverse=True)

    def restore(self, backup_path: Path, target: Path) -> None:
        """Atomically put a backup's content back in place of ``target``."""
        atomic_write(Path(target), Path(backup_path).read_bytes())
        logger.info("Restored %s from %s", target, backup_path)

    def _rotate(self, name: str) -> None:
        for stale in self.list_backups(Path(name))[self.max_per_file :]:
            try:
                stale.unlink()
            except OSError as exc:
                logger.warning("Could not remove old backup %s: %s", stale, exc)
