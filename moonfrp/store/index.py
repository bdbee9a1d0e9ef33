from __future__ import annotations

import hashlib
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

from moonfrp.engine.models import IndexUnavailable
from moonfrp.store.config_store import config_type_for, get_field, load_document

logger = logging.getLogger(__name__)

SCHEMA = """
PRAGMA journal_mode = WAL;
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS config_index (
    path TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    config_type TEXT NOT NULL,
    server_addr TEXT,
    server_port INTEGER,
    bind_port INTEGER,
    proxy_count INTEGER NOT NULL DEFAULT 0,
    token_hash TEXT,
    parse_error TEXT,
    mtime REAL NOT NULL,
    indexed_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_config_index_type
    ON config_index(config_type);

CREATE TABLE IF NOT EXISTS config_tags (
    path TEXT NOT NULL,
    tag_key TEXT NOT NULL,
    tag_value TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (path, tag_key),
    FOREIGN KEY (path) REFERENCES config_index(path) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_config_tags_key
    ON config_tags(tag_key, tag_value);
"""


@dataclass(frozen=True)
class IndexedConfig:
    path: Path
    name: str
    config_type: str
    server_addr: Optional[str]
    server_port: Optional[int]
    bind_port: Optional[int]
    proxy_count: int
    parse_error: Optional[str]


def _int_or_none(value) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


class ConfigIndex:
    """SQLite index of config metadata and tags.

    One connection is shared across threads behind a lock, so the status
    cache can query from its refresh thread.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(SCHEMA)
        except (OSError, sqlite3.Error) as exc:
            raise IndexUnavailable(f"Cannot open config index {self.path}: {exc}") from exc

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise IndexUnavailable(f"Config index error: {exc}") from exc
            except Exception:
                self._conn.rollback()
                raise

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise IndexUnavailable(f"Config index error: {exc}") from exc

    def reindex(self, path: Path) -> IndexedConfig:
        """Parse one config and upsert its row. Tags are preserved."""
        path = Path(path).resolve()
        body = path.read_text(encoding="utf-8")
        parse_error = None
        try:
            document = load_document(body)
        except ValueError as exc:
            document = {}
            parse_error = str(exc)
            logger.warning("Indexed %s with parse error: %s", path, exc)

        token = get_field(document, "auth.token")
        proxies = document.get("proxies") or document.get("visitors") or []
        entry = IndexedConfig(
            path=path,
            name=path.name,
            config_type=config_type_for(path),
            server_addr=document.get("serverAddr") if isinstance(document.get("serverAddr"), str) else None,
            server_port=_int_or_none(document.get("serverPort")),
            bind_port=_int_or_none(document.get("bindPort")),
            proxy_count=len(proxies) if isinstance(proxies, list) else 0,
            parse_error=parse_error,
        )
        token_hash = hashlib.sha256(token.encode()).hexdigest() if isinstance(token, str) else None
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO config_index (
                    path, name, config_type, server_addr, server_port, bind_port,
                    proxy_count, token_hash, parse_error, mtime, indexed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    name = excluded.name,
                    config_type = excluded.config_type,
                    server_addr = excluded.server_addr,
                    server_port = excluded.server_port,
                    bind_port = excluded.bind_port,
                    proxy_count = excluded.proxy_count,
                    token_hash = excluded.token_hash,
                    parse_error = excluded.parse_error,
                    mtime = excluded.mtime,
                    indexed_at = excluded.indexed_at
                """,
                (
                    str(path),
                    entry.name,
                    entry.config_type,
                    entry.server_addr,
                    entry.server_port,
                    entry.bind_port,
                    entry.proxy_count,
                    token_hash,
                    parse_error,
                    path.stat().st_mtime,
                    time.time(),
                ),
            )
        return entry

    def remove(self, path: Path) -> None:
        with self.transaction():
            self._conn.execute(
                "DELETE FROM config_index WHERE path = ?", (str(Path(path).resolve()),)
            )

    def refresh(self, config_dir: Path) -> int:
        """Reindex files whose mtime changed and drop rows for deleted files."""
        config_dir = Path(config_dir).resolve()
        known = {
            row["path"]: row["mtime"]
            for row in self._query("SELECT path, mtime FROM config_index")
        }
        present = sorted(config_dir.glob("*.toml")) if config_dir.is_dir() else []
        changed = 0
        for path in present:
            if known.get(str(path)) != path.stat().st_mtime:
                self.reindex(path)
                changed += 1
        present_keys = {str(p) for p in present}
        for stale in set(known) - present_keys:
            if Path(stale).parent == config_dir:
                self.remove(Path(stale))
                changed += 1
        return changed

    def rebuild(self, config_dir: Path) -> int:
        """Reindex every config in ``config_dir``; returns the count indexed."""
        config_dir = Path(config_dir).resolve()
        present = sorted(config_dir.glob("*.toml")) if config_dir.is_dir() else []
        keep = {str(p) for p in present}
        for row in self._query("SELECT path FROM config_index"):
            if row["path"] not in keep and Path(row["path"]).parent == config_dir:
                self.remove(Path(row["path"]))
        for path in present:
            self.reindex(path)
        logger.info("Rebuilt config index from %s: %d configs", config_dir, len(present))
        return len(present)

    def get(self, path: Path) -> Optional[IndexedConfig]:
        rows = self._query(
            "SELECT * FROM config_index WHERE path = ?", (str(Path(path).resolve()),)
        )
        return _row_to_entry(rows[0]) if rows else None

    def query_by_type(self, config_type: str) -> list[Path]:
        rows = self._query(
            "SELECT path FROM config_index WHERE config_type = ? ORDER BY path", (config_type,)
        )
        return [Path(row["path"]) for row in rows]

    def query_by_tag(self, key: str, value: Optional[str] = None) -> list[Path]:
        if value is None:
            rows = self._query(
                "SELECT path FROM config_tags WHERE tag_key = ? ORDER BY path", (key,)
            )
        else:
            rows = self._query(
                "SELECT path FROM config_tags WHERE tag_key = ? AND tag_value = ? ORDER BY path",
                (key, value),
            )
        return [Path(row["path"]) for row in rows]

    def resolve_endpoint(self, path: Path) -> Optional[tuple[str, int]]:
        entry = self.get(path)
        if entry is None or not entry.server_addr or entry.server_port is None:
            return None
        return entry.server_addr, entry.server_port

    def add_tag(self, path: Path, key: str, value: str = "") -> None:
        path = Path(path).resolve()
        if self.get(path) is None:
            self.reindex(path)
        with self.transaction():
            self._conn.execute(
                """
                INSERT INTO config_tags (path, tag_key, tag_value) VALUES (?, ?, ?)
                ON CONFLICT(path, tag_key) DO UPDATE SET tag_value = excluded.tag_value
                """,
                (str(path), key, value),
            )

    def remove_tag(self, path: Path, key: str) -> None:
        with self.transaction():
            self._conn.execute(
                "DELETE FROM config_tags WHERE path = ? AND tag_key = ?",
                (str(Path(path).resolve()), key),
            )

    def tags(self, path: Path) -> dict[str, str]:
        rows = self._query(
            "SELECT tag_key, tag_value FROM config_tags WHERE path = ? ORDER BY tag_key",
            (str(Path(path).resolve()),),
        )
        return {row["tag_key"]: row["tag_value"] for row in rows}

    def stats(self) -> tuple[int, int]:
        """Return ``(total_configs, total_proxies)``."""
        rows = self._query("SELECT COUNT(*), COALESCE(SUM(proxy_count), 0) FROM config_index")
        return int(rows[0][0]), int(rows[0][1])


def _row_to_entry(row: sqlite3.Row) -> IndexedConfig:
    return IndexedConfig(
        path=Path(row["path"]),
        name=row["name"],
        config_type=row["config_type"],
        server_addr=row["server_addr"],
        server_port=row["server_port"],
        bind_port=row["bind_port"],
        proxy_count=row["proxy_count"],
        parse_error=row["parse_error"],
    )
