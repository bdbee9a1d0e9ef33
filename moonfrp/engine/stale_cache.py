"""Stale-while-revalidate cache for expensive summaries.

Readers always get the last computed payload immediately. An expired
entry triggers at most one background recompute; only the very first
read of an empty entry computes synchronously.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from .models import CacheEntry, CacheError

logger = logging.getLogger(__name__)

Loader = Callable[[], Any]

DEFAULT_TTL_SECONDS = 5.0


class StaleCache:
    """Keyed cache entries, each with a loader and a TTL.

    Entries are persisted to ``<side_dir>/<key>.cache.json`` after every
    refresh and reused on startup while still within their TTL.
    """

    def __init__(
        self,
        side_dir: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.side_dir = Path(side_dir) if side_dir is not None else None
        self.clock = clock
        self._cond = threading.Condition(threading.Lock())
        self._entries: Dict[str, CacheEntry] = {}
        self._loaders: Dict[str, Loader] = {}

    def register(self, key: str, loader: Loader, ttl_seconds: float = DEFAULT_TTL_SECONDS) -> None:
        with self._cond:
            self._loaders[key] = loader
            entry = self._entries.get(key)
            if entry is None:
                self._entries[key] = self._load_side_file(key, ttl_seconds)
            else:
                entry.ttl_seconds = ttl_seconds

    def get(self, key: str) -> Tuple[Any, bool]:
        """Return ``(payload, stale)`` without blocking on a refresh.

        Raises CacheError when an empty entry cannot be computed.
        """
        with self._cond:
            entry = self._entry(key)
            while entry.empty and entry.refreshing:
                self._cond.wait()
            if not entry.empty:
                if self.clock() - entry.generated_at < entry.ttl_seconds:
                    return entry.payload, False
                if not entry.refreshing:
                    entry.refreshing = True
                    self._spawn_refresh(key)
                return entry.payload, True
            entry.refreshing = True

        return self._compute(key, raise_errors=True), False

    def force_refresh(self, key: str) -> Any:
        """Recompute now, waiting for any in-flight refresh first."""
        with self._cond:
            entry = self._entry(key)
            while entry.refreshing:
                self._cond.wait()
            entry.refreshing = True
        return self._compute(key, raise_errors=True)

    def snapshot(self, key: str) -> CacheEntry:
        with self._cond:
            return replace(self._entry(key))

    def is_refreshing(self, key: str) -> bool:
        with self._cond:
            return self._entry(key).refreshing

    def wait_idle(self, key: str, timeout: Optional[float] = None) -> bool:
        """Block until no refresh is running for ``key``."""
        with self._cond:
            entry = self._entry(key)
            return self._cond.wait_for(lambda: not entry.refreshing, timeout=timeout)

    def _entry(self, key: str) -> CacheEntry:
        try:
            return self._entries[key]
        except KeyError:
            raise KeyError(f"Cache key '{key}' is not registered") from None

    def _spawn_refresh(self, key: str) -> None:
        thread = threading.Thread(
            target=self._compute,
            args=(key,),
            name=f"moonfrp-cache-{key}",
            daemon=True,
        )
        thread.start()

    def _compute(self, key: str, raise_errors: bool = False) -> Any:
        """Run the loader; the caller has already set ``refreshing``."""
        loader = self._loaders[key]
        try:
            payload = loader()
            generated_at = self.clock()
        except Exception as exc:
            if not raise_errors:
                logger.warning("Background refresh of '%s' failed: %s", key, exc)
            with self._cond:
                self._entries[key].refreshing = False
                self._cond.notify_all()
            if raise_errors:
                raise CacheError(f"Cannot compute '{key}': {exc}") from exc
            return None

        try:
            self._persist(key, payload, generated_at, self._entries[key].ttl_seconds)
        except OSError as exc:
            logger.warning("Cannot persist cache entry '%s': %s", key, exc)

        with self._cond:
            entry = self._entries[key]
            if generated_at >= entry.generated_at:
                entry.payload = payload
                entry.generated_at = generated_at
            entry.refreshing = False
            self._cond.notify_all()
            logger.debug("Refreshed cache entry '%s'", key)
            return entry.payload

    def _side_file(self, key: str) -> Optional[Path]:
        if self.side_dir is None:
            return None
        return self.side_dir / f"{key}.cache.json"

    def _persist(self, key: str, payload: Any, generated_at: float, ttl_seconds: float) -> None:
        path = self._side_file(key)
        if path is None:
            return
        data = {"payload": payload, "generated_at": generated_at, "ttl_seconds": ttl_seconds}
        try:
            text = json.dumps(data, indent=2, sort_keys=True)
        except TypeError as exc:
            logger.warning("Cache entry '%s' is not JSON serializable: %s", key, exc)
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)

    def _load_side_file(self, key: str, ttl_seconds: float) -> CacheEntry:
        entry = CacheEntry(ttl_seconds=ttl_seconds)
        path = self._side_file(key)
        if path is None or not path.exists():
            return entry
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CacheError(f"Cannot read cache file {path}: {exc}") from exc
        try:
            data = json.loads(text)
            payload = data["payload"]
            generated_at = float(data["generated_at"])
            stored_ttl = float(data.get("ttl_seconds", ttl_seconds))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring corrupt cache file %s: %s", path, exc)
            return entry
        # The stricter of the stored and the registered TTL wins
        if self.clock() - generated_at < min(stored_ttl, ttl_seconds):
            entry.payload = payload
            entry.generated_at = generated_at
        return entry
