"""
cache/store.py -- SQLite-backed pull-through cache for third-party integrations.

Fronts slow upstreams (Linear, Notion) with a fixed TTL (default 5 minutes).
Each entry is {timestamp, data} keyed by integration name.

get_cached(key, fetcher, fallback):
  - fresh entry      -> returned, upstream never called
  - missing / stale  -> fetcher() called once; result stored and returned
  - fetcher raises   -> stale entry served if one exists; otherwise fallback
                        (the typed empty result) is stored and returned, or
                        the error propagates when no fallback was given

With a fallback the entry is always repopulated, so one wave of concurrent
callers costs the upstream exactly one call, whether it succeeds or fails.

A per-key lock makes concurrent callers of an expired key wait for the one
in-flight fetch and reuse its result, instead of each hitting the upstream.

Usage:
    cache = IntegrationCache()
    tasks = cache.get_cached("linear", lambda: fetch_linear_tasks(api_key), fallback=[])
"""

import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger("gateway.cache")

_DEFAULT_DB = Path(__file__).parent / "integration_cache.db"
_DEFAULT_TTL = 5 * 60  # 5 minutes in seconds

_DDL = """
CREATE TABLE IF NOT EXISTS integration_cache (
    key         TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    cached_at   REAL NOT NULL
);
"""


class IntegrationCache:
    def __init__(self, db_path: Path | str = _DEFAULT_DB, ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()
        # sqlite3 connections are not safe for concurrent use across threads.
        self._db_lock = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Raw entries
    # ------------------------------------------------------------------

    def entry(self, key: str) -> Optional[tuple[float, Any]]:
        """Return (cached_at, data) for key regardless of age, or None."""
        with self._db_lock:
            row = self._conn.execute(
                "SELECT data, cached_at FROM integration_cache WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        data, cached_at = row
        return cached_at, json.loads(data)

    def get(self, key: str) -> Optional[Any]:
        """Return cached data for key if it exists and hasn't expired."""
        entry = self.entry(key)
        if entry is None or not self._is_fresh(entry[0]):
            return None
        return entry[1]

    def set(self, key: str, data: Any) -> None:
        """Store data for key, replacing any existing entry."""
        with self._db_lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO integration_cache (key, data, cached_at) VALUES (?, ?, ?)",
                (key, json.dumps(data), time.time()),
            )
            self._conn.commit()

    def _is_fresh(self, cached_at: float) -> bool:
        return time.time() - cached_at < self.ttl

    def _lock_for(self, key: str) -> threading.Lock:
        with self._key_locks_guard:
            return self._key_locks.setdefault(key, threading.Lock())

    # ------------------------------------------------------------------
    # Pull-through
    # ------------------------------------------------------------------

    def get_cached(self, key: str, fetcher: Callable[[], Any], fallback: Optional[Any] = None) -> Any:
        """Return fresh data for key, fetching through at most once per wave.

        When the fetch fails with nothing cached, fallback (the typed empty
        result, e.g. []) is stored and returned so the callers queued behind
        this one, and the rest of the TTL window, reuse it instead of hitting
        the failing upstream again. With no fallback the error propagates.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        with self._lock_for(key):
            # Another caller may have refreshed the entry while we waited.
            entry = self.entry(key)
            if entry is not None and self._is_fresh(entry[0]):
                return entry[1]
            try:
                data = fetcher()
            except Exception as e:
                if entry is not None:
                    logger.warning("Upstream %s failed, serving stale data: %s", key, e)
                    return entry[1]
                if fallback is None:
                    raise
                logger.warning("Upstream %s failed with nothing cached, storing empty result: %s", key, e)
                data = fallback
            self.set(key, data)
            return data

    def status(self, key: str) -> dict[str, Any]:
        """Freshness snapshot for the status endpoint."""
        entry = self.entry(key)
        if entry is None:
            return {"cached": False, "fresh": False, "cachedAt": None}
        return {"cached": True, "fresh": self._is_fresh(entry[0]), "cachedAt": entry[0]}

    def close(self) -> None:
        self._conn.close()
