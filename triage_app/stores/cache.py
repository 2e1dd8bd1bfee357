"""Revision-addressed key/value cache shielding the tracker from redundant fetches.

Each cache key is its own namespace holding two fields, ``revision`` and
``data``. A lookup only hits when the stored revision equals the requested one;
anything else (absent key, different revision, closed store, storage error) is a
miss and the caller fetches from the tracker, then calls :meth:`CacheStore.set`.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache (
    namespace TEXT PRIMARY KEY,
    revision  BLOB NOT NULL,
    data      BLOB NOT NULL
)
"""


class CacheStore:
    def __init__(self, path: str | Path = ":memory:", timeout: float = 5.0):
        self.path = str(path)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    # ------------------ Lifecycle ------------------
    def open(self) -> CacheStore:
        if self._conn is not None:
            return self
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=self.timeout, check_same_thread=False)
        conn.execute(_SCHEMA)
        conn.commit()
        self._conn = conn
        logger.info("Opened cache at %s", self.path)
        return self

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> CacheStore:
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------ Access ------------------
    def get(self, key: str, revision: str) -> bytes | None:
        if not revision:
            return None
        with self._lock:
            if self._conn is None:
                return None
            try:
                row = self._conn.execute(
                    "SELECT revision, data FROM cache WHERE namespace = ?", (key,)
                ).fetchone()
            except sqlite3.Error as exc:
                logger.warning("Cache lookup for %r failed: %s", key, exc)
                return None
        if row is None:
            return None
        stored_revision, data = row
        if bytes(stored_revision) != revision.encode("utf-8"):
            return None
        logger.debug("Cache hit for %r revision %r", key, revision)
        return bytes(data)

    def set(self, key: str, revision: str, payload: bytes) -> None:
        if not revision:
            return
        with self._lock:
            if self._conn is None:
                return
            logger.debug("Caching %r at revision %r", key, revision)
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO cache (namespace, revision, data) VALUES (?, ?, ?) "
                        "ON CONFLICT(namespace) DO UPDATE SET revision = excluded.revision, data = excluded.data",
                        (key, revision.encode("utf-8"), bytes(payload)),
                    )
            except sqlite3.Error as exc:
                logger.warning("Caching %r failed: %s", key, exc)
