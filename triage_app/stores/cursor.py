"""Per-workflow persistent string state (watermarks, processed sets, diff snapshots).

The store enforces no schema: detectors serialize whatever their cursor needs.
There is no lock spanning keys; writers of one key never block readers of another.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Callable
from pathlib import Path

from triage_app.core.config import OperatorConfig
from triage_app.core.errors import ConfigError, CursorStoreError

logger = logging.getLogger(__name__)


class CursorStore(ABC):
    @abstractmethod
    def get(self, key: str) -> str:
        """Return the stored value, or "" when the key is unset."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Persist ``value`` under ``key``; raises CursorStoreError on failure."""


class MemoryCursorStore(CursorStore):
    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})
        self._locks: defaultdict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[key]

    def get(self, key: str) -> str:
        return self._data.get(key, "")

    def set(self, key: str, value: str) -> None:
        with self._lock_for(key):
            self._data[key] = value

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class SqliteCursorStore(CursorStore):
    """Durable store; one short-lived connection per call, WAL journal."""

    def __init__(self, path: str | Path, timeout: float = 5.0):
        self.path = Path(path)
        self.timeout = timeout
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with self._connect() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("CREATE TABLE IF NOT EXISTS state (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        except sqlite3.Error as exc:
            raise CursorStoreError(f"cannot initialize cursor store {self.path}: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.path), timeout=self.timeout)

    def get(self, key: str) -> str:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM state WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise CursorStoreError(f"cannot read {key!r}: {exc}") from exc
        finally:
            conn.close()
        return row[0] if row else ""

    def set(self, key: str, value: str) -> None:
        logger.info("Setting %s=%r", key, value)
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO state (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, value),
                )
        except sqlite3.Error as exc:
            raise CursorStoreError(f"cannot write {key!r}: {exc}") from exc
        finally:
            conn.close()


class DryRunCursorStore(CursorStore):
    """Reads pass through; writes are logged (and announced) but never persisted."""

    def __init__(self, delegate: CursorStore, notify: Callable[[str], None] | None = None):
        self.delegate = delegate
        self.notify = notify

    def get(self, key: str) -> str:
        return self.delegate.get(key)

    def set(self, key: str, value: str) -> None:
        msg = f"Faking cursor set({key!r}, {value!r})"
        logger.info(msg)
        if self.notify is not None:
            try:
                self.notify(msg)
            except Exception as exc:
                logger.warning("Failed to announce faked cursor write for %s: %s", key, exc)


class ScopedCursorStore(CursorStore):
    def __init__(self, delegate: CursorStore, prefix: str):
        self.delegate = delegate
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}.{key}" if self.prefix else key

    def get(self, key: str) -> str:
        return self.delegate.get(self._key(key))

    def set(self, key: str, value: str) -> None:
        self.delegate.set(self._key(key), value)


def scoped(store: CursorStore, prefix: str) -> CursorStore:
    return ScopedCursorStore(store, prefix)


def build_cursor_store(config: OperatorConfig) -> CursorStore:
    """Select the backend named by ``stateBackend``; unknown names fail at startup."""
    backend = config.state_backend
    if backend == "memory":
        return MemoryCursorStore()
    if backend == "sqlite":
        if not config.state_path:
            raise ConfigError("statePath is required for the sqlite state backend")
        return SqliteCursorStore(config.state_path)
    raise ConfigError(f"unknown state backend {backend!r}")
