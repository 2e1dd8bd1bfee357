"""Shared detector protocol: load cursor -> detect -> (mark succeeded) -> commit."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from triage_app.core.models import Condition, RecordModel
from triage_app.core.tracker import Tracker
from triage_app.stores.cursor import CursorStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DetectedItem:
    """One actionable record plus whatever the detector learned about it."""

    record: RecordModel
    payload: Any = None


@dataclass(slots=True)
class Detection:
    cursor: Any
    next_cursor: Any
    items: list[DetectedItem] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)
    candidates: int = 0


class Detector(ABC):
    """A change-detection strategy persisted under one cursor key.

    Subclasses define the cursor codec (``default``/``decode``/``encode``), the
    query restriction and the classification of candidates.
    """

    key = "cursor"

    @abstractmethod
    def default(self) -> Any: ...

    @abstractmethod
    def decode(self, raw: str) -> Any: ...

    @abstractmethod
    def encode(self, cursor: Any) -> str: ...

    @abstractmethod
    def detect(self, records: Sequence[RecordModel], cursor: Any, tracker: Tracker) -> Detection: ...

    def candidate_filter(self, cursor: Any) -> list[Condition]:
        return []

    def load(self, store: CursorStore) -> Any:
        """Read the cursor; an unset or undecodable value yields the default."""
        raw = store.get(self.key)
        if not raw:
            return self.default()
        try:
            return self.decode(raw)
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Ignoring undecodable %r cursor %r: %s", self.key, raw[:200], exc)
            return self.default()

    def mark_succeeded(self, detection: Detection, item: DetectedItem) -> None:
        """Hook called after ``item``'s side effect succeeded."""

    def commit(self, store: CursorStore, detection: Detection) -> None:
        store.set(self.key, self.encode(detection.next_cursor))
