"""Explicit processed-id set for one-time events.

An id joins the set only after its side effect succeeded, so failures are
retried on the next run; the set never shrinks.

Ids already in the set are skipped, unless ``revisit`` selects the record
again; such items carry ``payload=True`` so the workflow can repeat its
reconciling update without repeating the one-time event.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Sequence

from triage_app.core.models import RecordModel
from triage_app.core.tracker import Tracker

from .base import DetectedItem, Detection, Detector


class ProcessedSetDetector(Detector):
    def __init__(self, key: str = "processed", revisit: Callable[[RecordModel], bool] | None = None):
        self.key = key
        self.revisit = revisit
        self._lock = threading.Lock()

    def default(self) -> set[int]:
        return set()

    def decode(self, raw: str) -> set[int]:
        doc = json.loads(raw)
        if not isinstance(doc, list):
            raise ValueError("expected a JSON list of ids")
        out: set[int] = set()
        for entry in doc:
            if isinstance(entry, dict):
                # legacy [{"bugID": n}] form
                entry = entry.get("bugID", entry.get("id"))
            out.add(int(entry))
        return out

    def encode(self, cursor: set[int]) -> str:
        return json.dumps(sorted(cursor))

    def detect(self, records: Sequence[RecordModel], cursor: set[int], tracker: Tracker) -> Detection:
        detection = Detection(cursor=cursor, next_cursor=set(cursor), candidates=len(records))
        queued: set[int] = set()
        for record in records:
            if record.id in queued:
                continue
            if record.id in cursor:
                if self.revisit is not None and self.revisit(record):
                    queued.add(record.id)
                    detection.items.append(DetectedItem(record, True))
                continue
            queued.add(record.id)
            detection.items.append(DetectedItem(record, False))
        return detection

    def mark_succeeded(self, detection: Detection, item: DetectedItem) -> None:
        with self._lock:
            detection.next_cursor.add(item.record.id)

    @staticmethod
    def already_processed(item: DetectedItem) -> bool:
        return item.payload is True
