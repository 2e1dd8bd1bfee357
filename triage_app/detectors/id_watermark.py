"""Highest-processed-id watermark: everything created after the last seen record."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta

from triage_app.core.config import NEW_ISSUE_BOOTSTRAP_WINDOW
from triage_app.core.models import Condition, RecordModel
from triage_app.core.tracker import Tracker

from .base import DetectedItem, Detection, Detector


class IdWatermarkDetector(Detector):
    key = "lastID"

    def __init__(self, bootstrap: timedelta = NEW_ISSUE_BOOTSTRAP_WINDOW):
        self.bootstrap = bootstrap

    def default(self) -> int:
        return 0

    def decode(self, raw: str) -> int:
        value = int(raw.strip())
        if value < 0:
            raise ValueError(f"negative id watermark {value}")
        return value

    def encode(self, cursor: int) -> str:
        return str(cursor)

    def candidate_filter(self, cursor: int) -> list[Condition]:
        if cursor == 0:
            # first run: only the bootstrap window, never the whole backlog
            minutes = max(1, int(self.bootstrap.total_seconds() // 60))
            return [Condition("created", ">=", f"-{minutes}m")]
        return [Condition("id", ">", str(cursor))]

    def detect(self, records: Sequence[RecordModel], cursor: int, tracker: Tracker) -> Detection:
        seen: set[int] = set()
        items: list[DetectedItem] = []
        for record in sorted(records, key=lambda r: r.id):
            if record.id <= cursor or record.id in seen:
                continue
            seen.add(record.id)
            items.append(DetectedItem(record))
        next_cursor = max([cursor, *(r.id for r in records)])
        return Detection(cursor=cursor, next_cursor=next_cursor, items=items, candidates=len(records))
