"""Last-change timestamp watermark with self-transition filtering.

A candidate is actionable only when somebody other than its assignee changed it
after the cursor. Edits by ``ignore_actors``, the operator's own account, never
count. The cursor advances to the newest ``updated`` of every fetched candidate,
actionable or not.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from triage_app.core.config import CHANGE_LOOKBACK_WINDOW
from triage_app.core.errors import TrackerError
from triage_app.core.mappers import parse_dt
from triage_app.core.models import Condition, FieldChange, RecordModel
from triage_app.core.tracker import Tracker

from .base import DetectedItem, Detection, Detector

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExternalChanges:
    changes: list[FieldChange] = field(default_factory=list)
    actors: list[str] = field(default_factory=list)
    last_actor: str | None = None
    last_change: datetime | None = None


class TimestampWatermarkDetector(Detector):
    key = "lastChange"

    def __init__(
        self,
        lookback: timedelta = CHANGE_LOOKBACK_WINDOW,
        fields: Collection[str] | None = None,
        clock: Callable[[], datetime] | None = None,
        ignore_actors: Collection[str] = (),
    ):
        self.lookback = lookback
        self.fields = frozenset(fields) if fields else None
        self.ignore_actors = frozenset(a for a in ignore_actors if a)
        self.clock = clock or (lambda: datetime.now(UTC))

    def default(self) -> datetime:
        return self.clock() - self.lookback

    def decode(self, raw: str) -> datetime:
        ts = parse_dt(raw.strip())
        if ts is None:
            raise ValueError(f"not a timestamp: {raw!r}")
        return ts

    def encode(self, cursor: datetime) -> str:
        return cursor.astimezone(UTC).isoformat()

    def candidate_filter(self, cursor: datetime) -> list[Condition]:
        # JQL compares dates in the account timezone at minute resolution; the
        # one day margin keeps the result a superset, exclusivity is checked in detect
        day = (cursor - timedelta(days=1)).strftime("%Y-%m-%d")
        return [Condition("updated", ">=", day)]

    def detect(self, records: Sequence[RecordModel], cursor: datetime, tracker: Tracker) -> Detection:
        detection = Detection(cursor=cursor, next_cursor=cursor, candidates=len(records))
        for record in records:
            if record.updated is None:
                logger.debug("Record %s has no last-change time, skipping", record.key)
                continue
            if record.updated > detection.next_cursor:
                detection.next_cursor = record.updated
            if record.updated <= cursor:
                continue
            try:
                history = tracker.get_cached_history(record.id, record.revision)
            except TrackerError as exc:
                logger.warning("Failed to get history of %s: %s", record.key, exc)
                detection.errors.append(exc)
                continue

            external = ExternalChanges()
            for entry in history:
                if entry.created is None or entry.created <= cursor:
                    continue
                if record.assignee and entry.author == record.assignee:
                    continue
                if entry.author in self.ignore_actors:
                    continue
                changes = [c for c in entry.changes if self.fields is None or c.field in self.fields]
                if not changes:
                    continue
                external.changes.extend(changes)
                if entry.author and entry.author not in external.actors:
                    external.actors.append(entry.author)
                if external.last_change is None or entry.created >= external.last_change:
                    external.last_change = entry.created
                    external.last_actor = entry.author
            if external.changes:
                detection.items.append(DetectedItem(record, external))
        return detection
