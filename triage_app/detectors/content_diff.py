"""Content-set diff over one field's transition history (components by default).

The cursor is a snapshot of every tracked record's known transitions. Only records
whose transitions (fresh or cached) touch the watch set are ever tracked, which
bounds the snapshot to records relevant to at least one watched value.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from triage_app.core.errors import TrackerError
from triage_app.core.mappers import format_dt, parse_dt
from triage_app.core.models import HistoryEntry, RecordModel, Transition
from triage_app.core.tracker import Tracker

from .base import DetectedItem, Detection, Detector

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TrackedEntity:
    id: int
    transitions: list[Transition] = field(default_factory=list)
    last_change: datetime | None = None


def normalized(transitions: Sequence[Transition]) -> list[Transition]:
    """Newest first; ties broken by value so equal sets compare equal."""
    return sorted(transitions, key=lambda t: (t.when.timestamp(), t.from_value, t.to_value), reverse=True)


def transitions_of(history: Sequence[HistoryEntry], field_name: str) -> list[Transition]:
    out = []
    for entry in history:
        if entry.created is None:
            continue
        for change in entry.changes:
            if change.field != field_name:
                continue
            out.append(Transition(change.from_value or "", change.to_value or "", entry.created))
    return out


class ContentDiffDetector(Detector):
    key = "transitions"

    def __init__(self, watch: Collection[str] | None = None, field_name: str = "components"):
        self.watch = frozenset(watch) if watch is not None else None
        self.field_name = field_name

    # ------------------ Cursor codec ------------------
    def default(self) -> dict[int, TrackedEntity]:
        return {}

    def decode(self, raw: str) -> dict[int, TrackedEntity]:
        doc = json.loads(raw)
        if not isinstance(doc, list):
            raise ValueError("expected a JSON list of tracked entities")
        out: dict[int, TrackedEntity] = {}
        for row in doc:
            # older snapshots used component_changes / last_component_change
            rows = row.get("transitions", row.get("component_changes")) or []
            transitions = []
            for t in rows:
                when = parse_dt(t["when"])
                if when is None:
                    raise ValueError(f"bad transition time {t['when']!r}")
                transitions.append(Transition(t.get("from") or "", t.get("to") or "", when))
            entity_id = int(row["id"])
            out[entity_id] = TrackedEntity(
                id=entity_id,
                transitions=transitions,
                last_change=parse_dt(row.get("last_change", row.get("last_component_change"))),
            )
        return out

    def encode(self, cursor: dict[int, TrackedEntity]) -> str:
        doc = [
            {
                "id": e.id,
                "transitions": [{"from": t.from_value, "to": t.to_value, "when": format_dt(t.when)} for t in e.transitions],
                "last_change": format_dt(e.last_change),
            }
            for e in sorted(cursor.values(), key=lambda e: e.id)
        ]
        return json.dumps(doc)

    # ------------------ Detection ------------------
    def touches_watch(self, transitions: Sequence[Transition]) -> bool:
        if self.watch is None:
            return bool(transitions)
        return any(t.from_value in self.watch or t.to_value in self.watch for t in transitions)

    def detect(self, records: Sequence[RecordModel], cursor: dict[int, TrackedEntity], tracker: Tracker) -> Detection:
        snapshot = dict(cursor)
        detection = Detection(cursor=cursor, next_cursor=snapshot, candidates=len(records))
        for record in records:
            try:
                history = tracker.get_cached_history(record.id, record.revision)
            except TrackerError as exc:
                logger.warning("Failed to get history of %s: %s", record.key, exc)
                detection.errors.append(exc)
                continue

            current = normalized(transitions_of(history, self.field_name))
            cached = cursor.get(record.id)
            previous = normalized(cached.transitions) if cached is not None else []
            if not self.touches_watch(current + previous):
                continue
            if cached is not None and previous == current:
                continue

            entity = TrackedEntity(
                id=record.id,
                transitions=current,
                last_change=max((t.when for t in current), default=None),
            )
            snapshot[record.id] = entity
            detection.items.append(DetectedItem(record, entity))
        return detection
