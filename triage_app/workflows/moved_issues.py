"""Track component moves touching our components and report the busiest routes.

The workflow keeps the transition snapshot current and clears AssigneeNotified
from issues that changed component after their assignee was told, so the new
team hears about them in its next incoming report. The report reads the
snapshot and lists the components we received issues from and moved issues to
recently.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from triage_app.core.config import ASSIGNEE_NOTIFIED_KEYWORD, MOVED_REPORT_WINDOW, OPEN_STATUSES
from triage_app.core.models import Condition, HistoryEntry, Query, RecordUpdate
from triage_app.core.status import has_keyword, without_keyword
from triage_app.detectors import ContentDiffDetector, DetectedItem, Detection, TrackedEntity
from triage_app.reconcile.driver import Workflow
from triage_app.stores.cursor import scoped

from .base import Report, WorkflowContext

logger = logging.getLogger(__name__)


def notified_at(history: Sequence[HistoryEntry]) -> datetime | None:
    """When AssigneeNotified last entered the whiteboard, if ever."""
    latest = None
    for entry in history:
        if entry.created is None:
            continue
        for c in entry.changes:
            if c.field != "whiteboard":
                continue
            if has_keyword(c.to_value, ASSIGNEE_NOTIFIED_KEYWORD) and not has_keyword(c.from_value, ASSIGNEE_NOTIFIED_KEYWORD):
                if latest is None or entry.created > latest:
                    latest = entry.created
    return latest


class MovedIssuesWorkflow(Workflow):
    name = "moved-issues"

    def __init__(self, ctx: WorkflowContext, window: timedelta = MOVED_REPORT_WINDOW):
        self.ctx = ctx
        self.window = window
        self.recorder = ctx.recorder.for_component(self.name)
        self.detector = ContentDiffDetector(watch=ctx.config.component_names(), field_name="components")

    def base_query(self) -> Query:
        days = max(1, self.window.days)
        return self.ctx.query(statuses=OPEN_STATUSES).with_conditions(Condition("updated", ">=", f"-{days}d"))

    def apply(self, item: DetectedItem) -> None:
        r = item.record
        entity: TrackedEntity = item.payload
        latest = entity.transitions[0] if entity.transitions else None
        if latest is not None:
            logger.info("%s moved from %r to %r at %s", r.key, latest.from_value, latest.to_value, latest.when)
        if entity.last_change is None or not has_keyword(r.whiteboard, ASSIGNEE_NOTIFIED_KEYWORD):
            return
        when = notified_at(self.ctx.tracker.get_cached_history(r.id, r.revision))
        if when is not None and entity.last_change <= when:
            return
        self.ctx.tracker.update(r.id, RecordUpdate(whiteboard=without_keyword(r.whiteboard, ASSIGNEE_NOTIFIED_KEYWORD)))
        self.recorder.event("IssueReassigned", f"Cleared {ASSIGNEE_NOTIFIED_KEYWORD} for {r.key} because its component changed")

    def finalize(self, detection: Detection, failures: list[Exception]) -> None:
        if detection.items:
            logger.info("%d issues changed components, %d tracked", len(detection.items), len(detection.next_cursor))


def top_routes(
    snapshot: dict[int, TrackedEntity], now: datetime, window: timedelta = MOVED_REPORT_WINDOW
) -> tuple[Counter, Counter]:
    """(from-component counts, to-component counts) of entities moved within ``window``."""
    from_counts: Counter = Counter()
    to_counts: Counter = Counter()
    since = now - window
    for entity in snapshot.values():
        if entity.last_change is None or entity.last_change <= since:
            continue
        for t in entity.transitions:
            if t.from_value:
                from_counts[t.from_value] += 1
            if t.to_value:
                to_counts[t.to_value] += 1
    return from_counts, to_counts


class MovedIssuesReport(Report):
    name = "moved-issues"

    def __init__(self, ctx: WorkflowContext, chat=None, window: timedelta = MOVED_REPORT_WINDOW):
        self.ctx = ctx
        self.chat = chat or ctx.chat
        self.window = window
        self.detector = ContentDiffDetector(watch=ctx.config.component_names())

    def render(self, now: datetime | None = None) -> str:
        snapshot = self.detector.load(scoped(self.ctx.cursors, MovedIssuesWorkflow.name))
        from_counts, to_counts = top_routes(snapshot, now or datetime.now(UTC), self.window)
        ours = set(self.ctx.config.component_names())
        days = self.window.days
        lines = [f"*Components we received issues from last {days} days*:"]
        lines += [f"* {name} ({n} issues)" for name, n in from_counts.most_common() if name not in ours]
        lines.append(f"*Components we moved issues to last {days} days:*")
        lines += [f"* {name} ({n} issues)" for name, n in to_counts.most_common()]
        return "\n".join(lines)

    def run(self, cancel: threading.Event | None = None) -> None:
        self.chat.message_channel(self.render())
