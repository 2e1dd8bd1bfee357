"""Issue lifecycle: mark quiet issues stale, reset them on activity, close them later.

``stale`` tags development issues without a significant change for 30 days with
the LifecycleStale keyword, lowers their priority and tells the people around
them. ``stale-reset`` swaps the keyword for LifecycleReset once somebody comments,
the issue gets a Security/Blocker label or leaves development. ``close-stale``
closes issues that stayed quiet for another week; an issue closed once is never
closed again, even if somebody reopens it.

Comments made by the operator account or carrying one of the sprint bookkeeping
phrases do not count as activity.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Collection, Iterable, Sequence
from datetime import UTC, datetime

from triage_app.core.config import (
    CLOSE_PRIORITY_TRANSITIONS,
    CLOSE_STALE_AFTER,
    DEVELOPMENT_STATUSES,
    IGNORED_COMMENT_KEYWORDS,
    OPEN_STATUSES,
    STALE_AFTER,
    STALE_CLOSE_RESOLUTION,
    STALE_CLOSE_STATUS,
    STALE_EXEMPT_LABELS,
    STALE_KEYWORD,
    STALE_PRIORITY_TRANSITIONS,
    STALE_RESET_KEYWORD,
)
from triage_app.core.errors import ChatError, RunCancelled, TrackerError, aggregate
from triage_app.core.formatting import format_record_message, plural, record_links
from triage_app.core.models import CommentModel, Query, RecordModel, RecordUpdate
from triage_app.core.status import (
    degrade_priority,
    has_keyword,
    is_development_status,
    is_open_status,
    is_urgent,
    with_keyword,
    without_keyword,
)
from triage_app.core.tracker import Tracker
from triage_app.detectors import DetectedItem, Detection, ProcessedSetDetector
from triage_app.reconcile.driver import Workflow
from triage_app.routing.people import watchers_for

from .base import Report, WorkflowContext

logger = logging.getLogger(__name__)

STALE_MESSAGE = (
    "Hi there!\nThese issues you are assigned to, reported or watch were just marked as _{keyword}_:\n\n{lines}\n\n"
    "Please review these and remove the keyword if you think they are still valid issues."
)
RESET_MESSAGE = "Following issue _{keyword}_ was *removed* after {reasons}:\n{line}\n"
CLOSE_MESSAGE = "Following issue was automatically *closed* after being marked as _{keyword}_ for {days} days without update:\n{line}\n"


def last_significant_change(
    record: RecordModel, comments: Iterable[CommentModel], ignore_authors: Collection[str] = ()
) -> datetime | None:
    """Creation time or the newest comment that is not bookkeeping, whichever is later."""
    latest = record.created
    for c in comments:
        if c.created is None or (c.author and c.author in ignore_authors):
            continue
        body = c.body or ""
        if any(keyword in body for keyword in IGNORED_COMMENT_KEYWORDS):
            logger.debug("Ignoring bookkeeping comment on %s: %s", record.key, body.split("\n")[0])
            continue
        if latest is None or c.created > latest:
            latest = c.created
    return latest


def may_go_stale(r: RecordModel) -> bool:
    if has_keyword(r.whiteboard, STALE_KEYWORD) or is_urgent(r.severity):
        return False
    if r.customer_cases or "CVE" in (r.summary or ""):
        return False
    return not STALE_EXEMPT_LABELS.intersection(r.labels)


class _Lifecycle:
    """Shared plumbing of the lifecycle jobs."""

    name = ""

    def __init__(self, ctx: WorkflowContext, clock: Callable[[], datetime] | None = None):
        self.ctx = ctx
        self.clock = clock or (lambda: datetime.now(UTC))
        self.recorder = ctx.recorder.for_component(self.name)
        operator = ctx.config.credentials.decoded_email
        self.ignore_authors = frozenset([operator] if operator else [])

    def last_change(self, r: RecordModel) -> datetime | None:
        comments = self.ctx.tracker.get_cached_comments(r.id, r.revision)
        return last_significant_change(r, comments, self.ignore_authors)

    def complete(self, r: RecordModel) -> RecordModel:
        # searches sometimes come back without people; the direct fetch has them
        if r.assignee and r.reporter:
            return r
        try:
            return self.ctx.tracker.get_record(r.id)
        except TrackerError as exc:
            logger.warning("Cannot refetch %s: %s", r.key, exc)
            return r

    def people(self, r: RecordModel, watchers: bool = False) -> list[str]:
        targets = [r.assignee or "", r.reporter or ""]
        if watchers:
            targets += sorted(watchers_for(self.ctx.config, *r.components))
        return [t for t in dict.fromkeys(targets) if t]

    def deliver(self, recipient: str, text: str) -> None:
        try:
            self.ctx.chat.message_recipient(recipient, text)
        except ChatError as exc:
            self.recorder.warning("DeliveryFailed", f"Message to {recipient!r} failed to send: {exc}")


class StaleWorkflow(_Lifecycle, Report):
    name = "stale"

    def candidates(self) -> list[RecordModel]:
        records = self.ctx.tracker.search(self.ctx.query(statuses=DEVELOPMENT_STATUSES))
        return [r for r in records if may_go_stale(r)]

    def stale(self, records: Sequence[RecordModel]) -> list[RecordModel]:
        cutoff = self.clock() - STALE_AFTER
        out = []
        for r in records:
            try:
                changed = self.last_change(r)
            except TrackerError as exc:
                self.recorder.warning("CommentsFailed", f"Skipping {r.key}: {exc}")
                continue
            if changed is not None and changed < cutoff:
                out.append(r)
        return out

    def run(self, cancel: threading.Event | None = None) -> None:
        records = self.stale(self.candidates())
        logger.info("Found %d stale issues", len(records))
        if not records:
            return
        if cancel is not None and cancel.is_set():
            raise RunCancelled(f"{self.name}: cancelled")

        errors: list[Exception] = []
        notifications: dict[str, list[str]] = {}
        marked: list[RecordModel] = []
        for r in records:
            logger.info("%s (S:%s, P:%s, A:%s): %s", r.key, r.severity, r.priority, r.assignee, r.summary)
            update = RecordUpdate(
                whiteboard=with_keyword(without_keyword(r.whiteboard, STALE_RESET_KEYWORD), STALE_KEYWORD),
                comment=self.ctx.config.stale_comment,
                priority=degrade_priority(STALE_PRIORITY_TRANSITIONS, r.priority),
            )
            try:
                self.ctx.tracker.update(r.id, update)
            except TrackerError as exc:
                self.recorder.warning("MarkStaleFailed", f"Failed to mark {r.key} as {STALE_KEYWORD}: {exc}")
                errors.append(exc)
                continue
            r = self.complete(r)
            marked.append(r)
            line = format_record_message(self.ctx.server, r)
            for target in self.people(r, watchers=True):
                notifications.setdefault(target, []).append(line)

        for target, lines in sorted(notifications.items()):
            self.deliver(target, STALE_MESSAGE.format(keyword=STALE_KEYWORD, lines="\n".join(lines)))
        if marked:
            self.recorder.event("StaleIssues", f"Marked {plural(len(marked))} as {STALE_KEYWORD}: {record_links(self.ctx.server, marked)}")

        err = aggregate(errors)
        if err is not None:
            raise err


class ResetStaleWorkflow(_Lifecycle, Report):
    name = "stale-reset"

    def reasons(self, r: RecordModel, cutoff: datetime) -> list[str]:
        out = []
        if not is_development_status(r.status):
            out.append("the issue moved past development")
        if STALE_EXEMPT_LABELS.intersection(r.labels):
            out.append("the issue received a Security/Blocker label")
        changed = self.last_change(r)
        if changed is not None and changed > cutoff:
            out.append("the issue got commented on recently")
        return out

    def run(self, cancel: threading.Event | None = None) -> None:
        records = self.ctx.tracker.search(self.ctx.query(statuses=OPEN_STATUSES))
        cutoff = self.clock() - STALE_AFTER
        errors: list[Exception] = []
        to_reset: list[tuple[RecordModel, list[str]]] = []
        for r in records:
            if not has_keyword(r.whiteboard, STALE_KEYWORD):
                continue
            try:
                reasons = self.reasons(r, cutoff)
            except TrackerError as exc:
                self.recorder.warning("CommentsFailed", f"Skipping {r.key}: {exc}")
                errors.append(exc)
                continue
            if reasons:
                to_reset.append((r, reasons))
        if cancel is not None and cancel.is_set():
            raise RunCancelled(f"{self.name}: cancelled")

        reset: list[RecordModel] = []
        for r, reasons in to_reset:
            because = " and ".join(reasons)
            update = RecordUpdate(
                whiteboard=with_keyword(without_keyword(r.whiteboard, STALE_KEYWORD), STALE_RESET_KEYWORD),
                comment=f"The {STALE_KEYWORD} keyword was removed because {because}.\nThe issue assignee was notified.",
            )
            try:
                self.ctx.tracker.update(r.id, update)
            except TrackerError as exc:
                self.recorder.warning("ResetFailed", f"Failed to reset {r.key}: {exc}")
                errors.append(exc)
                continue
            r = self.complete(r)
            reset.append(r)
            message = RESET_MESSAGE.format(keyword=STALE_KEYWORD, reasons=because, line=format_record_message(self.ctx.server, r))
            for target in self.people(r):
                self.deliver(target, message)

        if reset:
            try:
                self.ctx.chat.message_admin_channel(f"{plural(len(reset))} reset: {record_links(self.ctx.server, reset)}")
            except ChatError as exc:
                errors.append(exc)
        err = aggregate(errors)
        if err is not None:
            raise err


class CloseStaleWorkflow(_Lifecycle, Workflow):
    name = "close-stale"

    def __init__(self, ctx: WorkflowContext, clock: Callable[[], datetime] | None = None):
        super().__init__(ctx, clock)
        self.detector = ProcessedSetDetector(key="closed")
        self._skipped: set[int] = set()

    def base_query(self) -> Query:
        return self.ctx.query(statuses=DEVELOPMENT_STATUSES)

    def fetch(self, tracker: Tracker, query: Query) -> list[RecordModel]:
        cutoff = self.clock() - STALE_AFTER - CLOSE_STALE_AFTER
        self._skipped = set()
        out = []
        for r in tracker.search(query):
            if not has_keyword(r.whiteboard, STALE_KEYWORD):
                continue
            try:
                changed = self.last_change(r)
            except TrackerError as exc:
                self.recorder.warning("CommentsFailed", f"Skipping {r.key}: {exc}")
                continue
            if changed is not None and changed < cutoff:
                out.append(r)
        return out

    def apply(self, item: DetectedItem) -> None:
        r = self.complete(item.record)
        if not is_open_status(r.status):
            logger.info("%s is already %s, not closing", r.key, r.status)
            self._skipped.add(r.id)
            return
        self.ctx.tracker.update(
            r.id,
            RecordUpdate(
                status=STALE_CLOSE_STATUS,
                resolution=STALE_CLOSE_RESOLUTION,
                comment=self.ctx.config.stale_close_comment,
                priority=degrade_priority(CLOSE_PRIORITY_TRANSITIONS, r.priority),
            ),
        )
        message = CLOSE_MESSAGE.format(
            keyword=STALE_KEYWORD, days=CLOSE_STALE_AFTER.days, line=format_record_message(self.ctx.server, r)
        )
        for target in self.people(r, watchers=True):
            self.deliver(target, message)

    def finalize(self, detection: Detection, failures: list[Exception]) -> None:
        closed = [i.record for i in detection.items if i.record.id in detection.next_cursor and i.record.id not in self._skipped]
        if closed:
            self.ctx.chat.message_admin_channel(f"{plural(len(closed))} closed: {record_links(self.ctx.server, closed)}")
