"""Tell assignees when somebody else changed status, priority, severity or flags."""

from __future__ import annotations

import logging

from triage_app.core.config import OPEN_STATUSES, WATCHED_CHANGE_FIELDS
from triage_app.core.formatting import record_link
from triage_app.core.models import FieldChange, Query
from triage_app.detectors import DetectedItem, ExternalChanges, TimestampWatermarkDetector
from triage_app.reconcile.driver import Workflow

from .base import WorkflowContext

logger = logging.getLogger(__name__)


def describe_change(change: FieldChange) -> str:
    return f"*{change.field}*: {change.from_value or '---'} → {change.to_value or '---'}"


class NeedinfoWorkflow(Workflow):
    name = "needinfo"

    def __init__(self, ctx: WorkflowContext):
        self.ctx = ctx
        self.detector = TimestampWatermarkDetector(
            fields=WATCHED_CHANGE_FIELDS,
            ignore_actors=[ctx.config.credentials.decoded_email],
        )

    def base_query(self) -> Query:
        return self.ctx.query(statuses=OPEN_STATUSES)

    def apply(self, item: DetectedItem) -> None:
        r = item.record
        changes: ExternalChanges = item.payload
        if not r.assignee:
            logger.debug("%s has no assignee to tell about %d changes", r.key, len(changes.changes))
            return
        who = ", ".join(changes.actors) or "somebody"
        lines = [f":pencil2: {who} changed {record_link(self.ctx.server, r)} ({r.summary or ''}):"]
        lines += [f"> {describe_change(c)}" for c in changes.changes]
        self.ctx.chat.message_recipient(r.assignee, "\n".join(lines))
