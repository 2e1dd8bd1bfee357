"""Announce every newly created issue with a "Take this issue" button."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence

from triage_app.chat.actions import ActionEvent
from triage_app.chat.slack_client import Button, ChatClient
from triage_app.core.config import INITIAL_STATUSES, TAKEN_STATUS
from triage_app.core.errors import ChatError
from triage_app.core.formatting import format_record_message
from triage_app.core.models import Query, RecordUpdate
from triage_app.core.status import is_initial_status
from triage_app.detectors import DetectedItem, IdWatermarkDetector
from triage_app.reconcile.driver import Workflow

from .base import WorkflowContext, slug

logger = logging.getLogger(__name__)


class NewIssuesWorkflow(Workflow):
    def __init__(self, ctx: WorkflowContext, components: Sequence[str], chat: ChatClient | None = None):
        self.ctx = ctx
        self.components = list(components)
        self.chat = chat or ctx.chat
        self.name = f"new-issues.{slug(self.components)}"
        self.block_id = f"new-issues/take-{slug(self.components)}"
        self.detector = IdWatermarkDetector()

    def base_query(self) -> Query:
        return self.ctx.query(statuses=INITIAL_STATUSES, components=self.components)

    def apply(self, item: DetectedItem) -> None:
        r = item.record
        value = json.dumps({"id": r.id, "oldAssignee": r.assignee or ""})
        self.chat.post_interactive(
            format_record_message(self.ctx.server, r),
            self.block_id,
            [Button(text="Take this issue", value=value)],
        )

    # ------------------ Button callback ------------------
    def take_clicked(self, event: ActionEvent) -> None:
        try:
            value = json.loads(event.value)
            record_id = int(value["id"])
            old_assignee = value.get("oldAssignee") or ""
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Cannot decode take value %r: %s", event.value, exc)
            return
        if not event.user_email:
            self.chat.message_user(event.user_id, "Cannot assign the issue: your chat profile has no email")
            return

        record = self.ctx.tracker.get_record(record_id)
        if not is_initial_status(record.status):
            logger.info("%s is not new anymore, but %r", record.key, record.status)
            self.chat.message_user(event.user_id, f"{record.key} has been moved already to {record.status}")
            return
        if record.assignee and record.assignee != old_assignee:
            logger.info("%s changed assignee, expected %r, got %r", record.key, old_assignee, record.assignee)
            self.chat.message_user(event.user_id, f"{record.key} has already been assigned to {record.assignee}")
            return

        self.ctx.tracker.update(record_id, RecordUpdate(status=TAKEN_STATUS, assignee=event.user_email))

        text = f"{format_record_message(self.ctx.server, record)} – assigned to {event.user_email}"
        logger.info("Updating message to: %s", text)
        try:
            self.chat.update_message(event.channel_id, event.message_ts, text)
        except ChatError as exc:
            logger.error("Failed to update message: %s", exc)
            self.chat.message_channel(f"{event.user_email} took: {format_record_message(self.ctx.server, record)}")
