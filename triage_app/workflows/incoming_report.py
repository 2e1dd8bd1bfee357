"""Untriaged issues: DM each assignee their list, then tag the issues as notified.

Tagged issues carry the AssigneeNotified whiteboard keyword and are not
reported again. The full list also goes to the channel.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field

from triage_app.core.config import ASSIGNEE_NOTIFIED_KEYWORD, INITIAL_STATUSES
from triage_app.core.errors import ChatError, RunCancelled, TrackerError, aggregate
from triage_app.core.formatting import format_record_message
from triage_app.core.models import RecordModel, RecordUpdate
from triage_app.core.status import has_keyword, with_keyword
from triage_app.routing.people import lead_for

from .base import Report, WorkflowContext

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AssigneeReport:
    records: list[RecordModel] = field(default_factory=list)
    lines: list[str] = field(default_factory=list)


class IncomingReport(Report):
    name = "incoming-issues"

    def __init__(self, ctx: WorkflowContext, components: Sequence[str] | None = None, chat=None):
        self.ctx = ctx
        self.components = list(components) if components is not None else ctx.config.component_names()
        self.chat = chat or ctx.chat

    def incoming(self) -> list[RecordModel]:
        records = self.ctx.tracker.search(self.ctx.query(statuses=INITIAL_STATUSES, components=self.components))
        # JQL "!~" drops issues with an empty whiteboard, so filter here
        return [r for r in records if not has_keyword(r.whiteboard, ASSIGNEE_NOTIFIED_KEYWORD)]

    def group(self, records: Sequence[RecordModel]) -> tuple[list[str], dict[str, AssigneeReport]]:
        channel_lines: list[str] = []
        per_assignee: dict[str, AssigneeReport] = {}
        for r in records:
            message = format_record_message(self.ctx.server, r)
            channel_lines.append(f"> {message}")
            recipient = r.assignee or lead_for(self.ctx.config, r.components[0] if r.components else "")
            if not recipient:
                continue
            report = per_assignee.setdefault(recipient, AssigneeReport())
            report.records.append(r)
            report.lines.append(message)
        return channel_lines, per_assignee

    def run(self, cancel: threading.Event | None = None) -> None:
        records = self.incoming()
        if not records:
            return
        channel_lines, per_assignee = self.group(records)
        if cancel is not None and cancel.is_set():
            raise RunCancelled(f"{self.name}: cancelled")

        errors: list[Exception] = []
        for assignee, report in sorted(per_assignee.items()):
            message = "\n".join(report.lines) + "\n\n> Please set severity/priority on the issue(s) above and assign to a team member.\n"
            try:
                self.chat.message_recipient(assignee, message)
            except ChatError as exc:
                self.ctx.recorder.warning("DeliveryFailed", f"Failed to deliver incoming issues to {assignee!r}: {exc}")
                continue
            for r in report.records:
                try:
                    self.ctx.tracker.update(r.id, RecordUpdate(whiteboard=with_keyword(r.whiteboard, ASSIGNEE_NOTIFIED_KEYWORD)))
                except TrackerError as exc:
                    self.ctx.recorder.warning("MarkNotifiedFailed", f"Failed to mark {r.key} with {ASSIGNEE_NOTIFIED_KEYWORD}: {exc}")
                    errors.append(exc)

        try:
            self.chat.message_channel("\n".join(channel_lines))
        except ChatError as exc:
            self.ctx.recorder.warning("DeliveryFailed", f"Failed to deliver incoming issues: {exc}")
            errors.append(exc)
        err = aggregate(errors)
        if err is not None:
            raise err
