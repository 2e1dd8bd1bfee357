"""Daily summary of the issues closed in our components, grouped by resolution."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from datetime import timedelta

from triage_app.core.config import CLOSED_REPORT_WINDOW, TERMINAL_STATUSES
from triage_app.core.errors import ChatError
from triage_app.core.formatting import plural, record_link
from triage_app.core.models import Condition, RecordModel
from triage_app.core.status import is_terminal_status

from .base import Report, WorkflowContext

logger = logging.getLogger(__name__)

MAX_LINKS = 50


class ClosedReport(Report):
    name = "closed-issues"

    def __init__(
        self,
        ctx: WorkflowContext,
        components: Sequence[str] | None = None,
        chat=None,
        window: timedelta = CLOSED_REPORT_WINDOW,
    ):
        self.ctx = ctx
        self.components = list(components) if components is not None else ctx.config.component_names()
        self.chat = chat or ctx.chat
        self.window = window

    def closed(self) -> list[RecordModel]:
        hours = max(1, int(self.window.total_seconds() // 3600))
        query = self.ctx.query(statuses=sorted(TERMINAL_STATUSES), components=self.components).with_conditions(
            Condition("resolved", ">=", f"-{hours}h")
        )
        return [r for r in self.ctx.tracker.search(query) if is_terminal_status(r.status)]

    def render(self, records: Sequence[RecordModel]) -> str:
        if not records:
            return "*No issues closed in last 24h* :-(\n"
        by_resolution: dict[str, list[RecordModel]] = {}
        for r in records:
            by_resolution.setdefault(r.resolution or "Unresolved", []).append(r)
        lines = [f"*{plural(len(records))} closed in the last 24h*:"]
        for resolution in sorted(by_resolution):
            items = by_resolution[resolution]
            links = ", ".join(record_link(self.ctx.server, r) for r in items[:MAX_LINKS])
            if len(items) > MAX_LINKS:
                links += f" ... and {len(items) - MAX_LINKS} more"
            lines.append(f"> {plural(len(items))} closed as _{resolution}_ ({links})")
        return "\n".join(lines) + "\n"

    def run(self, cancel: threading.Event | None = None) -> None:
        report = self.render(self.closed())
        try:
            self.chat.message_channel(report)
        except ChatError as exc:
            self.ctx.recorder.warning("DeliveryFailed", f"Failed to deliver closed issue counts: {exc}")
            raise
