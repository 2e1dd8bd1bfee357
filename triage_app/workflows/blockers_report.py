"""Open issue statistics for the channel and per-assignee reminders.

``blocker-issues`` posts the breakdown to the channel, reminds every assignee of
their untriaged, blocker-labelled and urgent issues and sends per-person counts
to the admin channel. The ``user-*-issues`` variants only send one kind of
reminder.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

from triage_app.core.config import BLOCKER_LABELS, CI_KEYWORD, DEVELOPMENT_STATUSES, STALE_KEYWORD, UNSPECIFIED
from triage_app.core.errors import ChatError, RunCancelled, aggregate
from triage_app.core.formatting import format_record_message, plural, record_links
from triage_app.core.models import RecordModel
from triage_app.core.status import has_keyword, is_initial_status, is_unspecified, is_urgent

from .base import Report, WorkflowContext

logger = logging.getLogger(__name__)

LEVEL_ORDER = ("urgent", "highest", "high", "medium", "low", "lowest", "unspecified")

REMINDERS = {
    "triage": (
        "untriaged issue",
        "\n\nPlease make sure all these have the _Severity_ and _Priority_ set, and move them to In Progress, "
        "so I can stop bothering you :-)\n\n",
    ),
    "blocker": ("blocker issue", "\n\nPlease keep eyes on these, they will risk the upcoming release if not finished in time!"),
    "urgent": ("urgent issue", "\n\nWe are expected to actively work on these before anything else!"),
}


@dataclass(slots=True)
class IssueSummary:
    total: int = 0
    severity_count: Counter = field(default_factory=Counter)
    priority_count: Counter = field(default_factory=Counter)
    stale: int = 0
    ci: int = 0
    customer_cases: int = 0
    labelled: dict[str, list[RecordModel]] = field(default_factory=dict)
    # reminder kind -> records
    reminders: dict[str, list[RecordModel]] = field(default_factory=lambda: {kind: [] for kind in REMINDERS})


def summarize(records: Sequence[RecordModel]) -> IssueSummary:
    s = IssueSummary(total=len(records))
    for r in records:
        s.severity_count[(r.severity or UNSPECIFIED).lower()] += 1
        s.priority_count[(r.priority or UNSPECIFIED).lower()] += 1
        if has_keyword(r.whiteboard, STALE_KEYWORD):
            s.stale += 1
        if has_keyword(r.whiteboard, CI_KEYWORD):
            s.ci += 1
        if r.customer_cases:
            s.customer_cases += 1
        labels = [label for label in BLOCKER_LABELS if label in r.labels]
        for label in labels:
            s.labelled.setdefault(label, []).append(r)
        if labels:
            s.reminders["blocker"].append(r)
        if is_urgent(r.priority) or (is_urgent(r.severity) and is_unspecified(r.priority)):
            s.reminders["urgent"].append(r)
        if is_initial_status(r.status) or is_unspecified(r.priority) or is_unspecified(r.severity):
            s.reminders["triage"].append(r)
    return s


def breakdown(counts: Counter) -> str:
    names = [n for n in LEVEL_ORDER if counts[n]] + sorted(n for n in counts if n not in LEVEL_ORDER)
    return ", ".join(f"{counts[n]} _{n}_" for n in names)


def per_assignee(records: Sequence[RecordModel]) -> dict[str, list[RecordModel]]:
    out: dict[str, list[RecordModel]] = {}
    for r in records:
        if r.assignee:
            out.setdefault(r.assignee, []).append(r)
    return out


class BlockersReport(Report):
    def __init__(
        self,
        ctx: WorkflowContext,
        components: Sequence[str] | None = None,
        chat=None,
        reminders: Sequence[str] = tuple(REMINDERS),
        channel_stats: bool = True,
        name: str = "blocker-issues",
    ):
        unknown = set(reminders) - set(REMINDERS)
        if unknown:
            raise ValueError(f"unknown reminder kinds: {', '.join(sorted(unknown))}")
        self.ctx = ctx
        self.components = list(components) if components is not None else ctx.config.component_names()
        self.chat = chat or ctx.chat
        self.reminders = list(reminders)
        self.channel_stats = channel_stats
        self.name = name

    def active(self) -> list[RecordModel]:
        records = self.ctx.tracker.search(self.ctx.query(statuses=DEVELOPMENT_STATUSES, components=self.components))
        return [r for r in records if (r.severity or "").lower() != "low" and (r.priority or "").lower() != "low"]

    def render(self, summary: IssueSummary) -> str:
        lines = [
            "",
            ":bug: *Today's Issue Report:* :bug:",
            f"> All active issues: {summary.total}",
            f"> Severity Breakdown: {breakdown(summary.severity_count)}",
            f"> Priority Breakdown: {breakdown(summary.priority_count)}",
            f"> Issues Marked as _{STALE_KEYWORD}_: {summary.stale}",
        ]
        if summary.ci:
            lines.append(f"> Issues tagged _{CI_KEYWORD}_: {summary.ci}")
        if summary.customer_cases:
            lines.append(f"> Issues with customer cases: {summary.customer_cases}")
        for label in BLOCKER_LABELS:
            items = summary.labelled.get(label)
            if items:
                lines.append(f"> Issues with _{label}_: {len(items)} ({record_links(self.ctx.server, items)})")
        return "\n".join(lines) + "\n"

    def admin_stats(self, summary: IssueSummary) -> str:
        lines = []
        for kind in self.reminders:
            noun = REMINDERS[kind][0]
            for person, items in sorted(per_assignee(summary.reminders[kind]).items()):
                lines.append(f"> {person}: {plural(len(items), noun)} ({record_links(self.ctx.server, items)})")
        return "\n".join(lines)

    def remind(self, summary: IssueSummary) -> None:
        for kind in self.reminders:
            noun, outro = REMINDERS[kind]
            for person, items in sorted(per_assignee(summary.reminders[kind]).items()):
                intro = f"You have *{plural(len(items), noun)}*:\n\n"
                message = intro + "\n".join(format_record_message(self.ctx.server, r) for r in items) + outro
                try:
                    self.ctx.chat.message_recipient(person, message)
                except ChatError as exc:
                    self.ctx.recorder.warning("DeliveryFailed", f"Failed to deliver {kind} reminder to {person!r}: {exc}")

    def run(self, cancel: threading.Event | None = None) -> None:
        summary = summarize(self.active())
        if cancel is not None and cancel.is_set():
            raise RunCancelled(f"{self.name}: cancelled")
        self.remind(summary)
        errors: list[Exception] = []
        if self.channel_stats:
            try:
                self.chat.message_channel(self.render(summary))
            except ChatError as exc:
                self.ctx.recorder.warning("DeliveryFailed", f"Failed to deliver stats to channel: {exc}")
                errors.append(exc)
            stats = self.admin_stats(summary)
            if stats:
                try:
                    self.ctx.chat.message_admin_channel(stats)
                except ChatError as exc:
                    errors.append(exc)
        logger.debug("%s: %d active issues", self.name, summary.total)
        err = aggregate(errors)
        if err is not None:
            raise err
