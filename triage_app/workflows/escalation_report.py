"""Per-lead escalation report with quota flags, plus per-component stats for admins.

An urgent issue counts as an escalation when support raised it as one, or when
open customer cases are linked and the priority is urgent (or the severity is
urgent and nobody set a priority yet). Urgent-severity issues with customer
cases that were deliberately given a lower priority are listed as silenced.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from triage_app.core.config import ESCALATION_NEEDINFO_AGE, OPEN_STATUSES
from triage_app.core.formatting import format_components, record_link, record_links
from triage_app.core.models import RecordModel
from triage_app.core.status import is_unspecified, is_urgent
from triage_app.escalation.quota import evaluate, evaluate_teams, open_item_counts
from triage_app.routing.people import developers_for, lead_for, leads

from .base import Report, WorkflowContext

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class Classification:
    escalation: bool
    silenced: bool
    # escalation without any high or urgent customer case behind it
    questionable: bool


def classify(r: RecordModel) -> Classification:
    cases = bool(r.customer_cases)
    severity_urgent = is_urgent(r.severity)
    priority_urgent = is_urgent(r.priority)
    escalation = (
        (r.escalation and (severity_urgent or priority_urgent))
        or (cases and priority_urgent)
        or (cases and severity_urgent and is_unspecified(r.priority))
    )
    silenced = not escalation and cases and severity_urgent and not priority_urgent
    backed = any("high" in p.lower() or "urgent" in p.lower() for p in r.customer_cases)
    return Classification(escalation=escalation, silenced=silenced, questionable=escalation and not backed)


def stale_after(now: datetime) -> datetime:
    """Cutoff for "no change lately"; the weekend does not count on Monday and Tuesday."""
    age = ESCALATION_NEEDINFO_AGE
    if now.weekday() in (0, 1):
        age += ESCALATION_NEEDINFO_AGE
    return now - age


class EscalationReport(Report):
    name = "escalations"

    def __init__(
        self,
        ctx: WorkflowContext,
        components: Sequence[str] | None = None,
        chat=None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.ctx = ctx
        self.components = list(components) if components is not None else ctx.config.component_names()
        self.chat = chat or ctx.chat
        self.clock = clock or (lambda: datetime.now(UTC))

    def escalations(self) -> list[RecordModel]:
        query = self.ctx.query(statuses=OPEN_STATUSES, components=[])
        return self.ctx.tracker.search(query)

    def _line(self, r: RecordModel, kind: Classification, cutoff: datetime) -> str:
        line = (
            f"> {record_link(self.ctx.server, r)} [*{r.status}* in *{format_components(r.components)}*] "
            f"@ {r.assignee or 'Unassigned'}: {r.summary or ''}"
        )
        warnings = []
        if kind.questionable:
            warnings.append("no high/urgent customer case, or closed")
        if r.flags and r.updated is not None and r.updated < cutoff:
            warnings.append(f"`{r.flags[0]}` flag without change for more than 48h")
        if warnings:
            line += f" - :warning: {'. '.join(warnings)}. Double check!"
        return line

    def render(self, records: Sequence[RecordModel]) -> tuple[str, str]:
        """(channel report, admin component stats); the channel report is empty when nothing is ours."""
        cfg = self.ctx.config
        ours_components = set(self.components)
        component_stats: Counter = Counter()
        ours: list[tuple[RecordModel, Classification]] = []
        silenced: list[RecordModel] = []
        for r in records:
            kind = classify(r)
            if kind.escalation:
                component_stats.update(r.components)
            if not ours_components.intersection(r.components):
                continue
            if kind.escalation:
                ours.append((r, kind))
            elif kind.silenced:
                silenced.append(r)

        team_items: dict[str, list[RecordModel]] = {}
        missing: set[str] = set()
        for r, _ in ours:
            first = r.components[0]
            if first not in cfg.components:
                missing.add(first)
            lead = lead_for(cfg, first)
            if lead:
                team_items.setdefault(lead, []).append(r)
        if missing:
            self.ctx.recorder.warning("MissingComponents", f"Missing components in config: {', '.join(sorted(missing))}")

        admin_lines = ["Component escalation stats:"] + [f"- {name}: {n}" for name, n in component_stats.most_common()]
        admin = "\n".join(admin_lines) if component_stats else ""

        if not team_items and not silenced:
            return "", admin

        kinds = {r.id: kind for r, kind in ours}
        cutoff = stale_after(self.clock())
        team_sizes = {lead: len(developers_for(cfg, *comps)) for lead, comps in leads(cfg).items()}
        lines = ["Escalation report:", ""]
        for team in evaluate_teams(team_items, team_sizes, cfg.quota_ratio):
            if team.over_quota:
                lines.append(f":red-siren: {team.lead}'s team with {team.count} issues, above the quota of {team.quota}")
            else:
                lines.append(f"{team.lead}'s team with {team.count} issue{'s' if team.count != 1 else ''}")
            for r in team.records:
                lines.append(self._line(r, kinds[r.id], cutoff))

        escalated = [r for r, _ in ours]
        group_size = len(developers_for(cfg, *self.components))
        evaluation = evaluate(open_item_counts(escalated, by="assignee"), group_size, cfg.quota_ratio)
        if evaluation.multiple:
            lines += ["", "Assignees with more than one escalation:"]
            for rc in evaluation.multiple:
                theirs = [r for r in escalated if (r.assignee or "Unassigned") == rc.recipient]
                lines.append(f"> :red-siren: {rc.recipient}: {record_links(self.ctx.server, theirs)}")
        if silenced:
            lines += ["", f"{len(silenced)} silenced issues :see_no_evil: : {record_links(self.ctx.server, silenced)}"]
        logger.debug("Escalation report covers %d teams, %d escalations and %d silenced issues", len(team_items), len(ours), len(silenced))
        return "\n".join(lines), admin

    def run(self, cancel: threading.Event | None = None) -> None:
        channel_report, admin_report = self.render(self.escalations())
        if channel_report:
            self.chat.message_channel(channel_report)
        if admin_report:
            self.ctx.chat.message_admin_channel(admin_report)
