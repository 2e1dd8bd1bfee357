"""Bounded-ratio escalation quotas over resolved groups.

Counts are recomputed from the current records on every run and never persisted.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from triage_app.core.config import ESCALATION_QUOTA_RATIO
from triage_app.core.mappers import records_to_dataframe
from triage_app.core.models import RecordModel


@dataclass(slots=True)
class RecipientCount:
    recipient: str
    count: int
    over_quota: bool
    multiple: bool


@dataclass(slots=True)
class QuotaEvaluation:
    quota: int
    group_size: int
    recipients: list[RecipientCount] = field(default_factory=list)

    @property
    def over_quota(self) -> list[RecipientCount]:
        return [r for r in self.recipients if r.over_quota]

    @property
    def multiple(self) -> list[RecipientCount]:
        return [r for r in self.recipients if r.multiple]


@dataclass(slots=True)
class TeamQuota:
    lead: str
    team_size: int
    quota: int
    records: list[RecordModel] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.records)

    @property
    def over_quota(self) -> bool:
        return self.count > self.quota


def quota_for(group_size: int, ratio: float = ESCALATION_QUOTA_RATIO) -> int:
    """``max(1, floor(ratio * size))``; e.g. 5 -> 1, 3 -> 1, 20 -> 4."""
    if group_size < 0:
        raise ValueError(f"group size must not be negative: {group_size}")
    # round first so 0.2 * 15 floors to 3, not 2
    return max(1, math.floor(round(group_size * ratio, 9)))


def open_item_counts(records: Iterable[RecordModel], by: str = "assignee") -> dict[str, int]:
    """Open items per ``by`` column (``assignee``, ``component``, ...), most loaded first."""
    df = records_to_dataframe(records)
    if df.empty:
        return {}
    if by not in df.columns:
        raise ValueError(f"cannot count by {by!r}")
    counts = df.dropna(subset=[by]).groupby(by).size().sort_values(ascending=False, kind="stable")
    return {str(k): int(v) for k, v in counts.items()}


def evaluate(counts: Mapping[str, int], group_size: int, ratio: float = ESCALATION_QUOTA_RATIO) -> QuotaEvaluation:
    quota = quota_for(group_size, ratio)
    recipients = [
        RecipientCount(recipient=name, count=n, over_quota=n > quota, multiple=n > 1)
        for name, n in sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    ]
    return QuotaEvaluation(quota=quota, group_size=group_size, recipients=recipients)


def evaluate_teams(
    team_items: Mapping[str, Sequence[RecordModel]],
    team_sizes: Mapping[str, int],
    ratio: float = ESCALATION_QUOTA_RATIO,
) -> list[TeamQuota]:
    """One TeamQuota per lead, sorted by lead name."""
    out = []
    for lead in sorted(team_items):
        size = team_sizes.get(lead, 0)
        out.append(TeamQuota(lead=lead, team_size=size, quota=quota_for(size, ratio), records=list(team_items[lead])))
    return out
