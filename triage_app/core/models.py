"""Domain data models for tracked issues, comments, change histories and queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class CommentModel:
    author: str | None
    created: datetime | None
    body: str | None


@dataclass(slots=True)
class FieldChange:
    field: str
    from_value: str | None
    to_value: str | None


@dataclass(slots=True)
class HistoryEntry:
    author: str | None
    created: datetime | None
    changes: list[FieldChange] = field(default_factory=list)


@dataclass(slots=True)
class RecordModel:
    """Snapshot of one tracked issue as returned by a single fetch.

    ``revision`` is the raw last-modification stamp used as the cache revision tag.
    Comments and histories are not part of searches; fetch them through the tracker.
    """

    id: int
    key: str
    summary: str | None = None
    status: str | None = None
    severity: str | None = None
    priority: str | None = None
    resolution: str | None = None
    assignee: str | None = None
    reporter: str | None = None
    whiteboard: str = ""
    created: datetime | None = None
    updated: datetime | None = None
    revision: str = ""
    components: list[str] = field(default_factory=list)
    labels: list[str] = field(default_factory=list)
    flags: list[str] = field(default_factory=list)
    escalation: bool = False
    # priorities of open linked customer cases
    customer_cases: list[str] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class Transition:
    from_value: str
    to_value: str
    when: datetime


@dataclass(slots=True)
class FlagChange:
    name: str
    set: bool = True


@dataclass(slots=True)
class RecordUpdate:
    """Partial field-change document; ``None`` means "leave unchanged"."""

    status: str | None = None
    resolution: str | None = None
    priority: str | None = None
    severity: str | None = None
    whiteboard: str | None = None
    comment: str | None = None
    assignee: str | None = None
    flags: list[FlagChange] = field(default_factory=list)

    def is_empty(self) -> bool:
        return (
            self.status is None
            and self.resolution is None
            and self.priority is None
            and self.severity is None
            and self.whiteboard is None
            and self.comment is None
            and self.assignee is None
            and not self.flags
        )


@dataclass(slots=True, frozen=True)
class Condition:
    """One advanced filter, e.g. ``Condition("id", ">", "42")``."""

    field: str
    op: str
    value: str


@dataclass(slots=True)
class Query:
    projects: list[str] = field(default_factory=list)
    statuses: list[str] = field(default_factory=list)
    components: list[str] = field(default_factory=list)
    severities: list[str] = field(default_factory=list)
    priorities: list[str] = field(default_factory=list)
    issue_types: list[str] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)
    fields: list[str] = field(default_factory=list)
    order_by: str = "id ASC"

    def with_conditions(self, *extra: Condition) -> Query:
        return Query(
            projects=list(self.projects),
            statuses=list(self.statuses),
            components=list(self.components),
            severities=list(self.severities),
            priorities=list(self.priorities),
            issue_types=list(self.issue_types),
            conditions=[*self.conditions, *extra],
            fields=list(self.fields),
            order_by=self.order_by,
        )
