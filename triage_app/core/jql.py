"""Render structured Query objects into JQL strings."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence

from .config import FIELD_IDS
from .models import Condition, Query

_BARE_VALUE_RE = re.compile(r"^-?\d+[wdhm]?$")
_ALLOWED_OPS = frozenset({"=", "!=", ">", ">=", "<", "<=", "~", "!~", "in", "not in", "is", "is not"})


def quote(value: str) -> str:
    """Quote a JQL literal unless it is a number or a relative duration like ``-24h``."""
    text = str(value)
    if _BARE_VALUE_RE.match(text) or text.upper() in {"EMPTY", "NULL"}:
        return text
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def field_ref(name: str, field_ids: Mapping[str, str] | None = None) -> str:
    ids = field_ids if field_ids is not None else FIELD_IDS
    custom = ids.get(name)
    if custom and custom.startswith("customfield_"):
        return f"cf[{custom[len('customfield_'):]}]"
    return name


def _in_clause(ref: str, values: Sequence[str]) -> str:
    return f"{ref} in ({', '.join(quote(v) for v in values)})"


def render_condition(cond: Condition, field_ids: Mapping[str, str] | None = None) -> str:
    op = cond.op.strip().lower()
    if op not in _ALLOWED_OPS:
        raise ValueError(f"unsupported JQL operator {cond.op!r}")
    ref = field_ref(cond.field, field_ids)
    if op in {"in", "not in"}:
        values = [v.strip() for v in cond.value.split(",") if v.strip()]
        return f"{ref} {op} ({', '.join(quote(v) for v in values)})"
    return f"{ref} {op} {quote(cond.value)}"


def to_jql(query: Query, field_ids: Mapping[str, str] | None = None) -> str:
    clauses: list[str] = []
    if query.projects:
        clauses.append(_in_clause("project", query.projects))
    if query.issue_types:
        clauses.append(_in_clause("issuetype", query.issue_types))
    if query.statuses:
        clauses.append(_in_clause("status", query.statuses))
    if query.components:
        clauses.append(_in_clause("component", query.components))
    if query.severities:
        clauses.append(_in_clause(field_ref("severity", field_ids), query.severities))
    if query.priorities:
        clauses.append(_in_clause("priority", query.priorities))
    for cond in query.conditions:
        clauses.append(render_condition(cond, field_ids))
    jql = " AND ".join(clauses)
    if query.order_by:
        jql = f"{jql} ORDER BY {query.order_by}" if jql else f"ORDER BY {query.order_by}"
    return jql
