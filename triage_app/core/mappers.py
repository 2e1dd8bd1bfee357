"""Mapping raw Jira issue JSON into RecordModel instances and back to cacheable dicts."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import asdict
from datetime import datetime
from typing import Any

import pandas as pd

from .config import FIELD_IDS
from .models import CommentModel, FieldChange, HistoryEntry, RecordModel


def parse_dt(val) -> datetime | None:
    if not val:
        return None
    ts = pd.to_datetime(val, utc=True, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    return ts.to_pydatetime()


def format_dt(val: datetime | None) -> str | None:
    if val is None:
        return None
    return val.isoformat()


def person_id(value: Any) -> str | None:
    """Identity used for routing: email when visible, else display name, else account id."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return value.get("emailAddress") or value.get("displayName") or value.get("accountId")
    return str(value)


def _option_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return value.get("value") or value.get("name")
    return str(value)


def _option_list(value: Any) -> list[str]:
    if not value:
        return []
    if not isinstance(value, list):
        value = [value]
    out = []
    for v in value:
        name = _option_value(v)
        if name:
            out.append(name)
    return out


def adf_text(body: Any) -> str:
    """Flatten an Atlassian Document Format body into plain text."""
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    parts: list[str] = []

    def walk(node: Any):
        if isinstance(node, Mapping):
            if node.get("type") == "text" and isinstance(node.get("text"), str):
                parts.append(node["text"])
            for child in node.get("content") or []:
                walk(child)
            if node.get("type") in {"paragraph", "heading"}:
                parts.append("\n")
        elif isinstance(node, list):
            for child in node:
                walk(child)

    walk(body)
    return "".join(parts).strip()


def map_record(raw: dict[str, Any], field_ids: Mapping[str, str] | None = None) -> RecordModel:
    ids = field_ids if field_ids is not None else FIELD_IDS
    fields = raw.get("fields") or {}
    raw_id = raw.get("id")
    try:
        record_id = int(raw_id)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"issue payload without numeric id: {raw_id!r}") from exc

    return RecordModel(
        id=record_id,
        key=str(raw.get("key") or record_id),
        summary=fields.get("summary"),
        status=(fields.get("status") or {}).get("name") if fields.get("status") else None,
        severity=_option_value(fields.get(ids["severity"])) if ids.get("severity") else None,
        priority=(fields.get("priority") or {}).get("name") if fields.get("priority") else None,
        resolution=(fields.get("resolution") or {}).get("name") if fields.get("resolution") else None,
        assignee=person_id(fields.get("assignee")),
        reporter=person_id(fields.get("reporter")),
        whiteboard=str(fields.get(ids["whiteboard"]) or "") if ids.get("whiteboard") else "",
        created=parse_dt(fields.get("created")),
        updated=parse_dt(fields.get("updated")),
        revision=str(fields.get("updated") or ""),
        components=[c.get("name") for c in fields.get("components") or [] if isinstance(c, dict) and c.get("name")],
        labels=list(fields.get("labels") or []),
        flags=_option_list(fields.get(ids["flagged"])) if ids.get("flagged") else [],
        escalation=(_option_value(fields.get(ids["escalation"])) or "").lower() == "yes" if ids.get("escalation") else False,
        customer_cases=_option_list(fields.get(ids["customer_cases"])) if ids.get("customer_cases") else [],
    )


def map_comments(raw_comments: Iterable[dict[str, Any]]) -> list[CommentModel]:
    return [
        CommentModel(
            author=person_id(c.get("author")),
            created=parse_dt(c.get("created")),
            body=adf_text(c.get("body")),
        )
        for c in raw_comments or []
    ]


def _normalize_field(item: Mapping[str, Any], reverse_ids: Mapping[str, str]) -> str:
    field_id = item.get("fieldId")
    if field_id and field_id in reverse_ids:
        return reverse_ids[field_id]
    if field_id:
        return str(field_id)
    return str(item.get("field") or "").lower()


def map_histories(raw_histories: Iterable[dict[str, Any]], field_ids: Mapping[str, str] | None = None) -> list[HistoryEntry]:
    ids = field_ids if field_ids is not None else FIELD_IDS
    reverse_ids = {v: k for k, v in ids.items()}
    out = []
    for h in raw_histories or []:
        changes = [
            FieldChange(
                field=_normalize_field(item, reverse_ids),
                from_value=item.get("fromString") if item.get("fromString") is not None else item.get("from"),
                to_value=item.get("toString") if item.get("toString") is not None else item.get("to"),
            )
            for item in h.get("items") or []
        ]
        out.append(HistoryEntry(author=person_id(h.get("author")), created=parse_dt(h.get("created")), changes=changes))
    return out


# ------------------ Cache (de)serialization ------------------
def record_to_dict(record: RecordModel) -> dict[str, Any]:
    d = asdict(record)
    d["created"] = format_dt(record.created)
    d["updated"] = format_dt(record.updated)
    return d


def record_from_dict(d: Mapping[str, Any]) -> RecordModel:
    data = dict(d)
    data["created"] = parse_dt(data.get("created"))
    data["updated"] = parse_dt(data.get("updated"))
    return RecordModel(**data)


def comments_to_list(comments: Iterable[CommentModel]) -> list[dict[str, Any]]:
    return [{"author": c.author, "created": format_dt(c.created), "body": c.body} for c in comments]


def comments_from_list(rows: Iterable[Mapping[str, Any]]) -> list[CommentModel]:
    return [CommentModel(author=r.get("author"), created=parse_dt(r.get("created")), body=r.get("body")) for r in rows]


def histories_to_list(histories: Iterable[HistoryEntry]) -> list[dict[str, Any]]:
    return [
        {
            "author": h.author,
            "created": format_dt(h.created),
            "changes": [{"field": c.field, "from": c.from_value, "to": c.to_value} for c in h.changes],
        }
        for h in histories
    ]


def histories_from_list(rows: Iterable[Mapping[str, Any]]) -> list[HistoryEntry]:
    return [
        HistoryEntry(
            author=r.get("author"),
            created=parse_dt(r.get("created")),
            changes=[FieldChange(field=c["field"], from_value=c.get("from"), to_value=c.get("to")) for c in r.get("changes") or []],
        )
        for r in rows
    ]


def records_to_dataframe(records: Iterable[RecordModel]) -> pd.DataFrame:
    rows = []
    for r in records:
        rows.append(
            {
                "id": r.id,
                "key": r.key,
                "summary": r.summary,
                "status": r.status,
                "severity": r.severity,
                "priority": r.priority,
                "assignee": r.assignee or "Unassigned",
                "reporter": r.reporter or "Unknown",
                "component": r.components[0] if r.components else None,
                "updated": r.updated,
            }
        )
    return pd.DataFrame(rows, columns=["id", "key", "summary", "status", "severity", "priority", "assignee", "reporter", "component", "updated"])
