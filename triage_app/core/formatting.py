"""Slack mrkdwn renderings of tracked issues."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from .config import URGENT_SEVERITY
from .models import RecordModel


def record_url(server: str, record: RecordModel) -> str:
    return f"{server.rstrip('/')}/browse/{record.key}"


def record_link(server: str, record: RecordModel) -> str:
    return f"<{record_url(server, record)}|{record.key}>"


def format_level(value: str | None) -> str:
    text = (value or "").strip()
    low = text.lower()
    if low in {"urgent", "highest", "blocker"}:
        return f":warning:*{text}*"
    if low in {"high", "critical"}:
        return f"*{text}*"
    if low in {"low", "lowest", "minor"}:
        return text
    return f"_{text or 'unspecified'}_"


def format_components(components: Sequence[str]) -> str:
    if not components:
        return "---"
    return ", ".join(components)


def format_record_message(server: str, record: RecordModel) -> str:
    prefix = ":jira:"
    if (record.severity or "").lower() == URGENT_SEVERITY.lower():
        prefix = ":red-siren: *URGENT*"
    return (
        f"{prefix} {record_link(server, record)} [*{record.status or '---'}*] {record.summary or ''} – "
        f"{format_level(record.severity)}/{format_level(record.priority)} in *{format_components(record.components)}*"
    )


def record_links(server: str, records: Iterable[RecordModel]) -> str:
    return " ".join(record_link(server, r) for r in records)


def plural(count: int, noun: str = "issue") -> str:
    if count == 0:
        return f"no {noun}s"
    if count == 1:
        return f"1 {noun}"
    return f"{count} {noun}s"
