"""Status and whiteboard-keyword classification shared by workflows.

Status names are compared case-insensitively against the workflow
configuration in config.py (INITIAL_STATUSES, OPEN_STATUSES, TERMINAL_STATUSES).
"""

from __future__ import annotations

from collections.abc import Mapping

from .config import (
    DEVELOPMENT_STATUSES,
    INITIAL_STATUSES,
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    UNSPECIFIED,
    URGENT_LEVELS,
)

INITIAL_STATUSES_LOWER: frozenset[str] = frozenset(s.lower() for s in INITIAL_STATUSES)
DEVELOPMENT_STATUSES_LOWER: frozenset[str] = frozenset(s.lower() for s in DEVELOPMENT_STATUSES)
OPEN_STATUSES_LOWER: frozenset[str] = frozenset(s.lower() for s in OPEN_STATUSES)
DONE_STATUSES_LOWER: frozenset[str] = frozenset(
    {s.lower() for s in TERMINAL_STATUSES} | {"resolved", "closed", "completed", "duplicated"}
)


def _lower(value: str | None) -> str:
    return str(value or "").strip().lower()


def is_initial_status(value: str | None) -> bool:
    """Check if nobody picked the issue up yet.

    Parameters
    ----------
    value : str | None
        Raw status string from Jira.

    Returns
    -------
    bool
        True for statuses like "New", "To Do" or "Reported".

    Examples
    --------
    >>> is_initial_status("to do")
    True
    >>> is_initial_status("In Progress")
    False
    """
    return _lower(value) in INITIAL_STATUSES_LOWER


def is_terminal_status(value: str | None) -> bool:
    """Check if status indicates a closed/terminal state.

    Parameters
    ----------
    value : str | None
        Raw status string.

    Returns
    -------
    bool
        True if the status is terminal (Done, Cancelled, Duplicate, Transferred, ...).
    """
    return _lower(value) in DONE_STATUSES_LOWER


def is_open_status(value: str | None) -> bool:
    text = _lower(value)
    return text in OPEN_STATUSES_LOWER and text not in DONE_STATUSES_LOWER


def is_development_status(value: str | None) -> bool:
    """Still on a developer's plate (not yet in testing, tracking or blocked)."""
    return _lower(value) in DEVELOPMENT_STATUSES_LOWER


def whiteboard_keywords(whiteboard: str | None) -> list[str]:
    return [w for w in str(whiteboard or "").split() if w]


def has_keyword(whiteboard: str | None, keyword: str) -> bool:
    return keyword in whiteboard_keywords(whiteboard)


def with_keyword(whiteboard: str | None, keyword: str) -> str:
    """Whiteboard text with ``keyword`` appended once.

    Examples
    --------
    >>> with_keyword("Triaged", "AssigneeNotified")
    'Triaged AssigneeNotified'
    >>> with_keyword("AssigneeNotified", "AssigneeNotified")
    'AssigneeNotified'
    """
    words = whiteboard_keywords(whiteboard)
    if keyword not in words:
        words.append(keyword)
    return " ".join(words)


def without_keyword(whiteboard: str | None, keyword: str) -> str:
    return " ".join(w for w in whiteboard_keywords(whiteboard) if w != keyword)


def is_urgent(value: str | None) -> bool:
    return _lower(value) in URGENT_LEVELS


def is_unspecified(value: str | None) -> bool:
    return _lower(value) in {"", UNSPECIFIED.lower()}


def degrade_priority(transitions: Mapping[str, str], current: str | None) -> str | None:
    """The lowered priority for ``current``, or None when it stays as is.

    Examples
    --------
    >>> degrade_priority({"High": "Medium"}, "high")
    'Medium'
    >>> degrade_priority({"High": "Medium"}, "Low") is None
    True
    """
    wanted = _lower(current) or UNSPECIFIED.lower()
    for old, new in transitions.items():
        if old.lower() == wanted:
            return new
    return None
