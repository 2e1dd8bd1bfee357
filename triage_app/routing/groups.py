"""Recursive, cycle-safe expansion of named groups into flat recipient sets.

Members are either literal recipients (emails) or ``group:<name>`` references.
The visited set is threaded through every recursive call, so cycles and diamonds
anywhere in the graph are expanded once; unknown groups expand to nothing.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from triage_app.core.config import GROUP_PREFIX

Groups = Mapping[str, Sequence[str]]


def is_group_ref(token: str) -> bool:
    return token.startswith(GROUP_PREFIX)


def expand(
    groups: Groups | None,
    token: str,
    accumulated: set[str] | None = None,
    visited: set[str] | None = None,
) -> tuple[set[str], set[str]]:
    if accumulated is None:
        accumulated = set()
    if not is_group_ref(token):
        accumulated.add(token)
        return accumulated, visited if visited is not None else set()

    if visited is None:
        visited = set()
    name = token[len(GROUP_PREFIX) :]
    if name in visited:
        return accumulated, visited
    visited.add(name)
    for member in (groups or {}).get(name, ()):
        accumulated, visited = expand(groups, member, accumulated, visited)
    return accumulated, visited


def expand_groups(groups: Groups | None, *roots: str) -> set[str]:
    """Flatten every root token into one set of literal recipients."""
    users: set[str] = set()
    for root in roots:
        users, _ = expand(groups, root, users, None)
    return users
