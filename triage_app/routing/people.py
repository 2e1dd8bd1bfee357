"""Component ownership lookups and tracker <-> chat identity translation."""

from __future__ import annotations

from collections.abc import Iterable

from triage_app.core.config import Component, OperatorConfig
from triage_app.routing.groups import expand_groups


def component_for(config: OperatorConfig, name: str) -> Component | None:
    return config.components.get(name)


def lead_for(config: OperatorConfig, component: str, fallback: str = "") -> str:
    c = component_for(config, component)
    return c.lead if c is not None and c.lead else fallback


def manager_for(config: OperatorConfig, component: str, fallback: str = "") -> str:
    c = component_for(config, component)
    return c.manager if c is not None and c.manager else fallback


def product_manager_for(config: OperatorConfig, component: str, fallback: str = "") -> str:
    c = component_for(config, component)
    return c.product_manager if c is not None and c.product_manager else fallback


def developers_for(config: OperatorConfig, *components: str) -> set[str]:
    """Expanded developer set of every named component (group references resolved)."""
    roots: list[str] = []
    for name in components:
        c = component_for(config, name)
        if c is not None:
            roots.extend(c.developers)
    return expand_groups(config.groups, *roots)


def watchers_for(config: OperatorConfig, *components: str) -> set[str]:
    roots: list[str] = []
    for name in components:
        c = component_for(config, name)
        if c is not None:
            roots.extend(c.watchers)
    return expand_groups(config.groups, *roots)


def leads(config: OperatorConfig, components: Iterable[str] | None = None) -> dict[str, list[str]]:
    """Map each lead to the sorted components they lead (restricted to ``components`` when given)."""
    wanted = set(components) if components is not None else None
    out: dict[str, list[str]] = {}
    for name in config.component_names():
        if wanted is not None and name not in wanted:
            continue
        lead = lead_for(config, name)
        if lead:
            out.setdefault(lead, []).append(name)
    return out


def tracker_email_for(config: OperatorConfig, slack_email: str) -> str:
    for tracker_email, chat_email in config.slack_emails.items():
        if chat_email == slack_email:
            return tracker_email
    return slack_email
