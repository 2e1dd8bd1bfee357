from triage_app.core.config import Component, OperatorConfig
from triage_app.routing.groups import expand, expand_groups
from triage_app.routing.people import (
    developers_for,
    lead_for,
    leads,
    manager_for,
    tracker_email_for,
    watchers_for,
)


def test_cycle_terminates_with_union_of_members():
    groups = {"A": ["a@example.com", "group:B"], "B": ["b@example.com", "group:A"]}
    members, visited = expand(groups, "group:A")
    assert members == {"a@example.com", "b@example.com"}
    assert visited == {"A", "B"}


def test_diamond_and_self_reference():
    groups = {
        "top": ["group:left", "group:right", "group:top"],
        "left": ["group:base"],
        "right": ["group:base", "r@example.com"],
        "base": ["x@example.com"],
    }
    assert expand_groups(groups, "group:top") == {"x@example.com", "r@example.com"}


def test_literal_and_unknown_group():
    assert expand({}, "solo@example.com") == ({"solo@example.com"}, set())
    assert expand_groups({}, "group:nope") == set()
    assert expand_groups(None, "group:nope", "a@example.com") == {"a@example.com"}


def test_expansion_is_idempotent():
    groups = {"A": ["group:B", "a"], "B": ["group:A", "b"], "C": ["group:A", "c"]}
    first = expand_groups(groups, "group:C", "group:B")
    second = expand_groups(groups, "group:C", "group:B")
    assert first == second == {"a", "b", "c"}


def test_each_root_gets_a_fresh_visited_set():
    groups = {"A": ["a"], "B": ["group:A", "b"]}
    assert expand_groups(groups, "group:A", "group:B") == {"a", "b"}


def _config():
    return OperatorConfig(
        groups={"devs": ["d1", "d2"]},
        components={
            "Monitoring": Component(lead="lead", manager="mgr", developers=["group:devs", "d3"], watchers=["w1"]),
            "Logging": Component(lead="lead", developers=["d3", "d4"]),
            "Tracing": Component(),
        },
        slack_emails={"jira@example.com": "slack@example.com"},
    )


def test_component_lookups_with_fallback():
    cfg = _config()
    assert lead_for(cfg, "Monitoring") == "lead"
    assert lead_for(cfg, "Tracing", "someone") == "someone"
    assert manager_for(cfg, "Unknown", "fallback") == "fallback"
    assert developers_for(cfg, "Monitoring", "Logging") == {"d1", "d2", "d3", "d4"}
    assert watchers_for(cfg, "Monitoring") == {"w1"}
    assert leads(cfg) == {"lead": ["Logging", "Monitoring"]}
    assert leads(cfg, ["Logging"]) == {"lead": ["Logging"]}


def test_identity_translation():
    cfg = _config()
    assert tracker_email_for(cfg, "slack@example.com") == "jira@example.com"
    assert tracker_email_for(cfg, "other@example.com") == "other@example.com"
