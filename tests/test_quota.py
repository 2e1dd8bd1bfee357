import pytest

from fakes import record

from triage_app.escalation.quota import evaluate, evaluate_teams, open_item_counts, quota_for


def test_quota_arithmetic():
    assert quota_for(5) == 1
    assert quota_for(3) == 1
    assert quota_for(0) == 1
    assert quota_for(20) == 4
    assert quota_for(15) == 3
    with pytest.raises(ValueError):
        quota_for(-1)


def test_over_quota_and_multiple_are_separate_flags():
    ev = evaluate({"a": 5, "b": 1, "c": 2}, group_size=20)
    assert ev.quota == 4
    assert [r.recipient for r in ev.over_quota] == ["a"]
    assert [r.recipient for r in ev.multiple] == ["a", "c"]

    small = evaluate({"solo": 1}, group_size=3)
    assert small.quota == 1
    assert small.over_quota == []
    assert small.multiple == []


def test_open_item_counts_groups_records():
    records = [
        record(1, assignee="a", components=["Monitoring"]),
        record(2, assignee="a", components=["Logging"]),
        record(3, assignee=None, components=["Monitoring"]),
        record(4, assignee="b", components=[]),
    ]
    assert open_item_counts(records) == {"a": 2, "Unassigned": 1, "b": 1}
    assert open_item_counts(records, by="component") == {"Monitoring": 2, "Logging": 1}
    assert open_item_counts([]) == {}
    with pytest.raises(ValueError):
        open_item_counts(records, by="nope")


def test_evaluate_teams_sorted_by_lead():
    teams = evaluate_teams(
        {"zed": [record(1), record(2)], "amy": [record(3)]},
        {"zed": 5, "amy": 10},
    )
    assert [t.lead for t in teams] == ["amy", "zed"]
    assert teams[0].quota == 2
    assert not teams[0].over_quota
    assert teams[1].count == 2
    assert teams[1].over_quota
