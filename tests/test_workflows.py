import json

import pytest

from fakes import SERVER, FakeChat, change, make_context, record, ts

from triage_app.chat.actions import ActionEvent
from triage_app.core.errors import AggregateError
from triage_app.core.formatting import format_record_message
from triage_app.core.models import FieldChange, RecordUpdate
from triage_app.core.recorder import EventRecorder
from triage_app.reconcile.driver import ReconciliationDriver, RunFailed
from triage_app.workflows.escalation_report import EscalationReport, stale_after
from triage_app.workflows.incoming_report import IncomingReport
from triage_app.workflows.moved_issues import MovedIssuesReport, MovedIssuesWorkflow
from triage_app.workflows.needinfo import NeedinfoWorkflow, describe_change
from triage_app.workflows.new_issues import NewIssuesWorkflow
from triage_app.workflows.urgent_escalation import EMERGENCY_REQUEST_MESSAGE, UrgentEscalationWorkflow


def _run(ctx, wf):
    return ReconciliationDriver(ctx.tracker, ctx.cursors).run(wf)


# ------------------ New issues ------------------
def test_new_issues_posts_take_buttons_and_advances_watermark():
    ctx = make_context([record(5, components=["Monitoring"]), record(7, components=["Monitoring"], assignee="a@example.com")])
    wf = NewIssuesWorkflow(ctx, ["Monitoring"])
    _run(ctx, wf)

    assert wf.name == "new-issues.Monitoring"
    assert [block for _, block, _ in ctx.chat.interactive] == ["new-issues/take-Monitoring"] * 2
    button = ctx.chat.interactive[1][2][0]
    assert json.loads(button.value) == {"id": 7, "oldAssignee": "a@example.com"}
    assert ctx.cursors.get("new-issues.Monitoring.lastID") == "7"
    query = ctx.tracker.queries[0]
    assert query.components == ["Monitoring"]
    assert query.conditions[0].field == "created"


def _click(record_id, old="", email="taker@example.com"):
    return ActionEvent(
        action_id="new-issues/take-Monitoring",
        value=json.dumps({"id": record_id, "oldAssignee": old}),
        user_id="U1",
        channel_id="C1",
        message_ts="17.1",
        user_email=email,
    )


def test_take_assigns_and_updates_message():
    r = record(5, components=["Monitoring"])
    ctx = make_context([r])
    NewIssuesWorkflow(ctx, ["Monitoring"]).take_clicked(_click(5))
    assert ctx.tracker.updates == [(5, RecordUpdate(status="In Progress", assignee="taker@example.com"))]
    assert ctx.chat.edits == [("C1", "17.1", f"{format_record_message(SERVER, r)} – assigned to taker@example.com")]


def test_take_refuses_stale_clicks():
    ctx = make_context(
        [
            record(1, status="In Progress"),
            record(2, assignee="other@example.com"),
        ]
    )
    wf = NewIssuesWorkflow(ctx, ["Monitoring"])
    wf.take_clicked(_click(1))
    wf.take_clicked(_click(2))
    wf.take_clicked(_click(2, email=""))
    wf.take_clicked(ActionEvent(action_id="x", value="garbage", user_id="U1"))
    assert ctx.tracker.updates == []
    assert [text for _, text in ctx.chat.user_dms] == [
        "OBS-1 has been moved already to In Progress",
        "OBS-2 has already been assigned to other@example.com",
        "Cannot assign the issue: your chat profile has no email",
    ]


# ------------------ Needinfo ------------------
def test_needinfo_messages_assignee_about_external_changes():
    r = record(3, assignee="alice@example.com", updated=ts(3, 10), summary="Broken dashboards")
    ctx = make_context(
        [r],
        histories={
            3: [
                change("alice@example.com", ts(3, 9), "status", "New", "To Do"),
                change("bob@example.com", ts(3, 10), "status", "To Do", "In Progress"),
            ]
        },
    )
    ctx.cursors.set("needinfo.lastChange", "2024-09-02T00:00:00+00:00")
    _run(ctx, NeedinfoWorkflow(ctx))
    assert len(ctx.chat.dms) == 1
    to, text = ctx.chat.dms[0]
    assert to == "alice@example.com"
    assert text.splitlines()[0] == f":pencil2: bob@example.com changed <{SERVER}/browse/OBS-3|OBS-3> (Broken dashboards):"
    assert "> *status*: To Do → In Progress" in text
    assert ctx.cursors.get("needinfo.lastChange") == "2024-09-03T10:00:00+00:00"


def test_needinfo_ignores_changes_made_by_the_operator_account():
    r = record(5, assignee="taker@example.com", updated=ts(3, 10))
    ctx = make_context(
        [r],
        histories={5: [change("operator-bot@example.com", ts(3, 10), "status", "New", "In Progress")]},
        credentials={"server": SERVER, "email": "operator-bot@example.com"},
    )
    ctx.cursors.set("needinfo.lastChange", "2024-09-02T00:00:00+00:00")
    _run(ctx, NeedinfoWorkflow(ctx))
    assert ctx.chat.dms == []
    assert ctx.cursors.get("needinfo.lastChange") == "2024-09-03T10:00:00+00:00"


def test_describe_change_placeholders():
    assert describe_change(FieldChange("flagged", None, "Impediment")) == "*flagged*: --- → Impediment"


# ------------------ Urgent escalation ------------------
def _urgent(record_id, **kw):
    kw.setdefault("severity", "Urgent")
    kw.setdefault("components", ["Monitoring"])
    return record(record_id, **kw)


def test_urgent_escalation_notifies_once_and_resets_severity():
    ctx = make_context(
        [
            _urgent(1, assignee="rep@example.com"),
            _urgent(2, whiteboard="EmergencyConfirmed"),
            _urgent(3, whiteboard="EmergencyRequest"),
        ]
    )
    wf = UrgentEscalationWorkflow(ctx)
    _run(ctx, wf)

    assert sorted({to for to, _ in ctx.chat.dms}) == ["mgr@example.com", "pm@example.com"]
    assert len(ctx.chat.dms) == 4
    assert ctx.tracker.updates == [
        (
            1,
            RecordUpdate(
                whiteboard="EmergencyRequest",
                comment=EMERGENCY_REQUEST_MESSAGE,
                assignee="mgr@example.com",
                priority="Unspecified",
                severity="Unspecified",
            ),
        )
    ]
    assert ctx.cursors.get("urgent-escalation.escalations") == "[1, 3]"
    assert "OBS-1" in ctx.chat.admin[0] and "OBS-3" in ctx.chat.admin[0]

    ctx.chat.dms.clear()
    _run(ctx, wf)
    assert ctx.chat.dms == []
    assert ctx.tracker.queries[-1].severities == ["Urgent"]


def test_urgent_escalation_restamps_without_messaging_again():
    ctx = make_context([_urgent(1, assignee="rep@example.com"), _urgent(2, whiteboard="EmergencyRequest")])
    wf = UrgentEscalationWorkflow(ctx)
    _run(ctx, wf)
    assert [rid for rid, _ in ctx.tracker.updates] == [1]
    dms = list(ctx.chat.dms)

    # somebody dropped the keyword and raised the severity again
    ctx.tracker.records[1] = _urgent(1, assignee="rep@example.com", whiteboard="Triaged")
    _run(ctx, wf)
    assert [rid for rid, _ in ctx.tracker.updates] == [1, 1]
    assert ctx.tracker.updates[1][1].whiteboard == "Triaged EmergencyRequest"
    assert ctx.tracker.updates[1][1].severity == "Unspecified"
    assert ctx.chat.dms == dms
    assert ctx.cursors.get("urgent-escalation.escalations") == "[1, 2]"


def test_urgent_escalation_retries_failed_deliveries():
    ctx = make_context([_urgent(1)])
    ctx.chat.unreachable.add("pm@example.com")
    wf = UrgentEscalationWorkflow(ctx)
    with pytest.raises(RunFailed):
        _run(ctx, wf)
    assert ctx.cursors.get("urgent-escalation.escalations") == "[]"

    ctx.chat.unreachable.clear()
    _run(ctx, wf)
    assert ctx.cursors.get("urgent-escalation.escalations") == "[1]"


def test_urgent_escalation_warns_about_missing_recipients():
    ctx = make_context([_urgent(4, components=["Logging"])])
    ctx.recorder = EventRecorder(ctx.chat)
    _run(ctx, UrgentEscalationWorkflow(ctx))
    assert ctx.chat.dms == []
    assert any("RecipientMissing" in text for text in ctx.chat.admin)


# ------------------ Escalation report ------------------
def _escalation(record_id, **kw):
    kw.setdefault("escalation", True)
    return _urgent(record_id, **kw)


def test_escalation_report_flags_teams_and_repeat_assignees():
    records = [
        _escalation(1, assignee="dev1@example.com", customer_cases=["High"]),
        _escalation(2, assignee="dev1@example.com", customer_cases=["Urgent"]),
        _escalation(3, assignee="dev2@example.com", customer_cases=["High"]),
        _escalation(4, assignee="dev6@example.com", components=["Logging"], customer_cases=["High"]),
        _escalation(5, assignee="x@example.com", components=["Tracing"]),
        _urgent(6, assignee="dev3@example.com"),
    ]
    ctx = make_context(records)
    report = EscalationReport(ctx)
    channel, admin = report.render(report.escalations())
    lines = channel.splitlines()
    assert lines[0] == "Escalation report:"
    assert ":red-siren: lead@example.com's team with 3 issues, above the quota of 1" in lines
    assert "loglead@example.com's team with 1 issue" in lines
    assert "Assignees with more than one escalation:" in lines
    assert lines[-1] == f"> :red-siren: dev1@example.com: <{SERVER}/browse/OBS-1|OBS-1> <{SERVER}/browse/OBS-2|OBS-2>"
    assert "OBS-6" not in channel
    assert admin.splitlines() == [
        "Component escalation stats:",
        "- Monitoring: 3",
        "- Logging: 1",
        "- Tracing: 1",
    ]
    assert ctx.tracker.queries[0].components == []
    assert ctx.tracker.queries[0].severities == []


def test_escalation_report_run_posts_to_both_channels():
    ctx = make_context([_escalation(1, assignee="dev1@example.com", components=["Tracing", "Monitoring"])])
    ctx.recorder = EventRecorder(ctx.chat)
    channel_chat = FakeChat("#mon")
    EscalationReport(ctx, ["Monitoring"], chat=channel_chat).run()
    assert channel_chat.posts == []
    assert any("MissingComponents" in t for t in ctx.chat.admin)
    assert "Component escalation stats:\n- Tracing: 1\n- Monitoring: 1" in ctx.chat.admin


def test_escalation_report_lists_silenced_issues():
    records = [
        _urgent(1, priority="Medium", customer_cases=["High"]),
        _urgent(2, priority="Low", customer_cases=["Normal"], components=["Tracing"]),
        _urgent(3, priority="Medium"),
    ]
    ctx = make_context(records)
    report = EscalationReport(ctx)
    channel, admin = report.render(report.escalations())
    assert channel.splitlines() == ["Escalation report:", "", "", f"1 silenced issues :see_no_evil: : <{SERVER}/browse/OBS-1|OBS-1>"]
    assert admin == ""


def test_escalation_report_warns_about_questionable_and_quiet_escalations():
    records = [
        # customer cases raised the priority, but none of them is high or urgent
        _urgent(1, priority="Urgent", severity="Medium", customer_cases=["Normal"]),
        _escalation(2, customer_cases=["High"], flags=["Impediment"], updated=ts(1)),
        _escalation(3, customer_cases=["High"], flags=["Impediment"], updated=ts(5, 12)),
        _urgent(4, customer_cases=["Urgent"]),
    ]
    ctx = make_context(records)
    # Friday
    report = EscalationReport(ctx, clock=lambda: ts(6, 12))
    lines = report.render(report.escalations())[0].splitlines()
    assert lines[2] == ":red-siren: lead@example.com's team with 4 issues, above the quota of 1"
    by_key = {line.split("|")[1].split(">")[0]: line for line in lines if line.startswith("> <")}
    assert by_key["OBS-1"].endswith(" - :warning: no high/urgent customer case, or closed. Double check!")
    assert by_key["OBS-2"].endswith(" - :warning: `Impediment` flag without change for more than 48h. Double check!")
    assert "warning" not in by_key["OBS-3"]
    assert "warning" not in by_key["OBS-4"]


def test_escalation_quiet_cutoff_skips_the_weekend():
    assert stale_after(ts(6, 12)) == ts(4, 12)
    # Monday
    assert stale_after(ts(9, 12)) == ts(5, 12)


# ------------------ Incoming report ------------------
def test_incoming_report_notifies_assignees_and_marks_issues():
    ctx = make_context(
        [
            record(1, assignee="dev1@example.com", components=["Monitoring"]),
            record(2, components=["Monitoring"]),
            record(3, whiteboard="AssigneeNotified", components=["Monitoring"]),
        ]
    )
    IncomingReport(ctx).run()
    assert sorted(to for to, _ in ctx.chat.dms) == ["dev1@example.com", "lead@example.com"]
    assert sorted(rid for rid, _ in ctx.tracker.updates) == [1, 2]
    assert all(u.whiteboard == "AssigneeNotified" for _, u in ctx.tracker.updates)
    assert len(ctx.chat.posts) == 1
    assert len(ctx.chat.posts[0].splitlines()) == 2


def test_incoming_report_collects_tracker_failures():
    ctx = make_context(
        [
            record(1, assignee="dev1@example.com", components=["Monitoring"]),
            record(2, assignee="gone@example.com", components=["Monitoring"]),
        ]
    )
    ctx.tracker.fail_updates.add(1)
    ctx.chat.unreachable.add("gone@example.com")
    with pytest.raises(AggregateError) as info:
        IncomingReport(ctx).run()
    assert len(info.value.errors) == 1
    assert ctx.tracker.updates == []
    assert len(ctx.chat.posts) == 1


# ------------------ Moved issues ------------------
def test_moved_issues_snapshot_feeds_the_report():
    ctx = make_context(
        [record(1, updated=ts(3)), record(2, updated=ts(3))],
        histories={
            1: [change("bob@example.com", ts(3), "components", "Tracing", "Monitoring")],
            2: [change("bob@example.com", ts(3), "components", "Tracing", "Storage")],
        },
    )
    wf = MovedIssuesWorkflow(ctx)
    result = _run(ctx, wf)
    assert result.items == 1
    assert ctx.tracker.queries[0].conditions[0].value == "-7d"
    stored = json.loads(ctx.cursors.get("moved-issues.transitions"))
    assert [e["id"] for e in stored] == [1]

    text = MovedIssuesReport(ctx).render(now=ts(5))
    assert text.splitlines() == [
        "*Components we received issues from last 7 days*:",
        "* Tracing (1 issues)",
        "*Components we moved issues to last 7 days:*",
        "* Monitoring (1 issues)",
    ]
    assert MovedIssuesReport(ctx).render(now=ts(20)).splitlines()[1].startswith("*Components we moved")


def test_moved_issues_clear_assignee_notified_after_a_component_change():
    moved = record(1, updated=ts(4), whiteboard="Triaged AssigneeNotified", components=["Monitoring"])
    told_later = record(2, updated=ts(4), whiteboard="AssigneeNotified", components=["Monitoring"])
    untagged = record(3, updated=ts(4), components=["Monitoring"])
    ctx = make_context(
        [moved, told_later, untagged],
        histories={
            1: [
                change("incoming@example.com", ts(2), "whiteboard", "Triaged", "Triaged AssigneeNotified"),
                change("bob@example.com", ts(3), "components", "Logging", "Monitoring"),
            ],
            2: [
                change("bob@example.com", ts(2), "components", "Logging", "Monitoring"),
                change("incoming@example.com", ts(3), "whiteboard", "", "AssigneeNotified"),
            ],
            3: [change("bob@example.com", ts(3), "components", "Logging", "Monitoring")],
        },
    )
    result = _run(ctx, MovedIssuesWorkflow(ctx))
    assert result.items == 3
    assert ctx.tracker.updates == [(1, RecordUpdate(whiteboard="Triaged"))]


def test_moved_issues_apply_failure_is_reported():
    r = record(1, updated=ts(4), whiteboard="AssigneeNotified", components=["Monitoring"])
    ctx = make_context([r], histories={1: [change("bob@example.com", ts(3), "components", "Logging", "Monitoring")]})
    ctx.tracker.fail_updates.add(1)
    with pytest.raises(RunFailed) as info:
        _run(ctx, MovedIssuesWorkflow(ctx))
    assert info.value.result.committed
