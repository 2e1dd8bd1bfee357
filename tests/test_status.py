from fakes import SERVER, FakeChat, record

from triage_app.core.errors import AggregateError, ChatError, aggregate
from triage_app.core.formatting import format_level, format_record_message, plural, record_links
from triage_app.core.recorder import EventRecorder
from triage_app.core.status import (
    degrade_priority,
    has_keyword,
    is_development_status,
    is_initial_status,
    is_open_status,
    is_terminal_status,
    is_unspecified,
    is_urgent,
    with_keyword,
    without_keyword,
)


def test_status_classification():
    assert is_initial_status("to do")
    assert not is_initial_status(None)
    assert is_terminal_status("Closed")
    assert is_open_status("Blocked")
    assert not is_open_status("Done")
    assert is_development_status("in progress")
    assert not is_development_status("Testing")


def test_whiteboard_keywords():
    assert has_keyword("Triaged AssigneeNotified", "AssigneeNotified")
    assert not has_keyword("AssigneeNotifiedLater", "AssigneeNotified")
    assert with_keyword(None, "EmergencyRequest") == "EmergencyRequest"
    assert with_keyword("  a   b ", "b") == "a b"
    assert without_keyword("Triaged LifecycleStale", "LifecycleStale") == "Triaged"


def test_urgency_and_priority_degrade():
    assert is_urgent("Highest")
    assert not is_urgent("High")
    assert is_unspecified(None) and is_unspecified("unspecified")
    transitions = {"High": "Medium", "Medium": "Low", "Unspecified": "Low"}
    assert degrade_priority(transitions, "high") == "Medium"
    assert degrade_priority(transitions, None) == "Low"
    assert degrade_priority(transitions, "Low") is None

def test_record_message_formats():
    urgent = record(1, severity="Urgent", priority="High", components=["Monitoring"], summary="Down")
    assert format_record_message(SERVER, urgent) == (
        f":red-siren: *URGENT* <{SERVER}/browse/OBS-1|OBS-1> [*New*] Down – :warning:*Urgent*/*High* in *Monitoring*"
    )
    plain = record(2, summary="Slow")
    assert format_record_message(SERVER, plain).startswith(":jira: ")
    assert format_record_message(SERVER, plain).endswith("_unspecified_/_unspecified_ in *---*")
    assert record_links(SERVER, [urgent, plain]).count("<") == 2
    assert format_level("Low") == "Low"


def test_plural():
    assert plural(0) == "no issues"
    assert plural(1) == "1 issue"
    assert plural(3, "escalation") == "3 escalations"


def test_aggregate_errors_flatten():
    inner = AggregateError([ValueError("a"), ValueError("b")])
    outer = AggregateError([inner, KeyError("c"), None])
    assert len(outer) == 3
    assert aggregate([None, None]) is None
    assert str(aggregate([ValueError("only")])) == "only"


def test_recorder_survives_chat_failures():
    class DownChat(FakeChat):
        def message_admin_channel(self, text):
            raise ChatError("down")

    EventRecorder(DownChat()).warning("Reason", "still logged")
    chat = FakeChat()
    EventRecorder(chat).for_component("needinfo").event("Started", "ok")
    assert chat.admin == ["needinfo Started: ok"]
