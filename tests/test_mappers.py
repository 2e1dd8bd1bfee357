from datetime import UTC, datetime

from triage_app.core.mappers import (
    adf_text,
    map_comments,
    map_histories,
    map_record,
    person_id,
    record_from_dict,
    record_to_dict,
    records_to_dataframe,
)

RAW = {
    "id": "10001",
    "key": "OBS-1",
    "fields": {
        "summary": "Collector drops spans",
        "created": "2024-09-01T10:00:00.000+0000",
        "updated": "2024-09-02T10:00:00.000+0000",
        "assignee": {"displayName": "Alice", "emailAddress": "alice@example.com"},
        "reporter": {"displayName": "Bob"},
        "priority": {"name": "High"},
        "status": {"name": "New"},
        "resolution": None,
        "components": [{"name": "Monitoring"}, {"name": "Logging"}],
        "labels": ["x"],
        "customfield_10200": {"value": "Urgent"},
        "customfield_10201": "AssigneeNotified",
        "customfield_10021": [{"value": "Impediment"}],
        "customfield_10202": {"value": "Yes"},
        "customfield_10203": [{"value": "High"}, {"value": "Normal"}],
    },
}


def test_map_record():
    r = map_record(RAW)
    assert r.id == 10001
    assert r.key == "OBS-1"
    assert r.assignee == "alice@example.com"
    assert r.reporter == "Bob"
    assert r.severity == "Urgent"
    assert r.whiteboard == "AssigneeNotified"
    assert r.flags == ["Impediment"]
    assert r.escalation is True
    assert r.customer_cases == ["High", "Normal"]
    assert r.components == ["Monitoring", "Logging"]
    assert r.revision == "2024-09-02T10:00:00.000+0000"
    assert r.updated == datetime(2024, 9, 2, 10, tzinfo=UTC)


def test_record_dict_roundtrip_keeps_dates():
    r = map_record(RAW)
    assert record_from_dict(record_to_dict(r)) == r


def test_person_id_preference():
    assert person_id(None) is None
    assert person_id({"accountId": "abc"}) == "abc"
    assert person_id("x@example.com") == "x@example.com"


def test_adf_text_flattens_paragraphs():
    body = {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": "Hello "}, {"type": "text", "text": "world"}]},
            {"type": "paragraph", "content": [{"type": "text", "text": "again"}]},
        ],
    }
    assert adf_text(body) == "Hello world\nagain"
    assert adf_text("plain") == "plain"


def test_map_comments_and_histories():
    comments = map_comments([{"author": {"displayName": "Ann"}, "created": "2024-09-01T10:00:00.000+0000", "body": "hi"}])
    assert comments[0].author == "Ann"
    assert comments[0].body == "hi"

    histories = map_histories(
        [
            {
                "author": {"emailAddress": "bob@example.com"},
                "created": "2024-09-02T09:00:00.000+0000",
                "items": [
                    {"field": "status", "fieldId": "status", "fromString": "New", "toString": "In Progress"},
                    {"field": "Severity", "fieldId": "customfield_10200", "fromString": "Low", "toString": "Urgent"},
                ],
            }
        ]
    )
    assert histories[0].author == "bob@example.com"
    assert [c.field for c in histories[0].changes] == ["status", "severity"]
    assert histories[0].changes[1].to_value == "Urgent"


def test_records_to_dataframe_fills_unassigned():
    r = map_record(RAW)
    r.assignee = None
    df = records_to_dataframe([r])
    assert df.loc[0, "assignee"] == "Unassigned"
    assert df.loc[0, "component"] == "Monitoring"
    assert records_to_dataframe([]).empty
