"""In-memory stand-ins for the tracker and chat collaborators used across tests."""

from __future__ import annotations

from datetime import UTC, datetime

from triage_app.chat.slack_client import ChatClient
from triage_app.core.config import OperatorConfig, parse_config
from triage_app.core.errors import ChatError, TrackerError
from triage_app.core.models import CommentModel, FieldChange, HistoryEntry, RecordModel
from triage_app.core.tracker import Tracker
from triage_app.stores.cursor import MemoryCursorStore
from triage_app.workflows.base import WorkflowContext

SERVER = "https://example.atlassian.net"


def ts(day, hour=0, minute=0):
    return datetime(2024, 9, day, hour, minute, tzinfo=UTC)


def record(record_id, **kw):
    kw.setdefault("key", f"OBS-{record_id}")
    kw.setdefault("status", "New")
    kw.setdefault("summary", f"Issue {record_id}")
    if "updated" in kw and "revision" not in kw:
        kw["revision"] = kw["updated"].isoformat()
    return RecordModel(id=record_id, **kw)


def change(author, when, field, old, new):
    return HistoryEntry(author=author, created=when, changes=[FieldChange(field, old, new)])


def comment(author, when, body="Any news?"):
    return CommentModel(author=author, created=when, body=body)


class FakeTracker(Tracker):
    def __init__(self, records=(), histories=None, comments=None):
        self.records = {r.id: r for r in records}
        self.histories = dict(histories or {})
        self.comments = dict(comments or {})
        self.queries = []
        self.updates = []
        self.history_calls = []
        self.fail_search = False
        self.fail_updates = set()
        self.fail_history = set()
        self.fail_comments = set()

    def search(self, query):
        self.queries.append(query)
        if self.fail_search:
            raise TrackerError("tracker unreachable")
        return list(self.records.values())

    def get_record(self, record_id):
        if record_id not in self.records:
            raise TrackerError(f"no record {record_id}")
        return self.records[record_id]

    def get_comments(self, record_id):
        if record_id in self.fail_comments:
            raise TrackerError(f"comments of {record_id} unavailable")
        return list(self.comments.get(record_id, []))

    def get_history(self, record_id):
        self.history_calls.append(record_id)
        if record_id in self.fail_history:
            raise TrackerError(f"history of {record_id} unavailable")
        return list(self.histories.get(record_id, []))

    def update(self, record_id, update):
        if record_id in self.fail_updates:
            raise TrackerError(f"update of {record_id} rejected")
        self.updates.append((record_id, update))


class FakeChat(ChatClient):
    def __init__(self, channel="#triage"):
        self.channel = channel
        self.posts = []
        self.admin = []
        self.dms = []
        self.user_dms = []
        self.interactive = []
        self.edits = []
        self.emails = {}
        self.unreachable = set()

    def message_channel(self, text):
        self.posts.append(text)
        return "C1", f"{len(self.posts)}.0"

    def message_admin_channel(self, text):
        self.admin.append(text)

    def message_recipient(self, email, text):
        if email in self.unreachable:
            raise ChatError(f"users_not_found: {email}")
        self.dms.append((email, text))

    def message_user(self, user_id, text):
        self.user_dms.append((user_id, text))

    def post_interactive(self, text, block_id, buttons):
        self.interactive.append((text, block_id, list(buttons)))
        return "C1", f"{len(self.interactive)}.1"

    def update_message(self, channel, ts, text):
        self.edits.append((channel, ts, text))

    def user_email(self, user_id):
        return self.emails.get(user_id, "")


def make_config(**overrides) -> OperatorConfig:
    doc = {
        "credentials": {"server": SERVER},
        "projects": ["OBS"],
        "groups": {"mon-devs": ["dev1@example.com", "dev2@example.com", "group:oncall"], "oncall": ["dev3@example.com"]},
        "components": {
            "Monitoring": {
                "lead": "lead@example.com",
                "pm": "pm@example.com",
                "manager": "mgr@example.com",
                "developers": ["group:mon-devs", "dev4@example.com", "dev5@example.com"],
                "watchers": ["watcher@example.com"],
            },
            "Logging": {"lead": "loglead@example.com", "developers": ["dev6@example.com"]},
        },
        "slackChannel": "#triage",
        "slackAdminChannel": "#triage-admin",
        "stateBackend": "memory",
    }
    doc.update(overrides)
    return parse_config(doc)


def make_context(records=(), histories=None, **config_overrides):
    return WorkflowContext(
        config=make_config(**config_overrides),
        tracker=FakeTracker(records, histories),
        chat=FakeChat(),
        cursors=MemoryCursorStore(),
    )
