import json
from urllib.parse import parse_qs

import httpx
import pytest

from triage_app.chat.slack_client import Button, SlackChannelClient, interactive_blocks
from triage_app.core.errors import ChatError


class SlackStub:
    """Answers Slack Web API calls and remembers what was sent."""

    def __init__(self, fail=None, status=200):
        self.calls = []
        self.fail = fail or {}
        self.status = status

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method = request.url.path.rsplit("/", 1)[-1]
        if request.headers.get("content-type", "").startswith("application/json"):
            body = json.loads(request.content)
        else:
            body = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.calls.append((method, body))
        if self.status != 200:
            return httpx.Response(self.status, json={"ok": False})
        if method in self.fail:
            return httpx.Response(200, json={"ok": False, "error": self.fail[method]})
        if method == "users.lookupByEmail":
            return httpx.Response(200, json={"ok": True, "user": {"id": "U" + body["email"].split("@")[0]}})
        if method == "users.info":
            return httpx.Response(200, json={"ok": True, "user": {"profile": {"email": "clicker@example.com"}}})
        if method == "conversations.open":
            return httpx.Response(200, json={"ok": True, "channel": {"id": "D" + body["users"]}})
        return httpx.Response(200, json={"ok": True, "channel": body.get("channel"), "ts": "1700000000.0001"})

    def methods(self):
        return [m for m, _ in self.calls]


def _client(stub, **kw):
    return SlackChannelClient("xoxb-test", "#triage", "#triage-admin", transport=httpx.MockTransport(stub), **kw)


def test_direct_message_resolves_and_caches_user():
    stub = SlackStub()
    client = _client(stub, email_map={"jira@example.com": "alice@example.com"})
    client.message_recipient("jira@example.com", "hello")
    client.message_recipient("jira@example.com", "again")
    assert stub.methods() == [
        "users.lookupByEmail",
        "conversations.open",
        "chat.postMessage",
        "conversations.open",
        "chat.postMessage",
    ]
    assert stub.calls[0][1] == {"email": "alice@example.com"}
    assert stub.calls[2][1] == {"channel": "DUalice", "text": "hello"}


def test_channel_post_returns_channel_and_ts():
    stub = SlackStub()
    assert _client(stub).message_channel("hi") == ("#triage", "1700000000.0001")


def test_debug_mode_redirects_to_admin_channel():
    stub = SlackStub()
    client = _client(stub, debug=True)
    client.message_recipient("bob@example.com", "secret")
    client.message_admin_channel("note")
    assert stub.methods() == ["chat.postMessage", "chat.postMessage"]
    assert stub.calls[0][1]["channel"] == "#triage-admin"
    assert stub.calls[0][1]["text"] == "DEBUG CHANNEL #triage: DEBUG: 'bob@example.com' will receive:\nsecret"
    assert stub.calls[1][1]["text"] == "DEBUG ADMIN #triage-admin: note"


def test_api_errors_become_chat_errors():
    with pytest.raises(ChatError, match="users_not_found"):
        _client(SlackStub(fail={"users.lookupByEmail": "users_not_found"})).message_recipient("x@example.com", "t")
    with pytest.raises(ChatError):
        _client(SlackStub(status=500)).message_channel("t")


def test_interactive_message_and_update():
    stub = SlackStub()
    client = _client(stub)
    channel, ts = client.post_interactive("New issue", "new-issues/take-all", [Button("Take this issue", '{"id": 1}')])
    client.update_message(channel, ts, "taken")
    blocks = stub.calls[0][1]["blocks"]
    assert blocks[1]["block_id"] == "new-issues/take-all"
    assert blocks[1]["elements"][0]["value"] == '{"id": 1}'
    assert stub.calls[1] == ("chat.update", {"channel": "#triage", "ts": ts, "text": "taken", "blocks": []})
    assert client.user_email("U1") == "clicker@example.com"


def test_interactive_blocks_without_style():
    blocks = interactive_blocks("t", "b", [Button("Go", "v", style=None)])
    assert "style" not in blocks[1]["elements"][0]
    assert blocks[0]["text"] == {"type": "mrkdwn", "text": "t"}


def test_debug_labels_accept_channels_without_hash():
    stub = SlackStub()
    client = SlackChannelClient("xoxb-test", "triage", "triage-admin", debug=True, transport=httpx.MockTransport(stub))
    client.message_channel("hi")
    client.message_admin_channel("note")
    assert [body["text"] for _, body in stub.calls] == ["DEBUG CHANNEL #triage: hi", "DEBUG ADMIN #triage-admin: note"]
