"""Slack Web API client bound to one notification channel and one admin channel."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from triage_app.core.config import CHAT_TIMEOUT_SECONDS
from triage_app.core.errors import ChatError

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"


@dataclass(slots=True)
class Button:
    text: str
    value: str
    action_id: str = "btn"
    style: str | None = "primary"


def interactive_blocks(text: str, block_id: str, buttons: Sequence[Button]) -> list[dict[str, Any]]:
    """A mrkdwn section followed by one action block of buttons."""
    elements = []
    for b in buttons:
        el: dict[str, Any] = {
            "type": "button",
            "action_id": b.action_id,
            "value": b.value,
            "text": {"type": "plain_text", "text": b.text, "emoji": True},
        }
        if b.style:
            el["style"] = b.style
        elements.append(el)
    return [
        {"type": "section", "text": {"type": "mrkdwn", "text": text}},
        {"type": "actions", "block_id": block_id, "elements": elements},
    ]


def channel_label(channel: str) -> str:
    """``#name`` for display, whether or not the configured name carries the hash."""
    return "#" + channel.lstrip("#")


class ChatClient(ABC):
    """What workflows need from the chat platform."""

    @abstractmethod
    def message_channel(self, text: str) -> tuple[str, str]:
        """Post to the notification channel; returns (channel id, message ts)."""

    @abstractmethod
    def message_admin_channel(self, text: str) -> None: ...

    @abstractmethod
    def message_recipient(self, email: str, text: str) -> None:
        """Direct message to the user behind a tracker email."""

    @abstractmethod
    def message_user(self, user_id: str, text: str) -> None: ...

    @abstractmethod
    def post_interactive(self, text: str, block_id: str, buttons: Sequence[Button]) -> tuple[str, str]: ...

    @abstractmethod
    def update_message(self, channel: str, ts: str, text: str) -> None: ...

    @abstractmethod
    def user_email(self, user_id: str) -> str: ...


class SlackChannelClient(ChatClient):
    def __init__(
        self,
        token: str,
        channel: str,
        admin_channel: str = "",
        *,
        debug: bool = False,
        email_map: Mapping[str, str] | None = None,
        timeout: float = CHAT_TIMEOUT_SECONDS,
        base_url: str = SLACK_API_URL,
        transport: httpx.BaseTransport | None = None,
    ):
        self.channel = channel
        self.admin_channel = admin_channel or channel
        self.debug = debug
        self.email_map = dict(email_map or {})
        self._users: dict[str, str] = {}
        self._users_lock = threading.Lock()
        self.client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    # ------------------ Web API ------------------
    def _call(self, method: str, payload: dict[str, Any], form: bool = False) -> dict[str, Any]:
        try:
            if form:
                resp = self.client.post(f"/{method}", data=payload)
            else:
                resp = self.client.post(f"/{method}", json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as exc:
            raise ChatError(f"{method} failed: {exc}") from exc
        except ValueError as exc:
            raise ChatError(f"{method} returned invalid JSON: {exc}") from exc
        if not data.get("ok"):
            raise ChatError(f"{method} failed: {data.get('error', 'unknown_error')}")
        return data

    def _post(self, channel: str, text: str, blocks: list[dict[str, Any]] | None = None) -> tuple[str, str]:
        payload: dict[str, Any] = {"channel": channel, "text": text}
        if blocks:
            payload["blocks"] = blocks
        data = self._call("chat.postMessage", payload)
        return str(data.get("channel") or channel), str(data.get("ts") or "")

    def _user_id_for(self, email: str) -> str:
        slack_email = self.email_map.get(email, email)
        with self._users_lock:
            cached = self._users.get(slack_email)
        if cached:
            return cached
        data = self._call("users.lookupByEmail", {"email": slack_email}, form=True)
        user_id = str((data.get("user") or {}).get("id") or "")
        if not user_id:
            raise ChatError(f"no chat user for {slack_email!r}")
        with self._users_lock:
            self._users[slack_email] = user_id
        return user_id

    # ------------------ ChatClient ------------------
    def message_channel(self, text: str) -> tuple[str, str]:
        if self.debug:
            return self._post(self.admin_channel, f"DEBUG CHANNEL {channel_label(self.channel)}: {text}")
        return self._post(self.channel, text)

    def message_admin_channel(self, text: str) -> None:
        if self.debug:
            text = f"DEBUG ADMIN {channel_label(self.admin_channel)}: {text}"
        self._post(self.admin_channel, text)

    def message_recipient(self, email: str, text: str) -> None:
        if self.debug:
            self.message_channel(f"DEBUG: {email!r} will receive:\n{text}")
            return
        self.message_user(self._user_id_for(email), text)

    def message_user(self, user_id: str, text: str) -> None:
        data = self._call("conversations.open", {"users": user_id, "return_im": True})
        channel = str((data.get("channel") or {}).get("id") or "")
        if not channel:
            raise ChatError(f"cannot open a conversation with {user_id}")
        self._post(channel, text)

    def post_interactive(self, text: str, block_id: str, buttons: Sequence[Button]) -> tuple[str, str]:
        channel = self.admin_channel if self.debug else self.channel
        return self._post(channel, text, interactive_blocks(text, block_id, buttons))

    def update_message(self, channel: str, ts: str, text: str) -> None:
        self._call("chat.update", {"channel": channel, "ts": ts, "text": text, "blocks": []})

    def user_email(self, user_id: str) -> str:
        data = self._call("users.info", {"user": user_id}, form=True)
        email = ((data.get("user") or {}).get("profile") or {}).get("email")
        if not email:
            raise ChatError(f"user {user_id} has no visible email")
        return str(email)
