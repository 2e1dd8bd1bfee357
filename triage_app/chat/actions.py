"""Interactive button callbacks.

Slack waits only a few seconds for an acknowledgment while the tracker may take
longer, so :meth:`ActionDispatcher.handle` acknowledges immediately and runs the
handler on a bounded worker pool. A handler that fails, or does not finish
within its timeout, is reported back to the clicking user by direct message.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any

from triage_app.core.config import ACTION_TIMEOUT_SECONDS
from triage_app.core.errors import ChatError

from .slack_client import ChatClient

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ActionEvent:
    action_id: str
    value: str
    user_id: str
    user_name: str = ""
    channel_id: str = ""
    message_ts: str = ""
    user_email: str = ""


Handler = Callable[[ActionEvent], None]


def parse_block_actions(payload: dict[str, Any]) -> list[ActionEvent]:
    """One event per clicked action of a ``block_actions`` payload.

    Actions are keyed by their block id (the subscription key); the button's
    own action id is used when the block carries none.
    """
    if payload.get("type") != "block_actions":
        return []
    user = payload.get("user") or {}
    container = payload.get("container") or {}
    channel_id = container.get("channel_id") or (payload.get("channel") or {}).get("id") or ""
    message_ts = container.get("message_ts") or (payload.get("message") or {}).get("ts") or ""
    out = []
    for action in payload.get("actions") or []:
        out.append(
            ActionEvent(
                action_id=str(action.get("block_id") or action.get("action_id") or ""),
                value=str(action.get("value") or ""),
                user_id=str(user.get("id") or ""),
                user_name=str(user.get("username") or user.get("name") or ""),
                channel_id=str(channel_id),
                message_ts=str(message_ts),
            )
        )
    return out


class ActionDispatcher:
    def __init__(
        self,
        chat: ChatClient,
        *,
        identity: Callable[[str], str] | None = None,
        timeout: float = ACTION_TIMEOUT_SECONDS,
        max_workers: int = 4,
    ):
        self.chat = chat
        self.identity = identity or (lambda email: email)
        self.timeout = timeout
        self._handlers: dict[str, Handler] = {}
        self._lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="action")
        self._watchers = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="action-watch")

    def subscribe(self, action_id: str, handler: Handler) -> None:
        with self._lock:
            if action_id in self._handlers:
                raise ValueError(f"action {action_id!r} already has a handler")
            self._handlers[action_id] = handler
        logger.debug("Subscribed handler for action %s", action_id)

    def handle(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Acknowledge ``payload`` right away; matching handlers run in the background."""
        for event in parse_block_actions(payload):
            with self._lock:
                handler = self._handlers.get(event.action_id)
            if handler is None:
                logger.info("No handler for action %s, ignoring", event.action_id)
                continue
            fut = self._pool.submit(self._run, handler, event)
            self._watchers.submit(self._watch, fut, event)
        return {}

    def _run(self, handler: Handler, event: ActionEvent) -> None:
        if event.user_id and not event.user_email:
            event.user_email = self.identity(self.chat.user_email(event.user_id))
        handler(event)

    def _watch(self, fut: Future, event: ActionEvent) -> None:
        try:
            fut.result(timeout=self.timeout)
        except FutureTimeout:
            logger.warning("Action %s for %s still running after %.0fs", event.action_id, event.user_id, self.timeout)
            self._report(event, f"Your request is taking longer than {self.timeout:.0f}s, it may not have completed.")
        except Exception as exc:
            logger.error("Action %s for %s failed: %s", event.action_id, event.user_id, exc)
            self._report(event, f"Failed to handle your request: {exc}")

    def _report(self, event: ActionEvent, text: str) -> None:
        if not event.user_id:
            return
        try:
            self.chat.message_user(event.user_id, text)
        except ChatError as exc:
            logger.warning("Failed to report back to %s: %s", event.user_id, exc)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
        self._watchers.shutdown(wait=wait)
