"""Operational events: logged always, mirrored to the admin chat channel when one is set."""

from __future__ import annotations

import logging

from .errors import ChatError

logger = logging.getLogger(__name__)


class EventRecorder:
    def __init__(self, chat=None, component: str = "operator"):
        self.chat = chat
        self.component = component

    def for_component(self, component: str) -> EventRecorder:
        return EventRecorder(self.chat, component)

    def _post(self, text: str) -> None:
        if self.chat is None:
            return
        try:
            self.chat.message_admin_channel(text)
        except ChatError as exc:
            logger.warning("Failed to post event to admin channel: %s", exc)

    def event(self, reason: str, msg: str) -> None:
        logger.info("[%s] %s: %s", self.component, reason, msg)
        self._post(f"{self.component} {reason}: {msg}")

    def warning(self, reason: str, msg: str) -> None:
        logger.warning("[%s] %s: %s", self.component, reason, msg)
        self._post(f":warning: {self.component} {reason}: {msg}")
