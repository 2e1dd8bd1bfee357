"""Shared wiring for workflows (detector driven) and reports (plain scheduled jobs)."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from triage_app.chat.slack_client import ChatClient
from triage_app.core.config import OperatorConfig
from triage_app.core.models import Query
from triage_app.core.recorder import EventRecorder
from triage_app.core.tracker import Tracker
from triage_app.stores.cursor import CursorStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkflowContext:
    config: OperatorConfig
    tracker: Tracker
    chat: ChatClient
    cursors: CursorStore
    recorder: EventRecorder = field(default_factory=EventRecorder)
    chat_for: Callable[[str], ChatClient] | None = None

    @property
    def server(self) -> str:
        return self.config.credentials.server

    def channel_client(self, channel: str) -> ChatClient:
        if not channel or self.chat_for is None:
            return self.chat
        return self.chat_for(channel)

    def query(
        self,
        statuses: Sequence[str] = (),
        components: Sequence[str] | None = None,
        severities: Sequence[str] = (),
    ) -> Query:
        return Query(
            projects=list(self.config.projects),
            statuses=list(statuses),
            components=list(components if components is not None else self.config.component_names()),
            severities=list(severities),
        )


def slug(components: Sequence[str]) -> str:
    return "-".join(components) if components else "all"


class Report(ABC):
    """A scheduled job that reads current state and posts a summary."""

    name: str = ""

    @abstractmethod
    def run(self, cancel: threading.Event | None = None) -> None: ...
