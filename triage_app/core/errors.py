"""Exception hierarchy shared by stores, clients, detectors and the driver."""

from __future__ import annotations

from collections.abc import Iterable


class TriageError(Exception):
    """Base class for every error raised by the operator."""


class ConfigError(TriageError):
    """Invalid or incomplete configuration. Fatal at startup."""


class TrackerError(TriageError):
    """A Jira call failed (network, auth, malformed query, HTTP status)."""


class FetchError(TriageError):
    """Candidate records could not be fetched; the run is aborted without commit."""


class ChatError(TriageError):
    """A Slack Web API call failed or returned ``ok: false``."""


class CursorStoreError(TriageError):
    """Persistent cursor state could not be read or written."""


class RunCancelled(TriageError):
    """The run observed its cancellation signal before applying side effects."""


class AggregateError(TriageError):
    """Several independent failures collected during one run.

    Nested aggregates are flattened so ``errors`` is always a flat list.
    """

    def __init__(self, errors: Iterable[BaseException]):
        flat: list[BaseException] = []
        for err in errors:
            if err is None:
                continue
            if isinstance(err, AggregateError):
                flat.extend(err.errors)
            else:
                flat.append(err)
        self.errors = flat
        super().__init__(self._message())

    def _message(self) -> str:
        if len(self.errors) == 1:
            return str(self.errors[0])
        return "[" + ", ".join(str(e) for e in self.errors) + "]"

    def __len__(self) -> int:
        return len(self.errors)


def aggregate(errors: Iterable[BaseException | None]) -> AggregateError | None:
    """Return an AggregateError for the non-empty entries, or None when there are none."""
    present = [e for e in errors if e is not None]
    if not present:
        return None
    return AggregateError(present)
