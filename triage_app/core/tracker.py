"""Tracker capability interface, the Jira implementation, and composable decorators.

Decorators wrap any :class:`Tracker` and override only the concern they add, so a
production chain reads like ``LoggingTracker(CachingTracker(JiraTracker(api), cache))``
and a dry run adds ``DryRunTracker`` on top.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta

from .config import FIELD_IDS, RECORD_FETCH_FIELDS
from .errors import TrackerError
from .jira_client import JiraAPI
from .jql import to_jql
from .mappers import (
    comments_from_list,
    comments_to_list,
    histories_from_list,
    histories_to_list,
    map_comments,
    map_histories,
    map_record,
    parse_dt,
    record_from_dict,
    record_to_dict,
)
from .models import CommentModel, HistoryEntry, Query, RecordModel, RecordUpdate

logger = logging.getLogger(__name__)


class Tracker(ABC):
    @abstractmethod
    def search(self, query: Query) -> list[RecordModel]: ...

    @abstractmethod
    def get_record(self, record_id: int) -> RecordModel: ...

    @abstractmethod
    def get_comments(self, record_id: int) -> list[CommentModel]: ...

    @abstractmethod
    def get_history(self, record_id: int) -> list[HistoryEntry]: ...

    @abstractmethod
    def update(self, record_id: int, update: RecordUpdate) -> None: ...

    # Cached variants; without a cache they are plain fetches.
    def get_cached_record(self, record_id: int, revision: str) -> tuple[RecordModel, timedelta]:
        return self.get_record(record_id), timedelta(0)

    def get_cached_comments(self, record_id: int, revision: str) -> list[CommentModel]:
        return self.get_comments(record_id)

    def get_cached_history(self, record_id: int, revision: str) -> list[HistoryEntry]:
        return self.get_history(record_id)


class JiraTracker(Tracker):
    def __init__(self, api: JiraAPI, field_ids: Mapping[str, str] | None = None):
        self.api = api
        self.field_ids = dict(field_ids or FIELD_IDS)

    @property
    def fetch_fields(self) -> list[str]:
        base = [f for f in RECORD_FETCH_FIELDS if not f.startswith("customfield_")]
        return base + [v for v in self.field_ids.values() if v]

    def search(self, query: Query) -> list[RecordModel]:
        jql = to_jql(query, self.field_ids)
        raw = self.api.search_enhanced(jql, fields=query.fields or self.fetch_fields)
        out = []
        for issue in raw:
            try:
                out.append(map_record(issue, self.field_ids))
            except ValueError as exc:
                logger.warning("Skipping unmappable issue in %r: %s", jql, exc)
        return out

    def get_record(self, record_id: int) -> RecordModel:
        return map_record(self.api.fetch_issue_raw(record_id), self.field_ids)

    def get_comments(self, record_id: int) -> list[CommentModel]:
        return map_comments(self.api.fetch_comments_raw(record_id))

    def get_history(self, record_id: int) -> list[HistoryEntry]:
        return map_histories(self.api.fetch_changelog_raw(record_id), self.field_ids)

    def update(self, record_id: int, update: RecordUpdate) -> None:
        if update.is_empty():
            return
        fields: dict = {}
        if update.priority is not None:
            fields["priority"] = {"name": update.priority}
        if update.severity is not None:
            fields[self.field_ids["severity"]] = {"value": update.severity}
        if update.whiteboard is not None:
            fields[self.field_ids["whiteboard"]] = update.whiteboard
        if update.flags:
            current = set(self.get_record(record_id).flags)
            for change in update.flags:
                if change.set:
                    current.add(change.name)
                else:
                    current.discard(change.name)
            fields[self.field_ids["flagged"]] = [{"value": v} for v in sorted(current)]
        self.api.update_issue(
            record_id,
            fields=fields or None,
            comment=update.comment,
            assignee=update.assignee,
            status=update.status,
            resolution=update.resolution,
        )


class TrackerDecorator(Tracker):
    """Forwards every call to ``delegate``; subclasses override what they add."""

    def __init__(self, delegate: Tracker):
        self.delegate = delegate

    def search(self, query: Query) -> list[RecordModel]:
        return self.delegate.search(query)

    def get_record(self, record_id: int) -> RecordModel:
        return self.delegate.get_record(record_id)

    def get_comments(self, record_id: int) -> list[CommentModel]:
        return self.delegate.get_comments(record_id)

    def get_history(self, record_id: int) -> list[HistoryEntry]:
        return self.delegate.get_history(record_id)

    def update(self, record_id: int, update: RecordUpdate) -> None:
        self.delegate.update(record_id, update)

    def get_cached_record(self, record_id: int, revision: str) -> tuple[RecordModel, timedelta]:
        return self.delegate.get_cached_record(record_id, revision)

    def get_cached_comments(self, record_id: int, revision: str) -> list[CommentModel]:
        return self.delegate.get_cached_comments(record_id, revision)

    def get_cached_history(self, record_id: int, revision: str) -> list[HistoryEntry]:
        return self.delegate.get_cached_history(record_id, revision)


class CachingTracker(TrackerDecorator):
    """Serves point fetches from a CacheStore keyed by id and the record revision."""

    def __init__(self, delegate: Tracker, cache, prefix: str = ""):
        super().__init__(delegate)
        self.cache = cache
        if prefix and not prefix.endswith("-"):
            prefix = prefix + "-"
        self.prefix = prefix

    def _key(self, kind: str, record_id: int) -> str:
        return f"{self.prefix}{kind}-{record_id}"

    def _load(self, key: str, revision: str, what: str):
        payload = self.cache.get(key, revision)
        if payload is None:
            return None
        try:
            return json.loads(payload)
        except ValueError as exc:
            logger.warning("Failed to decode cached %s %r: %s", what, key, exc)
            return None

    def _store(self, key: str, revision: str, doc) -> None:
        try:
            payload = json.dumps(doc).encode("utf-8")
        except (TypeError, ValueError) as exc:
            logger.warning("Failed to encode %r for caching: %s", key, exc)
            return
        self.cache.set(key, revision, payload)

    def get_record(self, record_id: int) -> RecordModel:
        now = datetime.now(UTC)
        record = self.delegate.get_record(record_id)
        self._store(
            self._key("issue", record.id),
            record.revision,
            {"record": record_to_dict(record), "cache_time": now.isoformat()},
        )
        return record

    def get_cached_record(self, record_id: int, revision: str) -> tuple[RecordModel, timedelta]:
        doc = self._load(self._key("issue", record_id), revision, "issue")
        if doc is not None:
            try:
                record = record_from_dict(doc["record"])
            except (KeyError, TypeError) as exc:
                logger.warning("Failed to decode cached issue %d: %s", record_id, exc)
            else:
                verified = parse_dt(doc.get("cache_time")) or record.updated
                if verified is not None:
                    return record, datetime.now(UTC) - verified
                logger.warning("Cached issue %d has no verification time", record_id)
        return self.get_record(record_id), timedelta(0)

    def get_cached_comments(self, record_id: int, revision: str) -> list[CommentModel]:
        key = self._key("comments", record_id)
        rows = self._load(key, revision, "comments")
        if rows is not None:
            try:
                return comments_from_list(rows)
            except (KeyError, TypeError, AttributeError) as exc:
                logger.warning("Failed to decode cached comments for issue %d: %s", record_id, exc)
        comments = self.delegate.get_comments(record_id)
        self._store(key, revision, comments_to_list(comments))
        return comments

    def get_cached_history(self, record_id: int, revision: str) -> list[HistoryEntry]:
        key = self._key("history", record_id)
        rows = self._load(key, revision, "history")
        if rows is not None:
            try:
                return histories_from_list(rows)
            except (KeyError, TypeError, AttributeError) as exc:
                logger.warning("Failed to decode cached history for issue %d: %s", record_id, exc)
        history = self.delegate.get_history(record_id)
        self._store(key, revision, histories_to_list(history))
        return history


class LoggingTracker(TrackerDecorator):
    """Logs every search and update with its duration."""

    def search(self, query: Query) -> list[RecordModel]:
        start = time.monotonic()
        try:
            out = self.delegate.search(query)
        except TrackerError as exc:
            logger.warning("search failed after %.2fs: %s", time.monotonic() - start, exc)
            raise
        logger.info("search returned %d records in %.2fs", len(out), time.monotonic() - start)
        return out

    def update(self, record_id: int, update: RecordUpdate) -> None:
        start = time.monotonic()
        self.delegate.update(record_id, update)
        logger.info("updated record %d in %.2fs: %s", record_id, time.monotonic() - start, update)


class DryRunTracker(TrackerDecorator):
    """Reads pass through; updates are only logged and, optionally, announced."""

    def __init__(self, delegate: Tracker, notify: Callable[[str], None] | None = None):
        super().__init__(delegate)
        self.notify = notify

    def update(self, record_id: int, update: RecordUpdate) -> None:
        msg = f"Faking update({record_id}, {update!r})"
        logger.info(msg)
        if self.notify is not None:
            try:
                self.notify(msg)
            except Exception as exc:
                logger.warning("Failed to announce faked update of %d: %s", record_id, exc)
