"""Jira API client wrapper (REST v3 + enhanced search and sub-resource pagination)."""

from __future__ import annotations

import logging
from typing import Any

from jira import JIRA, JIRAError

from .config import TRACKER_TIMEOUT_SECONDS
from .errors import TrackerError

logger = logging.getLogger(__name__)


class JiraAPI:
    def __init__(self, server: str, email: str, token: str, timeout: float = TRACKER_TIMEOUT_SECONDS):
        self.server = server.rstrip("/")
        self.timeout = timeout
        self.client = JIRA(
            basic_auth=(email, token),
            options={"server": self.server, "rest_api_version": "3"},
            timeout=timeout,
        )

    def _session(self):
        session = getattr(self.client, "_session", None)
        if session is None:
            raise TrackerError("JIRA session unavailable")
        return session

    def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            resp = self._session().get(url, params=params, timeout=self.timeout)
        except OSError as exc:
            raise TrackerError(f"GET {url} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise TrackerError(f"GET {url} failed {resp.status_code}: {resp.text[:200]}")
        return resp.json()

    def search_enhanced(
        self,
        jql: str,
        fields: list[str] | None = None,
        expand: list[str] | None = None,
        page_size: int = 1000,
    ) -> list[dict[str, Any]]:
        url = f"{self.server}/rest/api/3/search/jql"
        params: dict[str, Any] = {"jql": jql, "maxResults": page_size}
        if fields:
            params["fields"] = ",".join(fields)
        if expand:
            params["expand"] = ",".join(expand)
        out: list[dict[str, Any]] = []
        token = None
        while True:
            qp = dict(params)
            if token:
                qp["nextPageToken"] = token
            data = self._get_json(url, qp)
            out.extend(data.get("issues", []))
            token = data.get("nextPageToken")
            if not token or data.get("isLast") is True:
                break
        logger.debug("Search %r returned %d issues", jql, len(out))
        return out

    def _paged(self, url: str, list_key: str, page_size: int = 100) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        start = 0
        while True:
            data = self._get_json(url, {"startAt": start, "maxResults": page_size})
            page = data.get(list_key) or []
            out.extend(page)
            start += len(page)
            total = data.get("total")
            if not page or data.get("isLast") is True or (isinstance(total, int) and start >= total):
                break
        return out

    def fetch_issue_raw(self, issue_id: int | str) -> dict[str, Any]:
        try:
            issue = self.client.issue(str(issue_id))
        except (JIRAError, OSError) as exc:
            raise TrackerError(f"Failed to fetch issue {issue_id}: {exc}") from exc
        if hasattr(issue, "raw"):
            return issue.raw
        if isinstance(issue, dict):
            return issue
        raise TrackerError(f"Unexpected issue payload type for {issue_id}: {type(issue)!r}")

    def fetch_comments_raw(self, issue_id: int | str) -> list[dict[str, Any]]:
        return self._paged(f"{self.server}/rest/api/3/issue/{issue_id}/comment", "comments")

    def fetch_changelog_raw(self, issue_id: int | str) -> list[dict[str, Any]]:
        return self._paged(f"{self.server}/rest/api/3/issue/{issue_id}/changelog", "values")

    def update_issue(
        self,
        issue_id: int | str,
        *,
        fields: dict[str, Any] | None = None,
        comment: str | None = None,
        assignee: str | None = None,
        status: str | None = None,
        resolution: str | None = None,
    ) -> None:
        try:
            issue = self.client.issue(str(issue_id), fields="status")
            if fields:
                issue.update(fields=fields, notify=False)
            if assignee is not None:
                self.client.assign_issue(issue, assignee or None)
            if status is not None:
                self._transition(issue, status, resolution)
            if comment:
                self.client.add_comment(issue, comment)
        except (JIRAError, OSError) as exc:
            raise TrackerError(f"Failed to update issue {issue_id}: {exc}") from exc

    def _transition(self, issue, status: str, resolution: str | None) -> None:
        wanted = status.strip().lower()
        for t in self.client.transitions(issue):
            target = ((t.get("to") or {}).get("name") or "").lower()
            if wanted in (target, str(t.get("name") or "").lower()):
                extra = {"resolution": {"name": resolution}} if resolution else None
                self.client.transition_issue(issue, t["id"], fields=extra)
                return
        raise TrackerError(f"No transition to status {status!r} available for issue {issue.key}")
