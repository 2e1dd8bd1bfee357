"""Central configuration, constants, and the YAML-backed operator settings."""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field, replace
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

# =============================================================================
# Jira Connection Settings
# =============================================================================
JIRA_DEFAULT_SERVER = "https://your-domain.atlassian.net"
TIMEZONE = "UTC"
DEFAULT_PROJECT_KEY = "OBS"

# Per upstream call timeouts (seconds); there is no whole-run timeout.
TRACKER_TIMEOUT_SECONDS = 30.0
CHAT_TIMEOUT_SECONDS = 10.0
ACTION_TIMEOUT_SECONDS = 10.0

# =============================================================================
# Jira Custom Field IDs
# Site specific; override with ``fieldIds`` in the operator YAML.
# =============================================================================
FIELD_IDS = {
    "severity": "customfield_10200",
    "whiteboard": "customfield_10201",
    "flagged": "customfield_10021",
    # "Yes" once support raised the issue as a customer escalation
    "escalation": "customfield_10202",
    # priorities of the open customer cases linked to the issue
    "customer_cases": "customfield_10203",
}

# =============================================================================
# Workflow Status Configuration
# =============================================================================
# Statuses an issue sits in before anybody picked it up
INITIAL_STATUSES: Sequence[str] = ("New", "To Do", "Reported")

# Status used when somebody takes an issue from Slack
TAKEN_STATUS = "In Progress"

OPEN_STATUSES: Sequence[str] = (
    "New",
    "To Do",
    "Reported",
    "In Progress",
    "Testing",
    "Tracking",
    "Blocked",
)

# Statuses that indicate a ticket is closed/terminal
TERMINAL_STATUSES: frozenset[str] = frozenset(
    {
        "Done",
        "Cancelled",
        "Duplicate",
        "Transferred",
    }
)

URGENT_SEVERITY = "Urgent"
UNSPECIFIED = "Unspecified"
URGENT_LEVELS: frozenset[str] = frozenset({"urgent", "highest", "blocker"})

# Statuses in which an issue is still on a developer's plate
DEVELOPMENT_STATUSES: Sequence[str] = ("New", "To Do", "Reported", "In Progress")

# Stale issues are closed through this status and resolution
STALE_CLOSE_STATUS = "Done"
STALE_CLOSE_RESOLUTION = "Won't Do"

# =============================================================================
# Whiteboard keywords
# =============================================================================
ASSIGNEE_NOTIFIED_KEYWORD = "AssigneeNotified"
EMERGENCY_REQUEST_KEYWORD = "EmergencyRequest"
EMERGENCY_CONFIRMED_KEYWORD = "EmergencyConfirmed"
STALE_KEYWORD = "LifecycleStale"
STALE_RESET_KEYWORD = "LifecycleReset"
CI_KEYWORD = "tag-ci"

# =============================================================================
# Labels
# =============================================================================
# Issues carrying any of these are never marked stale
STALE_EXEMPT_LABELS: frozenset[str] = frozenset({"Security", "Blocker"})
BLOCKER_LABELS: Sequence[str] = ("ServiceDeliveryBlocker", "TestBlocker", "UpgradeBlocker")

# =============================================================================
# Change detection windows
# =============================================================================
NEW_ISSUE_BOOTSTRAP_WINDOW = timedelta(hours=24)
CHANGE_LOOKBACK_WINDOW = timedelta(days=7)
MOVED_REPORT_WINDOW = timedelta(days=7)
CLOSED_REPORT_WINDOW = timedelta(days=1)
STALE_AFTER = timedelta(days=30)
# stale issues without activity for this much longer are closed
CLOSE_STALE_AFTER = timedelta(days=7)
ESCALATION_NEEDINFO_AGE = timedelta(hours=48)

ESCALATION_QUOTA_RATIO = 0.2

# Canonical field list for tracker searches (changelog is fetched lazily)
RECORD_FETCH_FIELDS = [
    "summary",
    "created",
    "updated",
    "assignee",
    "reporter",
    "priority",
    "status",
    "resolution",
    "components",
    "labels",
    FIELD_IDS["severity"],
    FIELD_IDS["whiteboard"],
    FIELD_IDS["flagged"],
    FIELD_IDS["escalation"],
    FIELD_IDS["customer_cases"],
]

# Fields whose changes are worth a direct message to the assignee
WATCHED_CHANGE_FIELDS: frozenset[str] = frozenset({"status", "priority", "severity", "flagged"})

DEFAULT_REPORT_SCHEDULES: Sequence[str] = (
    "CRON_TZ=Europe/Prague 30 9 1-7,16-23 * 2-4",
    "CRON_TZ=America/New_York 30 9 1-7,16-23 * 2-4",
)
DEFAULT_REPORTS: Sequence[str] = ("incoming-issues", "escalations")

# Comments containing any of these do not count as activity on the issue
IGNORED_COMMENT_KEYWORDS: Sequence[str] = (
    "UpcomingSprint",
    "This issue will be evaluated during the next sprint and prioritized appropriately.",
    "I am working on other high priority items. I will get to this issue next sprint.",
)

# Priority downgrades applied when marking stale and when closing
STALE_PRIORITY_TRANSITIONS: dict[str, str] = {"High": "Medium", "Medium": "Low", "Unspecified": "Low"}
CLOSE_PRIORITY_TRANSITIONS: dict[str, str] = {"Medium": "Low", "Unspecified": "Low"}

DEFAULT_STALE_COMMENT = (
    "This issue hasn't had any activity in the last 30 days. Maybe the problem got resolved, was a duplicate of "
    "something else, or became less pressing for some reason - or maybe it's still relevant but just hasn't been "
    "looked at yet.\n\nAs such, we're marking this issue as \"LifecycleStale\" and decreasing the priority.\n\n"
    "If you have further information on the current state of the issue, please update it, otherwise this issue "
    "will be automatically closed in 7 days."
)
DEFAULT_STALE_CLOSE_COMMENT = (
    "This issue hasn't had any activity 7 days after it was marked as LifecycleStale, so we are closing it as "
    "Won't Do. If you consider this issue still valuable, please reopen it."
)

# Fixed polling intervals of the always-on workflows
WORKFLOW_SCHEDULES: dict[str, tuple[str, ...]] = {
    "needinfo": ("@every 30m",),
    "urgent-escalation": ("@every 30m",),
    "moved-issues": ("@every 1h",),
    "stale": ("@every 1h",),
    "stale-reset": ("@every 1h",),
    "close-stale": ("@every 1h",),
}

GROUP_PREFIX = "group:"


def _decode(value: str) -> str:
    if value.startswith("base64:"):
        try:
            return base64.b64decode(value[len("base64:") :], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return value
    return value


@dataclass(slots=True)
class Credentials:
    server: str = JIRA_DEFAULT_SERVER
    email: str = ""
    api_token: str = ""
    slack_token: str = ""
    slack_verification_token: str = ""

    @property
    def decoded_email(self) -> str:
        return _decode(self.email)

    @property
    def decoded_api_token(self) -> str:
        return _decode(self.api_token)

    @property
    def decoded_slack_token(self) -> str:
        return _decode(self.slack_token)

    @property
    def decoded_slack_verification_token(self) -> str:
        return _decode(self.slack_verification_token)


@dataclass(slots=True)
class Component:
    # lead should match the default assignee of the component
    lead: str = ""
    product_manager: str = ""
    manager: str = ""
    # developers and watchers may contain group:<name> references
    developers: list[str] = field(default_factory=list)
    watchers: list[str] = field(default_factory=list)


@dataclass(slots=True)
class AutomaticReport:
    slack_channel: str = ""
    when: list[str] = field(default_factory=list)
    reports: list[str] = field(default_factory=list)
    components: list[str] = field(default_factory=list)


@dataclass(slots=True)
class OperatorConfig:
    credentials: Credentials = field(default_factory=Credentials)
    projects: list[str] = field(default_factory=lambda: [DEFAULT_PROJECT_KEY])
    groups: dict[str, list[str]] = field(default_factory=dict)
    components: dict[str, Component] = field(default_factory=dict)
    schedules: list[AutomaticReport] = field(default_factory=list)
    slack_channel: str = ""
    slack_admin_channel: str = ""
    # tracker email -> slack email, when the two differ
    slack_emails: dict[str, str] = field(default_factory=dict)
    disabled_workflows: list[str] = field(default_factory=list)
    cache_path: str = ""
    state_backend: str = "sqlite"
    state_path: str = "state.sqlite3"
    field_ids: dict[str, str] = field(default_factory=lambda: dict(FIELD_IDS))
    timezone: str = TIMEZONE
    listen_address: str = "0.0.0.0:3000"
    quota_ratio: float = ESCALATION_QUOTA_RATIO
    stale_comment: str = DEFAULT_STALE_COMMENT
    stale_close_comment: str = DEFAULT_STALE_CLOSE_COMMENT

    def component_names(self) -> list[str]:
        return sorted(self.components)

    def anonymize(self) -> OperatorConfig:
        """Shallow copy with secrets masked, suitable for logging."""

        def mask(raw: str, decoded: str) -> str:
            return "x" * len(decoded) if raw else raw

        c = self.credentials
        creds = replace(
            c,
            email=mask(c.email, c.decoded_email),
            api_token=mask(c.api_token, c.decoded_api_token),
            slack_token=mask(c.slack_token, c.decoded_slack_token),
            slack_verification_token=mask(c.slack_verification_token, c.decoded_slack_verification_token),
        )
        return replace(self, credentials=creds)


def _str_list(value: Any, where: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{where}: expected a list of strings, got {type(value).__name__}")
    return [str(v) for v in value]


def _parse_components(value: Any) -> dict[str, Component]:
    if value is None:
        return {}
    if isinstance(value, list):
        out: dict[str, Component] = {}
        for item in value:
            if not isinstance(item, str):
                raise ConfigError(f"components: expected a string, got: {item!r}")
            out[item] = Component()
        return out
    if not isinstance(value, dict):
        raise ConfigError("components: expected a list or a mapping")
    out = {}
    for name, doc in value.items():
        doc = doc or {}
        if not isinstance(doc, dict):
            raise ConfigError(f"components.{name}: expected a mapping")
        out[str(name)] = Component(
            lead=str(doc.get("lead") or ""),
            product_manager=str(doc.get("pm") or ""),
            manager=str(doc.get("manager") or ""),
            developers=_str_list(doc.get("developers"), f"components.{name}.developers"),
            watchers=_str_list(doc.get("watchers"), f"components.{name}.watchers"),
        )
    return out


def apply_defaults(cfg: OperatorConfig) -> OperatorConfig:
    if not cfg.schedules and cfg.slack_channel:
        cfg.schedules.append(AutomaticReport(slack_channel=cfg.slack_channel))
    for report in cfg.schedules:
        if not report.when:
            report.when = list(DEFAULT_REPORT_SCHEDULES)
        if not report.components:
            report.components = cfg.component_names()
        if not report.reports:
            report.reports = list(DEFAULT_REPORTS)
    return cfg


def parse_config(doc: dict[str, Any]) -> OperatorConfig:
    """Build an OperatorConfig from an already-parsed YAML document."""
    if not isinstance(doc, dict):
        raise ConfigError("operator config must be a mapping")

    creds_doc = doc.get("credentials") or {}
    creds = Credentials(
        server=str(creds_doc.get("server") or JIRA_DEFAULT_SERVER).rstrip("/"),
        email=str(creds_doc.get("email") or ""),
        api_token=str(creds_doc.get("apiToken") or ""),
        slack_token=str(creds_doc.get("slackToken") or ""),
        slack_verification_token=str(creds_doc.get("slackVerificationToken") or ""),
    )

    groups_doc = doc.get("groups") or {}
    if not isinstance(groups_doc, dict):
        raise ConfigError("groups: expected a mapping of name -> members")
    groups = {str(k): _str_list(v, f"groups.{k}") for k, v in groups_doc.items()}

    schedules: list[AutomaticReport] = []
    for i, s in enumerate(doc.get("schedules") or []):
        if not isinstance(s, dict):
            raise ConfigError(f"schedules[{i}]: expected a mapping")
        schedules.append(
            AutomaticReport(
                slack_channel=str(s.get("slackChannel") or ""),
                when=_str_list(s.get("when"), f"schedules[{i}].when"),
                reports=_str_list(s.get("reports") or s.get("report"), f"schedules[{i}].reports"),
                components=_str_list(s.get("components"), f"schedules[{i}].components"),
            )
        )

    field_ids = dict(FIELD_IDS)
    field_ids.update({str(k): str(v) for k, v in (doc.get("fieldIds") or {}).items()})

    try:
        quota_ratio = float(doc.get("quotaRatio", ESCALATION_QUOTA_RATIO))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"quotaRatio: {exc}") from exc

    cfg = OperatorConfig(
        credentials=creds,
        projects=_str_list(doc.get("projects"), "projects") or [DEFAULT_PROJECT_KEY],
        groups=groups,
        components=_parse_components(doc.get("components")),
        schedules=schedules,
        slack_channel=str(doc.get("slackChannel") or ""),
        slack_admin_channel=str(doc.get("slackAdminChannel") or ""),
        slack_emails={str(k): str(v) for k, v in (doc.get("slackEmails") or {}).items()},
        disabled_workflows=_str_list(doc.get("disabledWorkflows"), "disabledWorkflows"),
        cache_path=str(doc.get("cachePath") or ""),
        state_backend=str(doc.get("stateBackend") or "sqlite"),
        state_path=str(doc.get("statePath") or "state.sqlite3"),
        field_ids=field_ids,
        timezone=str(doc.get("timezone") or TIMEZONE),
        listen_address=str(doc.get("listenAddress") or "0.0.0.0:3000"),
        quota_ratio=quota_ratio,
        stale_comment=str(doc.get("staleIssueComment") or DEFAULT_STALE_COMMENT),
        stale_close_comment=str(doc.get("staleIssueCloseComment") or DEFAULT_STALE_CLOSE_COMMENT),
    )
    return apply_defaults(cfg)


def load_config(path: str | Path) -> OperatorConfig:
    p = Path(path)
    try:
        doc = yaml.safe_load(p.read_text()) or {}
    except OSError as exc:
        raise ConfigError(f"cannot read config {p}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"cannot parse config {p}: {exc}") from exc
    cfg = parse_config(doc)
    logger.debug("Loaded operator config from %s", p)
    return cfg
