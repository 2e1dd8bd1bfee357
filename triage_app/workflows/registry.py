"""Build the scheduled jobs from configuration.

Always-on workflows poll on fixed intervals; reports are listed per schedule
entry in ``schedules[].reports`` and post to that entry's channel. Anything named
in ``disabledWorkflows`` is skipped.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from triage_app.chat.actions import ActionDispatcher
from triage_app.core.config import WORKFLOW_SCHEDULES, AutomaticReport
from triage_app.reconcile.driver import ReconciliationDriver, Workflow

from .base import Report, WorkflowContext
from .blockers_report import BlockersReport
from .closed_report import ClosedReport
from .escalation_report import EscalationReport
from .incoming_report import IncomingReport
from .moved_issues import MovedIssuesReport, MovedIssuesWorkflow
from .needinfo import NeedinfoWorkflow
from .new_issues import NewIssuesWorkflow
from .stale import CloseStaleWorkflow, ResetStaleWorkflow, StaleWorkflow
from .urgent_escalation import UrgentEscalationWorkflow

logger = logging.getLogger(__name__)

# keyword driven lifecycle jobs are plain reports, the rest run through the driver
WORKFLOWS: dict[str, Callable[[WorkflowContext], Workflow | Report]] = {
    "needinfo": NeedinfoWorkflow,
    "urgent-escalation": UrgentEscalationWorkflow,
    "moved-issues": MovedIssuesWorkflow,
    "stale": StaleWorkflow,
    "stale-reset": ResetStaleWorkflow,
    "close-stale": CloseStaleWorkflow,
}

# single reminder variants of blocker-issues
USER_REMINDERS = {
    "user-triage-issues": "triage",
    "user-urgent-issues": "urgent",
    "user-blocker-issues": "blocker",
}

REPORTS = (
    "new-issues",
    "incoming-issues",
    "escalations",
    "moved-issues",
    "closed-issues",
    "blocker-issues",
    *USER_REMINDERS,
)


@dataclass(slots=True)
class ScheduledJob:
    name: str
    kind: str
    schedules: list[str]
    fn: Callable[[threading.Event], object]


def _workflow_job(name: str, schedules: Sequence[str], driver: ReconciliationDriver, wf: Workflow, kind: str) -> ScheduledJob:
    return ScheduledJob(name=name, kind=kind, schedules=list(schedules), fn=lambda cancel: driver.run(wf, cancel))


def _report_job(name: str, schedules: Sequence[str], report: Report, kind: str = "report") -> ScheduledJob:
    return ScheduledJob(name=name, kind=kind, schedules=list(schedules), fn=report.run)


def build_jobs(
    ctx: WorkflowContext,
    driver: ReconciliationDriver,
    dispatcher: ActionDispatcher | None = None,
) -> list[ScheduledJob]:
    cfg = ctx.config
    disabled = set(cfg.disabled_workflows)
    seen: set[str] = set()
    jobs: list[ScheduledJob] = []

    for name, factory in WORKFLOWS.items():
        seen.add(name)
        if name in disabled:
            logger.info("Workflow %s is disabled", name)
            continue
        job = factory(ctx)
        if isinstance(job, Report):
            jobs.append(_report_job(name, WORKFLOW_SCHEDULES[name], job, "workflow"))
        else:
            jobs.append(_workflow_job(name, WORKFLOW_SCHEDULES[name], driver, job, "workflow"))

    for i, entry in enumerate(cfg.schedules):
        for report_name in entry.reports:
            seen.add(report_name)
            if report_name in disabled:
                continue
            job = _build_report(ctx, driver, dispatcher, report_name, entry, f"{report_name}#{i}")
            if job is None:
                ctx.recorder.warning("UnknownReport", f"Unknown report {report_name!r} in schedules[{i}]")
                continue
            jobs.append(job)

    unknown = disabled - seen - set(REPORTS)
    if unknown:
        ctx.recorder.warning("UnknownDisabled", f"Unknown disabled workflows in config: {', '.join(sorted(unknown))}")
    return jobs


def _build_report(
    ctx: WorkflowContext,
    driver: ReconciliationDriver,
    dispatcher: ActionDispatcher | None,
    name: str,
    entry: AutomaticReport,
    job_name: str,
) -> ScheduledJob | None:
    chat = ctx.channel_client(entry.slack_channel)
    if name == "new-issues":
        wf = NewIssuesWorkflow(ctx, entry.components, chat=chat)
        if dispatcher is not None:
            dispatcher.subscribe(wf.block_id, wf.take_clicked)
        return _workflow_job(job_name, entry.when, driver, wf, "report")
    if name == "incoming-issues":
        return _report_job(job_name, entry.when, IncomingReport(ctx, entry.components, chat=chat))
    if name == "escalations":
        return _report_job(job_name, entry.when, EscalationReport(ctx, entry.components, chat=chat))
    if name == "moved-issues":
        return _report_job(job_name, entry.when, MovedIssuesReport(ctx, chat=chat))
    if name == "closed-issues":
        return _report_job(job_name, entry.when, ClosedReport(ctx, entry.components, chat=chat))
    if name == "blocker-issues":
        return _report_job(job_name, entry.when, BlockersReport(ctx, entry.components, chat=chat))
    if name in USER_REMINDERS:
        report = BlockersReport(
            ctx, entry.components, chat=chat, reminders=[USER_REMINDERS[name]], channel_stats=False, name=name
        )
        return _report_job(job_name, entry.when, report)
    return None
