"""Send urgent, not yet vetted issues to component management, once per issue.

Each qualifying issue gets the EmergencyRequest whiteboard keyword, a warning
comment, the component manager as assignee and its severity/priority reset
until the emergency is confirmed. Managers and product managers are messaged
once; the processed set remembers who was already told. An issue that lost its
EmergencyRequest keyword while still urgent is stamped again, without a second
round of messages.
"""

from __future__ import annotations

import logging

from triage_app.core.config import (
    EMERGENCY_CONFIRMED_KEYWORD,
    EMERGENCY_REQUEST_KEYWORD,
    INITIAL_STATUSES,
    UNSPECIFIED,
    URGENT_SEVERITY,
)
from triage_app.core.errors import ChatError, TrackerError, aggregate
from triage_app.core.formatting import format_record_message, record_link, record_links
from triage_app.core.models import Query, RecordModel, RecordUpdate
from triage_app.core.status import has_keyword, with_keyword
from triage_app.core.tracker import Tracker
from triage_app.detectors import DetectedItem, Detection, ProcessedSetDetector
from triage_app.reconcile.driver import Workflow
from triage_app.routing.people import manager_for, product_manager_for

from .base import WorkflowContext

logger = logging.getLogger(__name__)

EMERGENCY_REQUEST_MESSAGE = """** WARNING **
This issue claims urgent severity. Urgent means you just declared an emergency within engineering.
Engineers are asked to stop whatever they are doing, including putting release work on hold, while working on this case.
Be prepared to have a good justification ready, and make sure your own and engineering management are aware and approved this.

NOTE: This issue was assigned to the engineering manager with severity and priority reset to *Unspecified* until the emergency is vetted and confirmed. Please do not manually override the severity.
"""


class UrgentEscalationWorkflow(Workflow):
    name = "urgent-escalation"

    def __init__(self, ctx: WorkflowContext):
        self.ctx = ctx
        self.recorder = ctx.recorder.for_component(self.name)
        self.detector = ProcessedSetDetector(
            key="escalations",
            revisit=lambda r: not has_keyword(r.whiteboard, EMERGENCY_REQUEST_KEYWORD),
        )

    def base_query(self) -> Query:
        return self.ctx.query(statuses=INITIAL_STATUSES, severities=[URGENT_SEVERITY])

    def fetch(self, tracker: Tracker, query: Query) -> list[RecordModel]:
        # confirmed emergencies are done with
        return [r for r in tracker.search(query) if not has_keyword(r.whiteboard, EMERGENCY_CONFIRMED_KEYWORD)]

    def _recipients(self, r: RecordModel) -> list[str]:
        component = r.components[0] if r.components else ""
        fallback = r.assignee or ""
        return [
            manager_for(self.ctx.config, component, fallback),
            product_manager_for(self.ctx.config, component, fallback),
        ]

    def apply(self, item: DetectedItem) -> None:
        r = item.record
        errors: list[Exception] = []
        if not self.detector.already_processed(item):
            errors += self._notify(r)

        if not has_keyword(r.whiteboard, EMERGENCY_REQUEST_KEYWORD):
            component = r.components[0] if r.components else ""
            update = RecordUpdate(
                whiteboard=with_keyword(r.whiteboard, EMERGENCY_REQUEST_KEYWORD),
                comment=EMERGENCY_REQUEST_MESSAGE,
                assignee=manager_for(self.ctx.config, component, r.assignee or "") or None,
                priority=UNSPECIFIED,
                severity=UNSPECIFIED,
            )
            try:
                self.ctx.tracker.update(r.id, update)
            except TrackerError as exc:
                errors.append(exc)

        err = aggregate(errors)
        if err is not None:
            raise err

    def _notify(self, r: RecordModel) -> list[Exception]:
        errors: list[Exception] = []
        text = (
            f":alert-siren: *The following issue requires immediate attention and triage*: {record_link(self.ctx.server, r)}\n"
            f"> _Please contact engineering if necessary and add the *{EMERGENCY_CONFIRMED_KEYWORD}* keyword to the "
            f"whiteboard if this is an emergency. Otherwise decrease the priority/severity._"
        )
        for recipient in dict.fromkeys(self._recipients(r)):
            if not recipient:
                self.recorder.warning(
                    "RecipientMissing", f"Component {', '.join(r.components) or '---'} is missing a product manager or manager"
                )
                continue
            try:
                self.ctx.chat.message_recipient(recipient, text)
            except ChatError as exc:
                errors.append(exc)
        return errors

    def finalize(self, detection: Detection, failures: list[Exception]) -> None:
        restamped = [i.record for i in detection.items if self.detector.already_processed(i)]
        if restamped:
            self.recorder.event(
                "EmergencyRestamped",
                f"Reset severity of {record_links(self.ctx.server, restamped)} again after the {EMERGENCY_REQUEST_KEYWORD} keyword was removed",
            )
        notified = [
            i.record
            for i in detection.items
            if not self.detector.already_processed(i) and i.record.id in detection.next_cursor
        ]
        if not notified:
            return
        lines = [format_record_message(self.ctx.server, r) for r in notified]
        self.ctx.chat.message_admin_channel(
            ":alert-siren: Requested PM and manager vetting on the following issues:\n" + "\n".join(lines)
        )
