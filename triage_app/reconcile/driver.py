"""One reconciliation run: fetch candidates -> detect -> apply side effects -> commit cursor.

Fetch failures abort without committing. Side-effect failures are per item and
collected; the cursor is committed regardless and the collected errors are raised
afterwards as one :class:`RunFailed`.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum

from triage_app.core.errors import AggregateError, CursorStoreError, FetchError, RunCancelled, TriageError
from triage_app.core.models import Query, RecordModel
from triage_app.core.tracker import Tracker
from triage_app.detectors import DetectedItem, Detection, Detector
from triage_app.stores.cursor import CursorStore, scoped

logger = logging.getLogger(__name__)


class RunState(str, Enum):
    IDLE = "Idle"
    FETCH_CANDIDATES = "FetchCandidates"
    DETECT = "Detect"
    APPLY_SIDE_EFFECTS = "ApplySideEffects"
    COMMIT_CURSOR = "CommitCursor"


class Workflow(ABC):
    """A scheduled reconciliation: candidate query + detector + side effect."""

    name: str = ""
    detector: Detector
    max_workers: int = 1

    @abstractmethod
    def base_query(self) -> Query: ...

    def fetch(self, tracker: Tracker, query: Query) -> list[RecordModel]:
        return tracker.search(query)

    @abstractmethod
    def apply(self, item: DetectedItem) -> None: ...

    def finalize(self, detection: Detection, failures: list[Exception]) -> None:
        """Runs once after every item was attempted (summaries, admin notes)."""


@dataclass(slots=True)
class RunResult:
    workflow: str
    states: list[RunState] = field(default_factory=lambda: [RunState.IDLE])
    candidates: int = 0
    items: int = 0
    succeeded: int = 0
    errors: list[Exception] = field(default_factory=list)
    committed: bool = False
    duration: float = 0.0

    @property
    def state(self) -> RunState:
        return self.states[-1]


class RunFailed(AggregateError):
    """Raised after commit when any detect/apply/finalize/commit step failed."""

    def __init__(self, errors, result: RunResult):
        super().__init__(errors)
        self.result = result


class ReconciliationDriver:
    def __init__(self, tracker: Tracker, cursors: CursorStore, max_workers: int | None = None):
        self.tracker = tracker
        self.cursors = cursors
        self.max_workers = max_workers

    def _enter(self, result: RunResult, state: RunState) -> None:
        result.states.append(state)
        logger.debug("%s: %s", result.workflow, state.value)

    def run(self, workflow: Workflow, cancel: threading.Event | None = None) -> RunResult:
        start = time.monotonic()
        result = RunResult(workflow=workflow.name)
        detector = workflow.detector
        store = scoped(self.cursors, workflow.name)

        # ------------------ FetchCandidates ------------------
        self._enter(result, RunState.FETCH_CANDIDATES)
        try:
            cursor = detector.load(store)
        except CursorStoreError as exc:
            self._enter(result, RunState.IDLE)
            raise FetchError(f"{workflow.name}: cannot read cursor: {exc}") from exc
        query = workflow.base_query().with_conditions(*detector.candidate_filter(cursor))
        try:
            records = workflow.fetch(self.tracker, query)
        except FetchError:
            self._enter(result, RunState.IDLE)
            raise
        except (TriageError, OSError) as exc:
            self._enter(result, RunState.IDLE)
            raise FetchError(f"{workflow.name}: failed to fetch candidates: {exc}") from exc
        result.candidates = len(records)

        # ------------------ Detect ------------------
        self._enter(result, RunState.DETECT)
        detection = detector.detect(records, cursor, self.tracker)
        result.items = len(detection.items)
        errors: list[Exception] = list(detection.errors)

        if cancel is not None and cancel.is_set():
            self._enter(result, RunState.IDLE)
            logger.info("%s: cancelled before applying %d items", workflow.name, len(detection.items))
            raise RunCancelled(f"{workflow.name}: cancelled")

        # ------------------ ApplySideEffects ------------------
        self._enter(result, RunState.APPLY_SIDE_EFFECTS)
        workers = self.max_workers or workflow.max_workers
        if workers > 1 and len(detection.items) > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=workflow.name) as pool:
                outcomes = list(pool.map(lambda it: self._apply_one(workflow, detection, it), detection.items))
        else:
            outcomes = [self._apply_one(workflow, detection, it) for it in detection.items]
        failures = [exc for exc in outcomes if exc is not None]
        result.succeeded = len(outcomes) - len(failures)
        errors.extend(failures)

        try:
            workflow.finalize(detection, failures)
        except Exception as exc:
            logger.warning("%s: finalize failed: %s", workflow.name, exc)
            errors.append(exc)

        # ------------------ CommitCursor ------------------
        self._enter(result, RunState.COMMIT_CURSOR)
        try:
            detector.commit(store, detection)
            result.committed = True
        except (CursorStoreError, TypeError, ValueError) as exc:
            logger.error("%s: failed to commit cursor: %s", workflow.name, exc)
            errors.append(exc)

        self._enter(result, RunState.IDLE)
        result.errors = errors
        result.duration = time.monotonic() - start
        logger.info(
            "%s: %d candidates, %d items, %d succeeded, %d errors in %.2fs",
            workflow.name,
            result.candidates,
            result.items,
            result.succeeded,
            len(errors),
            result.duration,
        )
        if errors:
            raise RunFailed(errors, result)
        return result

    def _apply_one(self, workflow: Workflow, detection: Detection, item: DetectedItem) -> Exception | None:
        try:
            workflow.apply(item)
        except Exception as exc:
            # one record's failure never stops the others
            logger.warning("%s: side effect for %s failed: %s", workflow.name, item.record.key, exc)
            return exc
        workflow.detector.mark_succeeded(detection, item)
        return None
