"""Cron multiplexer firing independent workflow runs on their own schedules.

Schedule strings are 5-field cron expressions or descriptors understood by
``croniter`` (``@hourly``, ``@daily``, ...), optionally prefixed with
``CRON_TZ=<zone>``, or ``@every <duration>`` such as ``@every 1h30m``.

A job whose previous run is still in flight skips that firing.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytz
from croniter import croniter

from triage_app.core.config import TIMEZONE
from triage_app.core.errors import ConfigError, RunCancelled

logger = logging.getLogger(__name__)

_EVERY_RE = re.compile(r"^(?:(?P<h>\d+)h)?(?:(?P<m>\d+)m)?(?:(?P<s>\d+)s)?$")

JobFn = Callable[[threading.Event], object]


def parse_every(text: str) -> timedelta:
    m = _EVERY_RE.match(text.strip())
    if not m or not any(m.groupdict().values()):
        raise ConfigError(f"invalid @every duration {text!r}")
    every = timedelta(hours=int(m["h"] or 0), minutes=int(m["m"] or 0), seconds=int(m["s"] or 0))
    if every <= timedelta(0):
        raise ConfigError(f"@every duration must be positive: {text!r}")
    return every


@dataclass(slots=True)
class Schedule:
    spec: str
    tz: object
    expression: str | None = None
    every: timedelta | None = None

    @classmethod
    def parse(cls, spec: str, default_tz: str = TIMEZONE) -> Schedule:
        text = spec.strip()
        zone = default_tz
        if text.startswith(("CRON_TZ=", "TZ=")):
            head, _, text = text.partition(" ")
            zone = head.split("=", 1)[1]
            text = text.strip()
        try:
            tz = pytz.timezone(zone)
        except pytz.UnknownTimeZoneError as exc:
            raise ConfigError(f"unknown time zone {zone!r} in schedule {spec!r}") from exc

        if text.startswith("@every"):
            return cls(spec=spec, tz=tz, every=parse_every(text[len("@every") :]))
        if not text or not croniter.is_valid(text):
            raise ConfigError(f"invalid schedule {spec!r}")
        return cls(spec=spec, tz=tz, expression=text)

    def next_after(self, after: datetime) -> datetime:
        if self.every is not None:
            return after + self.every
        local = after.astimezone(self.tz)
        nxt = croniter(self.expression, local).get_next(datetime)
        return nxt.astimezone(UTC)


@dataclass(slots=True)
class Job:
    name: str
    schedules: list[Schedule]
    fn: JobFn
    next_run: datetime
    running: bool = False
    runs: int = 0
    skipped: int = 0
    last_error: BaseException | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)

    def next_after(self, after: datetime) -> datetime:
        return min(s.next_after(after) for s in self.schedules)


class Scheduler:
    def __init__(
        self,
        tz: str = TIMEZONE,
        max_workers: int = 8,
        tick: float = 1.0,
        clock: Callable[[], datetime] | None = None,
    ):
        self.tz = tz
        self.tick = tick
        self.clock = clock or (lambda: datetime.now(UTC))
        self.jobs: dict[str, Job] = {}
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="job")
        self._cancel = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    # ------------------ Registration ------------------
    def add(self, name: str, schedules: Iterable[str], fn: JobFn) -> Job:
        parsed = [Schedule.parse(s, self.tz) for s in schedules]
        if not parsed:
            raise ConfigError(f"job {name!r} has no schedules")
        with self._lock:
            if name in self.jobs:
                raise ConfigError(f"job {name!r} registered twice")
            job = Job(name=name, schedules=parsed, fn=fn, next_run=datetime.max.replace(tzinfo=UTC))
            job.next_run = job.next_after(self.clock())
            self.jobs[name] = job
        logger.info("Scheduled %s (%s), next run at %s", name, ", ".join(s.spec for s in parsed), job.next_run)
        return job

    # ------------------ Execution ------------------
    def _execute(self, job: Job) -> None:
        try:
            job.fn(self._cancel)
            job.last_error = None
        except RunCancelled as exc:
            logger.info("%s cancelled: %s", job.name, exc)
        except Exception as exc:
            job.last_error = exc
            logger.error("%s failed: %s", job.name, exc)
        finally:
            with job.lock:
                job.running = False

    def _submit(self, job: Job) -> Future | None:
        with job.lock:
            if job.running:
                job.skipped += 1
                logger.warning("Skipping %s: previous run is still in progress", job.name)
                return None
            job.running = True
            job.runs += 1
        try:
            fut = self._pool.submit(self._execute, job)
        except RuntimeError:
            # pool already shut down
            with job.lock:
                job.running = False
            raise
        fut.add_done_callback(lambda f: self._release_cancelled(job, f))
        return fut

    @staticmethod
    def _release_cancelled(job: Job, fut: Future) -> None:
        # queued runs dropped by stop() never reach _execute
        if fut.cancelled():
            with job.lock:
                job.running = False

    def run_pending(self, now: datetime | None = None) -> dict[str, Future]:
        """Start every job due at ``now``; returns the futures of the runs started."""
        now = now or self.clock()
        started: dict[str, Future] = {}
        with self._lock:
            due = [job for job in self.jobs.values() if job.next_run <= now]
        for job in due:
            job.next_run = job.next_after(now)
            fut = self._submit(job)
            if fut is not None:
                started[job.name] = fut
        return started

    def trigger(self, name: str) -> Future | None:
        """Run ``name`` now, out of schedule (still subject to the overlap skip)."""
        job = self.jobs.get(name)
        if job is None:
            raise KeyError(name)
        logger.info("Triggering %s", name)
        return self._submit(job)

    # ------------------ Lifecycle ------------------
    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_pending()
            self._stop.wait(self.tick)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._loop, name="scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started with %d jobs", len(self.jobs))

    def stop(self, timeout: float | None = None) -> None:
        self._cancel.set()
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self._pool.shutdown(wait=True, cancel_futures=True)
        logger.info("Scheduler stopped")
