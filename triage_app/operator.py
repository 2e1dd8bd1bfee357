"""Process wiring: stores, clients, workflows and the scheduler, plus the CLI entry point."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from triage_app import __version__
from triage_app.chat.actions import ActionDispatcher
from triage_app.chat.server import InteractionServer
from triage_app.chat.slack_client import ChatClient, SlackChannelClient
from triage_app.core.config import OperatorConfig, load_config
from triage_app.core.errors import ConfigError
from triage_app.core.jira_client import JiraAPI
from triage_app.core.recorder import EventRecorder
from triage_app.core.tracker import CachingTracker, DryRunTracker, JiraTracker, LoggingTracker, Tracker
from triage_app.reconcile.driver import ReconciliationDriver
from triage_app.routing.people import tracker_email_for
from triage_app.scheduler import Scheduler
from triage_app.stores.cache import CacheStore
from triage_app.stores.cursor import CursorStore, DryRunCursorStore, build_cursor_store
from triage_app.workflows.base import WorkflowContext
from triage_app.workflows.registry import build_jobs

logger = logging.getLogger(__name__)


class Operator:
    def __init__(self, config: OperatorConfig, *, dry_run: bool = False, serve: bool = True):
        self.config = config
        self.dry_run = dry_run
        creds = config.credentials
        if not creds.decoded_api_token or not creds.decoded_email:
            raise ConfigError("credentials.email and credentials.apiToken are required")
        if not creds.decoded_slack_token:
            raise ConfigError("credentials.slackToken is required")

        self._channels: dict[str, ChatClient] = {}
        self.chat = self.chat_for(config.slack_channel or config.slack_admin_channel)
        self.recorder = EventRecorder(self.chat)

        self.cache = CacheStore(config.cache_path or ":memory:").open()
        self.tracker = self._build_tracker()
        self.cursors = self._build_cursors()
        self.driver = ReconciliationDriver(self.tracker, self.cursors)
        self.dispatcher = ActionDispatcher(self.chat, identity=lambda email: tracker_email_for(config, email))

        ctx = WorkflowContext(
            config=config,
            tracker=self.tracker,
            chat=self.chat,
            cursors=self.cursors,
            recorder=self.recorder,
            chat_for=self.chat_for,
        )
        self.scheduler = Scheduler(tz=config.timezone)
        for job in build_jobs(ctx, self.driver, self.dispatcher):
            self.scheduler.add(job.name, job.schedules, job.fn)

        self.server: InteractionServer | None = None
        if serve:
            self.server = InteractionServer(
                config.listen_address, self.dispatcher, creds.decoded_slack_verification_token
            )

    def chat_for(self, channel: str) -> ChatClient:
        client = self._channels.get(channel)
        if client is None:
            client = SlackChannelClient(
                self.config.credentials.decoded_slack_token,
                channel,
                self.config.slack_admin_channel,
                debug=self.dry_run,
                email_map=self.config.slack_emails,
            )
            self._channels[channel] = client
        return client

    def _build_tracker(self) -> Tracker:
        creds = self.config.credentials
        api = JiraAPI(creds.server, creds.decoded_email, creds.decoded_api_token)
        tracker: Tracker = LoggingTracker(CachingTracker(JiraTracker(api, self.config.field_ids), self.cache))
        if self.dry_run:
            tracker = DryRunTracker(tracker, notify=self.chat.message_admin_channel)
        return tracker

    def _build_cursors(self) -> CursorStore:
        store = build_cursor_store(self.config)
        if self.dry_run:
            store = DryRunCursorStore(store, notify=self.chat.message_admin_channel)
        return store

    # ------------------ Lifecycle ------------------
    def run(self, stop: threading.Event) -> None:
        if self.server is not None:
            self.server.start()
        self.scheduler.start()
        self.recorder.event("Started", f"triage operator {__version__} with {len(self.scheduler.jobs)} jobs")
        try:
            stop.wait()
        finally:
            self.shutdown()

    def run_once(self, job: str) -> BaseException | None:
        """Run one job to completion; returns the error it failed with, if any."""
        try:
            fut = self.scheduler.trigger(job)
            if fut is not None:
                fut.result()
            return self.scheduler.jobs[job].last_error
        finally:
            self.shutdown()

    def shutdown(self) -> None:
        self.scheduler.stop()
        if self.server is not None:
            self.server.stop()
            self.server = None
        self.dispatcher.shutdown()
        self.cache.close()
        for client in self._channels.values():
            client.close()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="triage-operator", description="Polling triage operator for Jira with Slack notifications.")
    p.add_argument("--config", "-c", default="operator.yaml", help="path to the operator YAML")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    p.add_argument("--dry-run", action="store_true", help="never write to Jira or the state store; announce instead")
    p.add_argument("--no-server", action="store_true", help="do not listen for interactive callbacks")
    p.add_argument("--run", metavar="JOB", help="run one job now and exit")
    p.add_argument("--list", action="store_true", help="list configured jobs and exit")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    try:
        config = load_config(args.config)
        logger.debug("Using config %s", config.anonymize())
        op = Operator(config, dry_run=args.dry_run, serve=not (args.no_server or args.run or args.list))
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    if args.list:
        for name, job in sorted(op.scheduler.jobs.items()):
            print(f"{name}\t{', '.join(s.spec for s in job.schedules)}\tnext {job.next_run:%Y-%m-%d %H:%M %Z}")
        op.shutdown()
        return 0
    if args.run:
        try:
            error = op.run_once(args.run)
        except KeyError:
            logger.error("Unknown job %r; see --list", args.run)
            return 2
        return 1 if error is not None else 0

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    op.run(stop)
    return 0


if __name__ == "__main__":
    sys.exit(main())
