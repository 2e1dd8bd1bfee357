"""Polling triage operator for Jira with Slack notifications."""

__version__ = "0.4.0"
