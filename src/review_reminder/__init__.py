"""Scheduled pull request review reminders for GitHub installations."""

__version__ = "1.0.0"
