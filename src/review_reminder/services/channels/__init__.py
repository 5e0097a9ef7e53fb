"""Delivery channels the notification dispatcher fans reports out to."""

from review_reminder.services.channels.mail import MailChannel
from review_reminder.services.channels.slack import SlackChannel

__all__ = ["MailChannel", "SlackChannel"]
