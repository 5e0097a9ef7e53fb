"""
Mail delivery channel.

Builds a multipart (plain text + HTML) message and sends it over SMTP in a
worker thread, since smtplib blocks.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Callable

from review_reminder.core.async_utils import run_blocking
from review_reminder.core.config import EmailSettings
from review_reminder.schemas.report import Report
from review_reminder.schemas.report_config import EmailPreferences
from review_reminder.schemas.user import UserRecord
from review_reminder.services.channels.formatting import render_html, render_text

logger = logging.getLogger(__name__)


class MailChannel:
    """Delivers reports to users with a known email address."""

    name = "mail"

    def __init__(
        self,
        settings: EmailSettings,
        preferences: Callable[[], EmailPreferences] = EmailPreferences,
        dry_run: bool = False,
    ):
        self.settings = settings
        self.preferences = preferences
        self.dry_run = dry_run

    def build_message(self, user: UserRecord, report: Report) -> MIMEMultipart:
        preferences = self.preferences()

        msg = MIMEMultipart("alternative")
        msg["From"] = preferences.sender or self.settings.smtp_from
        msg["To"] = f'"{user.name}" <{user.email}>'
        msg["Subject"] = preferences.subject.format(count=report.count())

        msg.attach(MIMEText(render_text(report), "plain"))
        msg.attach(MIMEText(render_html(report), "html"))
        return msg

    def _connect(self) -> smtplib.SMTP:
        timeout = self.settings.timeout_seconds
        if self.settings.smtp_tls:
            # STARTTLS (typically port 587)
            server = smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=timeout)
            server.starttls()
        elif self.settings.smtp_port == 465:
            server = smtplib.SMTP_SSL(self.settings.smtp_host, self.settings.smtp_port, timeout=timeout)
        else:
            server = smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=timeout)

        if self.settings.smtp_user and self.settings.smtp_password:
            server.login(self.settings.smtp_user, self.settings.smtp_password)
        return server

    def _send(self, msg: MIMEMultipart) -> None:
        server = self._connect()
        try:
            server.send_message(msg)
        finally:
            server.quit()

    async def deliver(self, user: UserRecord, report: Report) -> bool:
        if not self.settings.enabled:
            logger.debug("Mail delivery disabled")
            return False
        if not user.email:
            logger.debug(f'Skipping mail for "{user.login}", no email known')
            return False

        msg = self.build_message(user, report)
        if self.dry_run:
            logger.info(f'Dry run: would mail "{msg["Subject"]}" to {user.email}')
            return False

        try:
            await run_blocking(self._send, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Sending mail to {user.email} failed: {type(e).__name__}: {e}")
            return False

        logger.info(f'Mailed report to "{user.login}" ({report.count()} pending)')
        return True
