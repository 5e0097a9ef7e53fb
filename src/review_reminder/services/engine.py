"""
Installation Engine - everything that runs for one installation.

Composes the config store, user scheduler, report generator and
notification dispatcher of a single organization or user account. The
registry owns one engine per installation; nothing in here is shared with
other installations except the APScheduler instance and the GitHub client
(which owns the process-wide rate limiter) passed in.
"""

import logging
from typing import Any, Callable, Dict, Iterable, Optional

from apscheduler.schedulers.base import BaseScheduler

from review_reminder.core.cache import QueryCache
from review_reminder.core.config import Settings
from review_reminder.core.metrics import track_report
from review_reminder.core.timeutils import local_utc_offset
from review_reminder.schemas.installation import Installation
from review_reminder.schemas.report import Report
from review_reminder.schemas.user import UserRecord
from review_reminder.services.channels import MailChannel, SlackChannel
from review_reminder.services.config_store import ConfigStore
from review_reminder.services.interfaces import DeliveryChannel
from review_reminder.services.notification_dispatcher import NotificationDispatcher
from review_reminder.services.report_generator import ReportGenerator
from review_reminder.services.user_scheduler import UserScheduler

logger = logging.getLogger(__name__)


class InstallationEngine:
    """Config, schedule, reports and delivery of one installation."""

    def __init__(
        self,
        installation: Installation,
        github: Any,
        scheduler: BaseScheduler,
        settings: Settings,
        channels: Optional[Iterable[DeliveryChannel]] = None,
        local_offset: Callable[[], int] = local_utc_offset,
    ):
        """Wire the components of one installation.

        Args:
            installation: The installation served by this engine
            github: Membership, activity, search and document source (GitHubClient)
            scheduler: Process-wide APScheduler instance
            settings: Process settings
            channels: Delivery channels; mail and Slack when omitted
            local_offset: Provider of the process-local UTC offset in minutes
        """
        self.installation = installation
        self.settings = settings
        dry_run = settings.runtime.dry_run

        self.config = ConfigStore(
            installation,
            github,
            repo=settings.settings_repo.repo,
            path=settings.settings_repo.path,
            write_delay=settings.config_store.write_delay_seconds,
            dry_run=dry_run,
            commit_message=settings.config_store.commit_message,
        )
        self.cache = QueryCache(ttl=settings.cache.ttl_seconds)
        self.generator = ReportGenerator(installation, self.config, github, self.cache)
        self.dispatcher = NotificationDispatcher()
        self.users = UserScheduler(
            installation,
            self.config,
            membership=github,
            activity=github,
            scheduler=scheduler,
            on_trigger=self.send_report,
            misfire_grace_seconds=settings.scheduler.misfire_grace_seconds,
            local_offset=local_offset,
        )

        if channels is None:
            channels = [
                MailChannel(settings.email, lambda: self.config.get().email, dry_run=dry_run),
                SlackChannel(settings.slack, dry_run=dry_run),
            ]
        for channel in channels:
            self.dispatcher.subscribe(channel)

        self._closed = False

    @property
    def key(self) -> str:
        return self.installation.key

    @property
    def closed(self) -> bool:
        return self._closed

    # ==================== Lifecycle ====================

    async def start(self) -> "InstallationEngine":
        """Load the settings document and schedule every member."""
        logger.info(f'Starting engine for "{self.key}"')
        await self.config.load()
        await self.users.setup_users()
        logger.info(f'Engine for "{self.key}" tracks {len(self.users.users)} user(s)')
        return self

    def teardown(self) -> None:
        """Cancel every trigger and any scheduled config write, synchronously."""
        self._closed = True
        self.users.teardown()
        self.config.cancel_pending_write()
        self.cache.clear()
        logger.info(f'Engine for "{self.key}" torn down')

    async def flush(self) -> bool:
        if not self.config.loaded:
            return False
        return await self.config.flush()

    async def close(self) -> None:
        """Release channel resources (HTTP clients)."""
        for channel in self.dispatcher.channels:
            close = getattr(channel, "close", None)
            if close is not None:
                await close()

    # ==================== Reports ====================

    async def _run_report(self, login: str, require_enabled: bool) -> Optional[Report]:
        login = login.lower()
        user = self.users.get_user(login)
        if user is None or (require_enabled and not user.enabled):
            logger.debug(f'No report for "{login}": not tracked or disabled')
            track_report("skipped")
            return None

        logger.info(f'Generating report for user "{login}"')
        report = await self.generator.get_report_for_user(user)

        if report.failed:
            track_report("failed")
            return report
        if report.is_empty():
            logger.debug(f'Skipping report for "{login}", nothing pending')
            track_report("empty")
            return report

        # The user may have been disabled or removed while the queries ran
        current = self.users.get_user(login)
        if self._closed or current is None or (require_enabled and not current.enabled):
            logger.info(f'Dropping report for "{login}", user left or was disabled meanwhile')
            track_report("skipped")
            return report

        await self.dispatcher.dispatch(current, report)
        track_report("sent")
        return report

    async def send_report(self, login: str) -> Optional[Report]:
        """Trigger handler: build and dispatch a scheduled report."""
        return await self._run_report(login, require_enabled=True)

    async def request_report(self, login: str) -> Optional[Report]:
        """Build and dispatch a report on demand, outside the schedule."""
        logger.info(f'Report for "{login}" requested on demand')
        return await self._run_report(login, require_enabled=False)

    # ==================== Users ====================

    async def on_member_added(self, member: Dict[str, Any]) -> Optional[UserRecord]:
        return await self.users.add_user(member)

    def on_member_removed(self, login: str) -> bool:
        removed = self.users.remove_user(login)
        self.config.remove_user(login)
        return removed

    async def on_push(self, repo: str, paths: Optional[Iterable[str]] = None) -> bool:
        """React to a push; returns True if the settings document changed."""
        changed = await self.config.reload_if_changed(repo, paths)
        if changed:
            await self.users.reload()
        return changed

    def set_user_enabled(self, login: str, enabled: bool) -> Optional[UserRecord]:
        return self.users.set_user_enabled(login, enabled)

    def set_user_email(self, login: str, email: str) -> Optional[UserRecord]:
        return self.users.update_user(login, {"email": email})

    def bind_chat(self, login: str, chat_user: str, channel: Optional[str] = None) -> Optional[UserRecord]:
        """Link a chat identity to a login; delivery starts once it is activated."""
        user = self.users.get_user(login)
        if user is None:
            return None
        active = user.slack.active if user.slack is not None else False
        return self.users.update_user(
            login, {"slack": {"user": chat_user, "channel": channel, "active": active}}
        )

    def set_chat_active(self, login: str, active: bool) -> Optional[UserRecord]:
        user = self.users.get_user(login)
        if user is None or user.slack is None:
            logger.warning(f'Cannot toggle chat for "{login}": no chat binding')
            return None
        return self.users.update_user(login, {"slack": {**user.slack.to_document(), "active": active}})

    async def invalidate_timezone(self, login: str) -> Optional[UserRecord]:
        return await self.users.invalidate_timezone(login)
