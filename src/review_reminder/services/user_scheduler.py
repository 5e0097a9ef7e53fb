"""
User Scheduler - live report triggers for the members of one installation.

This module owns exactly one set of APScheduler jobs per enabled user:
- one daily CronTrigger per configured report time
- each time of day is anchored in the user's UTC offset and re-expressed
  in the process-local offset the triggers are built with
- a user's jobs are always cancelled before they are rebuilt, so no
  trigger is ever duplicated, and cancelled synchronously on removal
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger

from review_reminder.core.decorators import safe_external_call
from review_reminder.core.metrics import triggers_scheduled
from review_reminder.core.timeutils import (
    MAX_OFFSET_MINUTES,
    MIN_OFFSET_MINUTES,
    fixed_offset,
    local_utc_offset,
    offset_of,
    to_local_time_of_day,
)
from review_reminder.schemas.installation import Installation, Member, TargetType
from review_reminder.schemas.user import UserRecord
from review_reminder.services.config_store import ConfigStore
from review_reminder.services.interfaces import ActivitySource, MembershipSource

logger = logging.getLogger(__name__)

TriggerCallback = Callable[[str], Awaitable[Any]]


class UserScheduler:
    """Tracks users of one installation and their recurring report triggers."""

    def __init__(
        self,
        installation: Installation,
        config: ConfigStore,
        membership: MembershipSource,
        activity: ActivitySource,
        scheduler: BaseScheduler,
        on_trigger: TriggerCallback,
        misfire_grace_seconds: int = 300,
        local_offset: Callable[[], int] = local_utc_offset,
    ):
        """Initialize the scheduler for one installation.

        Args:
            installation: Installation whose members are tracked
            config: Loaded config store of the installation
            membership: Source of members and profiles
            activity: Source of last-activity timestamps (already rate limited)
            scheduler: Shared APScheduler instance
            on_trigger: Coroutine called with the user's login when a trigger fires
            misfire_grace_seconds: How late a trigger may still fire
            local_offset: Provider of the process-local UTC offset in minutes
        """
        self.installation = installation
        self.config = config
        self.membership = membership
        self.activity = activity
        self.scheduler = scheduler
        self.on_trigger = on_trigger
        self.misfire_grace_seconds = misfire_grace_seconds
        self._local_offset = local_offset

        self._users: Dict[str, UserRecord] = {}
        self._jobs: Dict[str, List[Job]] = {}
        self._adding: Dict[str, asyncio.Event] = {}
        self._abandoned: Set[str] = set()
        self._built_offset: Optional[int] = None
        self._report_times: List[str] = []

    # ==================== Introspection ====================

    @property
    def users(self) -> Dict[str, UserRecord]:
        return dict(self._users)

    def get_user(self, login: str) -> Optional[UserRecord]:
        return self._users.get(login.lower())

    def jobs_for(self, login: str) -> List[Job]:
        return list(self._jobs.get(login.lower(), []))

    @property
    def trigger_count(self) -> int:
        return sum(len(jobs) for jobs in self._jobs.values())

    def _update_gauge(self) -> None:
        triggers_scheduled.labels(installation=self.installation.key).set(self.trigger_count)

    # ==================== External lookups ====================

    @safe_external_call("list organization members", default_return=None, log_level="error")
    async def _list_members(self) -> Optional[List[Dict[str, Any]]]:
        return await self.membership.list_members(self.installation.account_login)

    @safe_external_call("fetch user profile", default_return={})
    async def _fetch_profile(self, user_id: int) -> Dict[str, Any]:
        return await self.membership.get_profile(user_id)

    @safe_external_call("look up last activity", default_return=None)
    async def _last_activity(self, login: str):
        return await self.activity.last_activity_timestamp(login)

    async def derive_timezone(self, login: str) -> int:
        """UTC offset of the user's latest commit, or the installation default."""
        timestamp = await self._last_activity(login)
        offset = offset_of(timestamp) if timestamp is not None else None

        if offset is None:
            logger.debug(f'Did not find commits for user "{login}", assuming default timezone')
            return self.config.get().default_timezone
        if not MIN_OFFSET_MINUTES <= offset <= MAX_OFFSET_MINUTES:
            logger.warning(
                f'Commit offset {offset} of user "{login}" is out of range, assuming default timezone'
            )
            return self.config.get().default_timezone
        return offset

    async def _build_record(self, member: Member) -> UserRecord:
        details, timezone = await asyncio.gather(
            self._fetch_profile(member.id),
            self.derive_timezone(member.normalized_login),
        )

        if not details.get("email"):
            logger.warning(f'No email found for user "{member.normalized_login}"')

        return UserRecord(
            login=member.normalized_login,
            id=member.id,
            email=details.get("email"),
            name=details.get("name") or member.name or member.login,
            timezone=timezone,
        )

    # ==================== Users ====================

    async def add_user(
        self,
        raw: Union[Member, Dict[str, Any]],
        write_config: bool = True,
    ) -> Optional[UserRecord]:
        """
        Start tracking a member and schedule their triggers.

        Non-human principals are ignored and already tracked logins are a
        no-op. A record cached in the settings document is reused; otherwise
        email and timezone are derived once and merged into the document
        (unless write_config is False). A second add of a login that is still
        being added waits for the first one and returns its result.

        Returns:
            The tracked record, or None if the member was ignored
        """
        member = raw if isinstance(raw, Member) else Member.model_validate(raw)
        if not member.is_human:
            logger.debug(f'Ignoring non-human principal "{member.login}" ({member.type})')
            return None

        login = member.normalized_login
        if login in self._users:
            return self._users[login]
        in_flight = self._adding.get(login)
        if in_flight is not None:
            # Re-added while the first add is still running: it must not be dropped
            self._abandoned.discard(login)
            await in_flight.wait()
            record = self._users.get(login)
            if record is not None and write_config:
                self._persist_user(record)
            return record

        done = self._adding[login] = asyncio.Event()
        try:
            record = self.config.get().users.get(login)
            if record is None:
                logger.info(f'Found new user "{login}", fetching details and timezone')
                record = await self._build_record(member)

            if login in self._abandoned:
                logger.debug(f'User "{login}" was removed while being added')
                return None

            self._users[login] = record
            if write_config:
                self._persist_user(record)

            self._schedule_user(record)
            return record
        finally:
            del self._adding[login]
            self._abandoned.discard(login)
            done.set()

    def remove_user(self, login: str) -> bool:
        """Cancel and forget all triggers of a user. Untracked users are a no-op."""
        login = login.lower()
        if login in self._adding:
            self._abandoned.add(login)

        if login not in self._users:
            return False

        self._cancel_jobs(login)
        del self._users[login]
        logger.info(f'Stopped reports for user "{login}"')
        return True

    def update_user(self, login: str, changes: Dict[str, Any]) -> Optional[UserRecord]:
        """Apply changes to a tracked user, persist them and rebuild their triggers."""
        login = login.lower()
        record = self._users.get(login)
        if record is None:
            return None

        updated = UserRecord.model_validate({**record.to_document(), **changes})
        self._users[login] = updated
        self.config.merge_user(login, updated.to_document())

        if updated.enabled != record.enabled or updated.timezone != record.timezone:
            self._schedule_user(updated)
        return updated

    def set_user_enabled(self, login: str, enabled: bool) -> Optional[UserRecord]:
        return self.update_user(login, {"enabled": enabled})

    async def invalidate_timezone(self, login: str) -> Optional[UserRecord]:
        """Re-derive a user's cached timezone from their latest activity."""
        if self.get_user(login) is None:
            return None
        timezone = await self.derive_timezone(login.lower())
        return self.update_user(login, {"timezone": timezone})

    def _persist_user(self, record: UserRecord) -> None:
        stored = self.config.get().users.get(record.login)
        if stored is None or stored.to_document() != record.to_document():
            self.config.merge_user(record.login, record.to_document())

    async def setup_users(self) -> None:
        """Enumerate the installation's members and track each of them."""
        account = self.installation
        self._report_times = list(self.config.get().report_times)

        if account.target_type == TargetType.ORGANIZATION:
            logger.debug(f'Loading all organization members for "{account.account_login}"')
            members = await self._list_members()
            if members is None:
                return

            logger.info(f'Initializing {len(members)} users for organization "{account.account_login}"')
            results = await asyncio.gather(
                *(self.add_user(member, write_config=False) for member in members),
                return_exceptions=True,
            )
            for member, result in zip(members, results):
                if isinstance(result, Exception):
                    logger.error(
                        f'Could not set up user "{member.get("login")}": {result}', exc_info=result
                    )
        elif account.target_type == TargetType.USER:
            logger.info(f'Initializing account "{account.account_login}" as user')
            await self.add_user(
                {"id": account.account_id, "login": account.account_login, "type": "User"},
                write_config=False,
            )
        else:
            logger.error(f"Unknown installation target type: {account.target_type}")
            return

        self._sync_persisted_users()

    def _sync_persisted_users(self) -> None:
        """Make the persisted user map match the tracked users."""
        persisted = self.config.get().users

        for login in set(persisted) - set(self._users):
            self.config.remove_user(login)
        for record in self._users.values():
            self._persist_user(record)

    # ==================== Triggers ====================

    def _cancel_jobs(self, login: str) -> None:
        for job in self._jobs.pop(login, []):
            try:
                job.remove()
            except JobLookupError:
                # Already gone (scheduler shut down or job removed elsewhere)
                pass
        self._update_gauge()

    def _job_id(self, login: str, time_of_day: str) -> str:
        return f"report:{self.installation.key}:{login}:{time_of_day}"

    def _schedule_user(self, record: UserRecord) -> None:
        """Replace the user's triggers with one per configured report time."""
        self._cancel_jobs(record.login)

        if not record.enabled:
            logger.debug(f'User "{record.login}" is disabled, no reports scheduled')
            return

        local_offset = self._local_offset()
        self._built_offset = local_offset
        jobs = []

        for time_of_day in self.config.get().report_times:
            hour, minute = to_local_time_of_day(time_of_day, record.timezone, local_offset)
            job = self.scheduler.add_job(
                self.on_trigger,
                trigger=CronTrigger(hour=hour, minute=minute, timezone=fixed_offset(local_offset)),
                args=[record.login],
                id=self._job_id(record.login, time_of_day),
                name=f"Report for {record.login} at {time_of_day} ({self.installation.key})",
                misfire_grace_time=self.misfire_grace_seconds,
                coalesce=True,
                max_instances=1,
                replace_existing=True,
            )
            jobs.append(job)

        self._jobs[record.login] = jobs
        self._update_gauge()
        logger.debug(
            f'Scheduled {len(jobs)} report(s) for "{record.login}" '
            f"(user offset {record.timezone}, local offset {local_offset})"
        )

    def rebuild_triggers(self) -> None:
        """Cancel and recreate every tracked user's triggers."""
        self._report_times = list(self.config.get().report_times)
        for record in list(self._users.values()):
            self._schedule_user(record)

    def check_local_offset(self) -> bool:
        """Rebuild all triggers if the process-local offset changed (e.g. DST)."""
        current = self._local_offset()
        if self._built_offset is None or current == self._built_offset:
            return False

        logger.info(
            f"Local UTC offset changed from {self._built_offset} to {current}, "
            f'rebuilding triggers for "{self.installation.key}"'
        )
        self.rebuild_triggers()
        return True

    async def reload(self) -> bool:
        """Rebuild from the persisted user map if it diverged from the tracked users."""
        config = self.config.get()
        live = {login: record.to_document() for login, record in self._users.items()}
        stored = {login: record.to_document() for login, record in config.users.items()}

        if live == stored and list(config.report_times) == self._report_times:
            logger.debug(f'Users of "{self.installation.key}" unchanged, keeping schedule')
            return False

        logger.info(f'Config of "{self.installation.key}" changed, rebuilding schedule')
        self.teardown()
        await self.setup_users()
        return True

    def teardown(self) -> None:
        """Cancel every trigger of every tracked user."""
        self._abandoned.update(self._adding)
        for login in list(self._jobs):
            self._cancel_jobs(login)
        self._users.clear()
