"""
Report Generator - builds one user's report from external search results.

The search source spaces its upstream requests through the process-wide
RateLimiter, one slot per request (and so per result page). Queries that are
not user-specific (the installation's new issues, repository watchers) are
additionally cached in the engine's QueryCache, so concurrent users share a
single upstream call per TTL window.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List

from pydantic import ValidationError

from review_reminder.core.cache import QueryCache
from review_reminder.core.decorators import ExternalErrorHandler
from review_reminder.core.exceptions import QueryFailedError
from review_reminder.core.metrics import track_search
from review_reminder.schemas.installation import Installation
from review_reminder.schemas.report import Report, SearchItem, SectionKey
from review_reminder.schemas.report_config import IgnoreRules, ReportConfig
from review_reminder.schemas.user import UserRecord
from review_reminder.services.config_store import ConfigStore
from review_reminder.services.interfaces import SearchSource

logger = logging.getLogger(__name__)


def review_requested_query(login: str) -> str:
    return f"is:pr is:open review-requested:{login.lower()}"


def approved_authored_query(login: str) -> str:
    return f"is:pr is:open author:{login.lower()} review:approved"


def new_issues_query(owner: str, since: datetime) -> str:
    return f"is:issue is:open no:assignee user:{owner} created:>={since.date().isoformat()}"


class ReportGenerator:
    """Produces Reports for the users of one installation."""

    def __init__(
        self,
        installation: Installation,
        config: ConfigStore,
        search: SearchSource,
        cache: QueryCache,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.installation = installation
        self.config = config
        self.search = search
        self.cache = cache
        self._now = now

    # ==================== Queries ====================

    async def _search(self, query: str) -> List[SearchItem]:
        """Run one search and parse its items.

        Raises:
            QueryFailedError: On any transient failure or timeout
        """
        try:
            raw = await self.search.search_issues(query)
        except ExternalErrorHandler.TRANSIENT_EXCEPTIONS as e:
            track_search("failed")
            logger.warning(ExternalErrorHandler.describe(e, "search", {"query": query}))
            raise QueryFailedError(query) from e

        track_search("ok")
        return list(self._parse_items(raw))

    @staticmethod
    def _parse_items(raw: Iterable[Dict[str, Any]]) -> Iterable[SearchItem]:
        for data in raw:
            try:
                yield SearchItem.from_api(data)
            except (KeyError, ValidationError) as e:
                logger.warning(f"Skipping malformed search item {data.get('html_url')}: {e}")

    async def _cached_search(self, query: str) -> List[SearchItem]:
        return await self.cache.get_or_populate(f"search:{query}", lambda: self._search(query))

    async def _watchers(self, repository: str) -> List[str]:
        async def fetch() -> List[str]:
            try:
                return await self.search.list_watchers(repository)
            except ExternalErrorHandler.TRANSIENT_EXCEPTIONS as e:
                track_search("failed")
                logger.warning(ExternalErrorHandler.describe(e, "list watchers", {"repo": repository}))
                raise QueryFailedError(repository) from e

        return await self.cache.get_or_populate(f"watchers:{repository.lower()}", fetch)

    # ==================== Filters ====================

    def is_stale(self, item: SearchItem, days_until_stale: int) -> bool:
        """Items count once unmodified for at least N days; every item counts when N is 0."""
        if days_until_stale <= 0:
            return True
        return self._now() - timedelta(days=days_until_stale) >= item.updated_at

    @staticmethod
    def is_ignored(item: SearchItem, rules: IgnoreRules) -> bool:
        if rules.title_pattern and re.search(rules.title_pattern, item.title, re.IGNORECASE):
            return True
        ignored_labels = set(rules.labels)
        return any(label.lower() in ignored_labels for label in item.labels)

    def _filter(self, items: List[SearchItem], config: ReportConfig) -> List[SearchItem]:
        return [
            item
            for item in items
            if self.is_stale(item, config.days_until_stale) and not self.is_ignored(item, config.ignore)
        ]

    # ==================== Sections ====================

    async def _new_issues_for(self, user: UserRecord, config: ReportConfig) -> List[SearchItem]:
        since = self._now() - timedelta(days=config.new_issues.days)
        issues = await self._cached_search(new_issues_query(self.installation.account_login, since))

        watched = []
        for issue in issues:
            if user.login in await self._watchers(issue.repository):
                watched.append(issue)
        return watched

    async def get_report_for_user(self, user: UserRecord) -> Report:
        """
        Build the report for one user.

        A failed query yields a report marked failed instead of a partial one.
        """
        config = self.config.get()
        report = Report(user=user)

        try:
            to_review = await self._search(review_requested_query(user.login))
            to_complete = await self._search(approved_authored_query(user.login))
            report.add(SectionKey.TO_REVIEW, self._filter(to_review, config))
            report.add(SectionKey.TO_COMPLETE, self._filter(to_complete, config))

            if config.new_issues.enabled:
                new_issues = await self._new_issues_for(user, config)
                # Fresh by construction, so only the ignore rules apply
                report.add(
                    SectionKey.NEW_ISSUES,
                    [item for item in new_issues if not self.is_ignored(item, config.ignore)],
                )
        except QueryFailedError as e:
            logger.warning(f'Report for "{user.login}" failed, nothing will be sent: query "{e}" failed')
            return Report(user=user, failed=True)

        report.sort(user.order)
        logger.debug(f"Generated {report}")
        return report

