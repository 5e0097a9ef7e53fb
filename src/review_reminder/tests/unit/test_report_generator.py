"""
Unit tests for report generation.

Tests:
- Empty and failed reports
- Staleness threshold and ignore rules
- Ordering by creation time
- New-issue section restricted to watched repositories, with shared caching
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from review_reminder.core.cache import QueryCache
from review_reminder.schemas.report import SectionKey
from review_reminder.schemas.user import SortOrder, UserRecord
from review_reminder.services.report_generator import (
    ReportGenerator,
    approved_authored_query,
    new_issues_query,
    review_requested_query,
)

NOW = datetime.now(timezone.utc)


def make_user(login="alice", **overrides) -> UserRecord:
    return UserRecord(login=login, id=1, name=login.title(), timezone=0, **overrides)


@pytest.fixture
def generator(org_installation, config_store, github):
    return ReportGenerator(
        org_installation,
        config_store,
        github,
        QueryCache(ttl=60),
        now=lambda: NOW,
    )


class TestReportAssembly:
    @pytest.mark.asyncio
    async def test_no_results_is_empty(self, generator, github):
        report = await generator.get_report_for_user(make_user())

        assert report.is_empty()
        assert not report.failed
        assert not report.is_deliverable()
        assert github.queries == [review_requested_query("alice"), approved_authored_query("alice")]

    @pytest.mark.asyncio
    async def test_both_sections_filled(self, generator, github, item):
        github.results[review_requested_query("alice")] = [item(1), item(2)]
        github.results[approved_authored_query("alice")] = [item(3)]

        report = await generator.get_report_for_user(make_user())

        assert [i.id for i in report.to_review] == [1, 2]
        assert [i.id for i in report.to_complete] == [3]
        assert report.count() == 3
        assert report.is_deliverable()

    @pytest.mark.asyncio
    async def test_query_failure_marks_report_failed(self, generator, github, item):
        github.results[review_requested_query("alice")] = [item(1)]
        github.failing_queries.add(approved_authored_query("alice"))

        report = await generator.get_report_for_user(make_user())

        assert report.failed
        assert report.is_empty()
        assert not report.is_deliverable()

    @pytest.mark.asyncio
    async def test_malformed_items_are_skipped(self, generator, github, item):
        github.results[review_requested_query("alice")] = [{"id": 9}, item(1)]

        report = await generator.get_report_for_user(make_user())

        assert [i.id for i in report.to_review] == [1]


class TestOrdering:
    @pytest.mark.asyncio
    async def test_ascending_by_creation(self, generator, github, item):
        github.results[review_requested_query("alice")] = [
            item(1, created_days_ago=1),
            item(2, created_days_ago=5),
            item(3, created_days_ago=3),
        ]

        report = await generator.get_report_for_user(make_user())

        assert [i.id for i in report.to_review] == [2, 3, 1]

    @pytest.mark.asyncio
    async def test_descending_by_creation(self, generator, github, item):
        github.results[review_requested_query("alice")] = [
            item(1, created_days_ago=1),
            item(2, created_days_ago=5),
            item(3, created_days_ago=3),
        ]

        report = await generator.get_report_for_user(make_user(order=SortOrder.DESC))

        assert [i.id for i in report.to_review] == [1, 3, 2]


class TestFilters:
    @pytest.mark.asyncio
    async def test_staleness_threshold(self, generator, github, config_store, item):
        config_store.merge({"daysUntilStale": 2})
        github.results[review_requested_query("alice")] = [
            item(1, updated_days_ago=1),
            item(2, updated_days_ago=3),
        ]

        report = await generator.get_report_for_user(make_user())

        assert [i.id for i in report.to_review] == [2]

    @pytest.mark.asyncio
    async def test_zero_threshold_keeps_everything(self, generator, github, item):
        github.results[review_requested_query("alice")] = [item(1, updated_days_ago=0)]

        report = await generator.get_report_for_user(make_user())

        assert len(report.to_review) == 1

    @pytest.mark.asyncio
    async def test_ignore_rules(self, generator, github, config_store, item):
        config_store.merge({"ignore": {"titlePattern": "^wip", "labels": ["Do Not Review"]}})
        github.results[review_requested_query("alice")] = [
            item(1, title="WIP: refactor"),
            item(2, labels=["do not review"]),
            item(3, title="Add endpoint", labels=["backend"]),
        ]

        report = await generator.get_report_for_user(make_user())

        assert [i.id for i in report.to_review] == [3]

    @pytest.mark.asyncio
    async def test_all_filtered_is_empty(self, generator, github, config_store, item):
        config_store.merge({"daysUntilStale": 30})
        github.results[approved_authored_query("alice")] = [item(1, updated_days_ago=1)]

        report = await generator.get_report_for_user(make_user())

        assert report.is_empty()


class TestNewIssues:
    @pytest.fixture
    def issue_query(self):
        return new_issues_query("Acme", NOW - timedelta(days=1))

    @pytest.mark.asyncio
    async def test_disabled_by_default(self, generator, github):
        report = await generator.get_report_for_user(make_user())

        assert SectionKey.NEW_ISSUES not in report.sections
        assert github.watcher_calls == []

    @pytest.mark.asyncio
    async def test_restricted_to_watched_repositories(
        self, generator, github, config_store, item, issue_query
    ):
        config_store.merge({"newIssues": {"enabled": True, "days": 1}})
        github.results[issue_query] = [
            item(10, repo="acme/api", created_days_ago=0.5),
            item(11, repo="acme/web", created_days_ago=0.5),
        ]
        github.watchers = {"acme/api": ["alice"], "acme/web": ["bob"]}

        report = await generator.get_report_for_user(make_user())

        assert [i.id for i in report.new_issues] == [10]
        # New issues alone do not make a report worth sending
        assert report.is_empty()
        assert not report.is_deliverable()

    @pytest.mark.asyncio
    async def test_shared_queries_are_cached(self, generator, github, config_store, item, issue_query):
        config_store.merge({"newIssues": {"enabled": True, "days": 1}})
        github.results[issue_query] = [item(10, repo="acme/api", created_days_ago=0.5)]
        github.watchers = {"acme/api": ["alice", "bob"]}

        reports = await asyncio.gather(
            generator.get_report_for_user(make_user("alice")),
            generator.get_report_for_user(make_user("bob")),
        )

        assert all(len(report.new_issues) == 1 for report in reports)
        assert github.queries.count(issue_query) == 1
        assert github.watcher_calls == ["acme/api"]
