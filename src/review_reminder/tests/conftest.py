"""
Pytest configuration and fixtures for testing.

Provides:
- In-memory document store with revision tokens and external writes
- Fake GitHub collaborators (members, profiles, activity, search, watchers)
- A running AsyncIOScheduler
- Installation, settings and config store fixtures

Usage:
    pytest src/review_reminder/tests -v
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from review_reminder.core.config import (
    CacheSettings,
    ConfigStoreSettings,
    EmailSettings,
    RateLimitSettings,
    RuntimeSettings,
    Settings,
    SlackSettings,
)
from review_reminder.core.exceptions import (
    DocumentNotFoundError,
    ExternalServiceError,
    RevisionConflictError,
)
from review_reminder.schemas.document import DocumentLocation, StoredDocument
from review_reminder.schemas.installation import Installation, TargetType
from review_reminder.services.config_store import ConfigStore

SETTINGS_REPO = "probot-settings"
SETTINGS_PATH = ".github/report.yml"
WRITE_DELAY = 0.05


# ============================================================================
# Fakes
# ============================================================================


class FakeDocumentStore:
    """Document store keeping content and a revision counter per location."""

    def __init__(self):
        self.documents: Dict[str, StoredDocument] = {}
        self.writes: List[str] = []
        self.conflicts = 0
        self.fail_reads = False
        self._counter = 0

    def _next_revision(self) -> str:
        self._counter += 1
        return f"rev-{self._counter}"

    def put(self, location: DocumentLocation, content: str) -> str:
        """Simulate a write by someone else (a push to the settings repo)."""
        revision = self._next_revision()
        self.documents[str(location)] = StoredDocument(content=content, revision=revision)
        return revision

    async def read_document(self, location: DocumentLocation) -> StoredDocument:
        if self.fail_reads:
            raise ExternalServiceError("store unavailable")
        stored = self.documents.get(str(location))
        if stored is None:
            raise DocumentNotFoundError(str(location))
        return stored

    async def write_document(
        self,
        location: DocumentLocation,
        content: str,
        expected_revision: Optional[str],
        message: str = "",
    ) -> str:
        current = self.documents.get(str(location))
        current_revision = current.revision if current else None
        if expected_revision != current_revision:
            self.conflicts += 1
            raise RevisionConflictError(str(location), expected_revision)

        self.writes.append(content)
        return self.put(location, content)


class FakeGitHub(FakeDocumentStore):
    """Membership, activity and search sources backed by dictionaries."""

    def __init__(self):
        super().__init__()
        self.members: Dict[str, List[Dict[str, Any]]] = {}
        self.profiles: Dict[int, Dict[str, Any]] = {}
        self.activity: Dict[str, datetime] = {}
        self.results: Dict[str, List[Dict[str, Any]]] = {}
        self.watchers: Dict[str, List[str]] = {}
        self.failing_queries: set = set()
        self.queries: List[str] = []
        self.watcher_calls: List[str] = []
        self.activity_calls: List[str] = []

    async def list_members(self, org: str) -> List[Dict[str, Any]]:
        return list(self.members.get(org, []))

    async def get_profile(self, user_id: int) -> Dict[str, Any]:
        return dict(self.profiles.get(user_id, {}))

    async def last_activity_timestamp(self, login: str) -> Optional[datetime]:
        self.activity_calls.append(login)
        return self.activity.get(login)

    async def search_issues(self, query: str) -> List[Dict[str, Any]]:
        self.queries.append(query)
        if query in self.failing_queries:
            raise ExternalServiceError(f"search failed: {query}")
        return list(self.results.get(query, []))

    async def list_watchers(self, repository: str) -> List[str]:
        self.watcher_calls.append(repository)
        return list(self.watchers.get(repository, []))


def make_member(member_id: int, login: str, member_type: str = "User") -> Dict[str, Any]:
    return {"id": member_id, "login": login, "type": member_type}


def make_item(
    item_id: int,
    title: str = "Fix things",
    repo: str = "acme/api",
    created_days_ago: float = 3,
    updated_days_ago: float = 2,
    labels: Optional[List[str]] = None,
    author: str = "someone",
) -> Dict[str, Any]:
    """A search result item in GitHub API shape."""
    now = datetime.now(timezone.utc)
    return {
        "id": item_id,
        "number": item_id,
        "title": title,
        "html_url": f"https://github.com/{repo}/pull/{item_id}",
        "repository_url": f"https://api.github.com/repos/{repo}",
        "created_at": (now - timedelta(days=created_days_ago)).isoformat(),
        "updated_at": (now - timedelta(days=updated_days_ago)).isoformat(),
        "user": {"login": author},
        "labels": [{"name": label} for label in labels or []],
    }


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def org_installation() -> Installation:
    return Installation(id=1, account_id=100, account_login="Acme", target_type=TargetType.ORGANIZATION)


@pytest.fixture
def user_installation() -> Installation:
    return Installation(id=2, account_id=200, account_login="Solo", target_type=TargetType.USER)


@pytest.fixture
def document_store() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def settings() -> Settings:
    """Settings with short windows and every outbound transport disabled."""
    return Settings(
        config_store=ConfigStoreSettings(write_delay_seconds=WRITE_DELAY),
        rate_limit=RateLimitSettings(per_minute=60000, query_timeout_seconds=5),
        cache=CacheSettings(ttl_seconds=60),
        email=EmailSettings(enabled=False),
        slack=SlackSettings(enabled=False),
        runtime=RuntimeSettings(dry_run=False),
    )


@pytest_asyncio.fixture
async def scheduler():
    """A running AsyncIOScheduler bound to the test's event loop."""
    instance = AsyncIOScheduler()
    instance.start()
    yield instance
    instance.shutdown(wait=False)


@pytest.fixture
def make_config_store(org_installation, document_store):
    """Factory for config stores on the fake document store."""

    def factory(store=None, installation=None, dry_run=False, write_delay=WRITE_DELAY) -> ConfigStore:
        return ConfigStore(
            installation or org_installation,
            store if store is not None else document_store,
            repo=SETTINGS_REPO,
            path=SETTINGS_PATH,
            write_delay=write_delay,
            dry_run=dry_run,
        )

    return factory


@pytest_asyncio.fixture
async def config_store(make_config_store) -> ConfigStore:
    """A loaded config store (defaults, no document yet)."""
    store = make_config_store()
    await store.load()
    yield store
    store.cancel_pending_write()


@pytest.fixture
def item():
    """Factory for search result items (see make_item)."""
    return make_item


@pytest.fixture
def member():
    """Factory for raw members (see make_member)."""
    return make_member
