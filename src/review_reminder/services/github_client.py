"""
GitHub REST client.

Implements the membership, activity, search and document store contracts
the engine consumes. One client (one connection pool) serves every
installation in the process.

Key principles:
- Every request carries the configured timeout
- HTTP failures surface as httpx errors; callers decide how to degrade
- Document writes map stale revision tokens to RevisionConflictError
- Search API requests take one rate limiter slot each, page by page
"""

import base64
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from review_reminder.core.config import GitHubSettings
from review_reminder.core.exceptions import DocumentNotFoundError, RevisionConflictError
from review_reminder.core.rate_limiter import RateLimiter
from review_reminder.schemas.document import DocumentLocation, StoredDocument

logger = logging.getLogger(__name__)


class GitHubClient:
    """Async GitHub API client with connection pooling."""

    def __init__(
        self,
        settings: GitHubSettings,
        client: Optional[httpx.AsyncClient] = None,
        limiter: Optional[RateLimiter] = None,
    ):
        self.settings = settings
        self.limiter = limiter
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
            if self.settings.token:
                headers["Authorization"] = f"Bearer {self.settings.token}"

            self._client = httpx.AsyncClient(
                base_url=self.settings.api_url,
                timeout=httpx.Timeout(self.settings.timeout_seconds),
                headers=headers,
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._client

    async def close(self) -> None:
        """Close all connections (call during shutdown)."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        response = await self._get_client().get(url, params=params)
        response.raise_for_status()
        return response

    async def _get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        limited: bool = False,
    ) -> httpx.Response:
        if limited and self.limiter is not None:
            return await self.limiter.run(self._request, url, params)
        return await self._request(url, params)

    async def _paginate(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        items_key: Optional[str] = None,
        limited: bool = False,
    ) -> List[Any]:
        """Follow `Link: rel="next"` headers up to max_pages pages.

        With limited set, every page is a separate rate limited request.
        """
        params = {"per_page": self.settings.per_page, **(params or {})}
        results: List[Any] = []
        next_url: Optional[str] = url

        for _ in range(self.settings.max_pages):
            if next_url is None:
                break
            response = await self._get(next_url, params=params, limited=limited)
            data = response.json()
            results.extend(data[items_key] if items_key else data)

            next_link = response.links.get("next")
            next_url = next_link["url"] if next_link else None
            # The next link already carries the query string
            params = None
        else:
            if next_url is not None:
                logger.warning(f"Stopped paginating {url} after {self.settings.max_pages} pages")

        return results

    # ==================== Installations & Membership ====================

    async def list_installations(self) -> List[Dict[str, Any]]:
        """Installations of the app (requires an app-level token)."""
        return await self._paginate("/app/installations")

    async def list_members(self, org: str) -> List[Dict[str, Any]]:
        return await self._paginate(f"/orgs/{org}/members")

    async def get_profile(self, user_id: int) -> Dict[str, Any]:
        response = await self._get(f"/user/{user_id}")
        return response.json()

    # ==================== Activity ====================

    async def last_activity_timestamp(self, login: str) -> Optional[datetime]:
        """Committer date of the user's most recent commit, keeping its UTC offset."""
        response = await self._get(
            "/search/commits",
            params={
                "q": f"committer:{login.lower()}",
                "sort": "committer-date",
                "order": "desc",
                "per_page": 1,
            },
            limited=True,
        )
        items = response.json().get("items") or []
        if not items:
            return None

        committer = items[0].get("commit", {}).get("committer") or {}
        date = committer.get("date")
        if not date:
            return None
        return datetime.fromisoformat(date.replace("Z", "+00:00"))

    # ==================== Search ====================

    async def search_issues(self, query: str) -> List[Dict[str, Any]]:
        logger.debug(f"Searching issues: {query}")
        return await self._paginate(
            "/search/issues", params={"q": query}, items_key="items", limited=True
        )

    async def list_watchers(self, repository: str) -> List[str]:
        watchers = await self._paginate(f"/repos/{repository}/subscribers", limited=True)
        return [watcher["login"].lower() for watcher in watchers]

    # ==================== Document Store ====================

    @staticmethod
    def _contents_url(location: DocumentLocation) -> str:
        return f"/repos/{location.owner}/{location.repo}/contents/{location.path}"

    async def read_document(self, location: DocumentLocation) -> StoredDocument:
        try:
            response = await self._get(self._contents_url(location))
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise DocumentNotFoundError(f"{location} does not exist") from e
            raise

        data = response.json()
        content = base64.b64decode(data.get("content") or "").decode("utf-8")
        return StoredDocument(content=content, revision=data.get("sha"))

    async def write_document(
        self,
        location: DocumentLocation,
        content: str,
        expected_revision: Optional[str],
        message: str = "meta: Update config",
    ) -> str:
        """Create or update the document and return its new sha.

        Without an expected revision the file is created; GitHub refuses that
        when the file already exists, which is a conflict as well.
        """
        payload: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if expected_revision:
            payload["sha"] = expected_revision

        response = await self._get_client().put(self._contents_url(location), json=payload)
        if response.status_code == 409 or (
            response.status_code == 422 and not expected_revision
        ):
            raise RevisionConflictError(str(location), expected_revision)
        response.raise_for_status()

        return response.json()["content"]["sha"]
