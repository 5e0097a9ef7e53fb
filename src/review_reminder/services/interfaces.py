"""
Contracts of the external collaborators the engine consumes.

The GitHub client implements every source below; tests substitute in-memory
fakes. Delivery channels implement DeliveryChannel.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from review_reminder.schemas.document import DocumentLocation, StoredDocument
from review_reminder.schemas.report import Report
from review_reminder.schemas.user import UserRecord


class MembershipSource(Protocol):
    async def list_members(self, org: str) -> List[Dict[str, Any]]:
        """Raw member objects of an organization."""
        ...

    async def get_profile(self, user_id: int) -> Dict[str, Any]:
        """Public profile of a user (email, name)."""
        ...


class ActivitySource(Protocol):
    async def last_activity_timestamp(self, login: str) -> Optional[datetime]:
        """Timestamp, with its original UTC offset, of the user's latest commit."""
        ...


class SearchSource(Protocol):
    async def search_issues(self, query: str) -> List[Dict[str, Any]]:
        """Issues and pull requests matching a search query."""
        ...

    async def list_watchers(self, repository: str) -> List[str]:
        """Logins watching a repository ("owner/repo")."""
        ...


class DocumentStore(Protocol):
    async def read_document(self, location: DocumentLocation) -> StoredDocument:
        """Raises DocumentNotFoundError when absent."""
        ...

    async def write_document(
        self,
        location: DocumentLocation,
        content: str,
        expected_revision: Optional[str],
        message: str = "",
    ) -> str:
        """Write and return the new revision; raises RevisionConflictError on a stale token."""
        ...


@runtime_checkable
class DeliveryChannel(Protocol):
    name: str

    async def deliver(self, user: UserRecord, report: Report) -> bool:
        """Deliver a report; return False when the channel declined or failed."""
        ...
