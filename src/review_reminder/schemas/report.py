"""Search result and report schemas."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from review_reminder.schemas.user import SortOrder, UserRecord


class SectionKey(str, Enum):
    """Named lists a report may contain, in presentation order."""

    TO_REVIEW = "to_review"
    TO_COMPLETE = "to_complete"
    NEW_ISSUES = "new_issues"


# Sections that make a report worth sending; the others only accompany them
ACTIONABLE_SECTIONS = (SectionKey.TO_REVIEW, SectionKey.TO_COMPLETE)

SECTION_TITLES = {
    SectionKey.TO_REVIEW: "Pull requests to review",
    SectionKey.TO_COMPLETE: "Pull requests to complete",
    SectionKey.NEW_ISSUES: "New issues in watched repositories",
}


class SearchItem(BaseModel):
    """One issue or pull request returned by the search source."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    number: int
    title: str
    html_url: str
    repository_url: str
    created_at: datetime
    updated_at: datetime
    author: Optional[str] = None
    labels: List[str] = Field(default_factory=list)

    @property
    def repository(self) -> str:
        """Full repository name ("owner/repo") taken from the API url."""
        return "/".join(self.repository_url.rstrip("/").split("/")[-2:])

    @property
    def reference(self) -> str:
        return f"{self.repository}#{self.number}"

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "SearchItem":
        """Build from a GitHub search result item."""
        return cls(
            id=data["id"],
            number=data["number"],
            title=data["title"],
            html_url=data["html_url"],
            repository_url=data["repository_url"],
            created_at=data["created_at"],
            updated_at=data["updated_at"],
            author=(data.get("user") or {}).get("login"),
            labels=[label["name"] for label in data.get("labels") or []],
        )


class Report(BaseModel):
    """
    Output of one generation cycle for one user.

    Holds named lists of search items, each sorted by creation time. A report
    without pull requests to review or complete is empty and must not be
    delivered, whatever else it carries. A failed report (a query could not
    be answered) is never delivered either.
    """

    user: UserRecord
    sections: Dict[SectionKey, List[SearchItem]] = Field(default_factory=dict)
    failed: bool = False
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def add(self, key: SectionKey, items: List[SearchItem]) -> "Report":
        self.sections[key] = [*self.sections.get(key, []), *items]
        return self

    def sort(self, order: SortOrder) -> "Report":
        reverse = order == SortOrder.DESC
        for key, items in self.sections.items():
            self.sections[key] = sorted(items, key=lambda item: item.created_at, reverse=reverse)
        return self

    def get(self, key: SectionKey) -> List[SearchItem]:
        return self.sections.get(key, [])

    @property
    def to_review(self) -> List[SearchItem]:
        return self.get(SectionKey.TO_REVIEW)

    @property
    def to_complete(self) -> List[SearchItem]:
        return self.get(SectionKey.TO_COMPLETE)

    @property
    def new_issues(self) -> List[SearchItem]:
        return self.get(SectionKey.NEW_ISSUES)

    def has_data(self) -> bool:
        return any(self.get(key) for key in ACTIONABLE_SECTIONS)

    def is_empty(self) -> bool:
        return not self.has_data()

    def is_deliverable(self) -> bool:
        return not self.failed and self.has_data()

    def count(self) -> int:
        """Number of pull requests needing the user's attention."""
        return len(self.to_review) + len(self.to_complete)

    def non_empty_sections(self):
        """(key, items) pairs in presentation order, skipping empty lists."""
        for key in SectionKey:
            items = self.sections.get(key)
            if items:
                yield key, items

    def __str__(self) -> str:
        counts = ", ".join(f"{key.value}={len(items)}" for key, items in self.sections.items())
        return f"Report({self.user.login}: {counts or 'empty'})"
