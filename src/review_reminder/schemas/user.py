"""User record schemas, stored under `users` in the settings document."""

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from review_reminder.core.schema_base import DocumentModel
from review_reminder.core.timeutils import MAX_OFFSET_MINUTES, MIN_OFFSET_MINUTES


class SortOrder(str, Enum):
    """Ordering of report lists by creation time."""

    ASC = "asc"
    DESC = "desc"


class SlackBinding(DocumentModel):
    """Chat identity a user linked to their GitHub login."""

    user: str
    channel: Optional[str] = None
    active: bool = False


class UserRecord(DocumentModel):
    """One human member of an installation."""

    login: str = Field(..., description="Lower-cased GitHub login, unique key")
    id: int
    name: str
    email: Optional[str] = None
    timezone: int = Field(..., description="UTC offset in minutes")
    order: SortOrder = SortOrder.ASC
    enabled: bool = True
    slack: Optional[SlackBinding] = None

    @field_validator("login")
    @classmethod
    def normalize_login(cls, v: str) -> str:
        return v.lower()

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: int) -> int:
        if not MIN_OFFSET_MINUTES <= v <= MAX_OFFSET_MINUTES:
            raise ValueError(
                f"timezone must be between {MIN_OFFSET_MINUTES} and {MAX_OFFSET_MINUTES} minutes"
            )
        return v

    @property
    def wants_chat(self) -> bool:
        return self.slack is not None and self.slack.active
