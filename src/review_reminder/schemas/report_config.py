"""Per-installation report settings, the typed view of the settings document."""

import re
from typing import Dict, Optional, Tuple

from pydantic import Field, field_validator

from review_reminder.core.schema_base import DocumentModel
from review_reminder.core.timeutils import (
    MAX_OFFSET_MINUTES,
    MIN_OFFSET_MINUTES,
    parse_time_of_day,
)
from review_reminder.schemas.user import UserRecord


class IgnoreRules(DocumentModel):
    """Items matching any rule are left out of every report."""

    title_pattern: Optional[str] = Field(
        None, description="Case-insensitive regex searched in item titles"
    )
    labels: Tuple[str, ...] = Field(default=(), description="Label names to skip")

    @field_validator("title_pattern")
    @classmethod
    def validate_pattern(cls, v: Optional[str]) -> Optional[str]:
        if v:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"Invalid title pattern: {e}")
        return v or None

    @field_validator("labels")
    @classmethod
    def normalize_labels(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(label.lower() for label in v)


class NewIssuesSettings(DocumentModel):
    """Optional report section listing new unassigned issues in watched repos."""

    enabled: bool = False
    days: int = Field(default=1, ge=1)


class EmailPreferences(DocumentModel):
    """Per-installation email presentation."""

    sender: Optional[str] = None
    subject: str = "Attention: {count} Pending Reviews"


class ReportConfig(DocumentModel):
    """Immutable snapshot of an installation's settings document."""

    report_times: Tuple[str, ...] = ("09:00", "12:30")
    days_until_stale: int = Field(default=0, ge=0)
    default_timezone: int = -420
    ignore: IgnoreRules = Field(default_factory=IgnoreRules)
    new_issues: NewIssuesSettings = Field(default_factory=NewIssuesSettings)
    email: EmailPreferences = Field(default_factory=EmailPreferences)
    users: Dict[str, UserRecord] = Field(default_factory=dict)

    @field_validator("report_times")
    @classmethod
    def validate_report_times(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        for value in v:
            parse_time_of_day(value)
        # Duplicate times would schedule duplicate triggers
        return tuple(dict.fromkeys(v))

    @field_validator("default_timezone")
    @classmethod
    def validate_default_timezone(cls, v: int) -> int:
        if not MIN_OFFSET_MINUTES <= v <= MAX_OFFSET_MINUTES:
            raise ValueError("defaultTimezone out of range")
        return v

    @field_validator("users", mode="before")
    @classmethod
    def normalize_user_keys(cls, v):
        if v is None:
            return {}
        if isinstance(v, dict):
            return {str(key).lower(): value for key, value in v.items()}
        return v


def default_document() -> dict:
    """Built-in defaults in document form, used when no document can be read."""
    return ReportConfig().to_document()
