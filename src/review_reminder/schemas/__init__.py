"""Pydantic schemas for installations, users, settings and reports."""

from review_reminder.schemas.document import DocumentLocation, StoredDocument
from review_reminder.schemas.installation import Installation, Member, TargetType
from review_reminder.schemas.report import Report, SearchItem, SectionKey
from review_reminder.schemas.report_config import (
    EmailPreferences,
    IgnoreRules,
    NewIssuesSettings,
    ReportConfig,
    default_document,
)
from review_reminder.schemas.user import SlackBinding, SortOrder, UserRecord

__all__ = [
    "DocumentLocation",
    "EmailPreferences",
    "IgnoreRules",
    "Installation",
    "Member",
    "NewIssuesSettings",
    "Report",
    "ReportConfig",
    "SearchItem",
    "SectionKey",
    "SlackBinding",
    "SortOrder",
    "StoredDocument",
    "TargetType",
    "UserRecord",
    "default_document",
]
