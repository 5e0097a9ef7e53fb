"""
Base schema model for the persisted settings document.

Provides automatic camelCase conversion so the YAML document keeps the key
style existing installations already use (reportTimes, daysUntilStale, ...),
while Python code works with snake_case attributes.
"""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


def to_camel(string: str) -> str:
    """
    Convert snake_case to camelCase.

    Example:
        >>> to_camel("days_until_stale")
        'daysUntilStale'
        >>> to_camel("users")
        'users'
    """
    parts = string.split("_")
    return parts[0] + "".join(word.capitalize() for word in parts[1:])


class DocumentModel(BaseModel):
    """
    Base model for everything stored in the settings document.

    - camelCase aliases on output, both spellings accepted on input
    - unknown keys are ignored by the model (the raw document keeps them)
    - frozen, list fields are stored as tuples
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )

    def to_document(self, **kwargs: Any) -> Dict[str, Any]:
        """Dump to the plain-data shape stored in the document."""
        return self.model_dump(by_alias=True, mode="json", **kwargs)
