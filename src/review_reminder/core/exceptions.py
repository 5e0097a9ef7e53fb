"""Exception hierarchy for the review reminder engine."""


class ReviewReminderError(Exception):
    """Base exception for review reminder errors."""

    pass


class ConfigNotLoadedError(ReviewReminderError, RuntimeError):
    """Raised when the config store is used before load() completed."""

    pass


class ExternalServiceError(ReviewReminderError):
    """Raised when an external collaborator fails in a transient way."""

    pass


class DocumentNotFoundError(ExternalServiceError):
    """Raised when the settings document does not exist in the store."""

    pass


class RevisionConflictError(ReviewReminderError):
    """Raised when the store rejects a write made with a stale revision token."""

    def __init__(self, location: str, revision: str | None):
        super().__init__(f"Revision {revision!r} is stale for {location}")
        self.location = location
        self.revision = revision


class QueryFailedError(ExternalServiceError):
    """Raised when a search needed for a report could not be answered this cycle."""

    pass
