"""
Centralized error handling decorators for external collaborator calls.

Transient failures (HTTP errors, timeouts, ExternalServiceError) are logged
and converted into a default return value so a single failing query never
crashes the scheduler. Anything else is a bug and propagates.
"""

import asyncio
import functools
import inspect
import logging
from typing import Any, Callable, Optional

import httpx

from review_reminder.core.exceptions import ExternalServiceError


logger = logging.getLogger(__name__)


class ExternalErrorHandler:
    """Classification of external collaborator failures."""

    TRANSIENT_EXCEPTIONS = (
        httpx.HTTPError,
        asyncio.TimeoutError,
        ExternalServiceError,
        ConnectionError,
    )

    @staticmethod
    def describe(exc: Exception, operation: str, context: Optional[dict] = None) -> str:
        """Build a log message for a transient failure."""
        context_str = f" | Context: {context}" if context else ""

        if isinstance(exc, httpx.HTTPStatusError):
            status = exc.response.status_code
            if status in (403, 429):
                return f"External API throttled {operation} (HTTP {status}){context_str}"
            return f"External API rejected {operation} (HTTP {status}){context_str}"

        if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
            return f"Timeout during {operation}{context_str}"

        return f"External failure during {operation}: {type(exc).__name__}: {exc}{context_str}"


def safe_external_call(
    operation_name: Optional[str] = None,
    default_return: Any = None,
    log_level: str = "warning",
) -> Callable:
    """
    Decorator to wrap async external calls with transient-failure handling.

    Args:
        operation_name: Name of the operation for logging (defaults to function name)
        default_return: Value returned when a transient failure occurs
        log_level: Logging level for failures ('error', 'warning', 'info')

    Returns:
        Decorated coroutine function
    """

    def decorator(func: Callable) -> Callable:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"safe_external_call requires a coroutine function, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            operation = operation_name or getattr(func, "__name__", "unknown")
            try:
                return await func(*args, **kwargs)
            except ExternalErrorHandler.TRANSIENT_EXCEPTIONS as exc:
                message = ExternalErrorHandler.describe(exc, operation)
                getattr(logger, log_level, logger.warning)(message)
                return default_return

        return wrapper

    return decorator
