"""
Async utilities for running blocking operations in an executor.

Usage:
    from review_reminder.core.async_utils import run_blocking

    # Instead of: blocking_function()
    result = await run_blocking(blocking_function, arg1, arg2)
"""

import asyncio
from functools import partial
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run a blocking function in a separate thread to avoid blocking the event loop.

    Args:
        func: The synchronous function to run
        *args: Positional arguments to pass to the function
        **kwargs: Keyword arguments to pass to the function

    Returns:
        The result of the function call
    """
    loop = asyncio.get_running_loop()
    # None selects the loop's default ThreadPoolExecutor
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))
