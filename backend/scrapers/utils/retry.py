"""
Retry helper shared by navigation, geocoding and condition polling.

A condition poll is expressed by raising while the condition is not yet
true, so the same helper covers both transient failures and "wait until".
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar('T')


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: bool = True,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """
    Run an async operation, retrying on failure.

    Args:
        operation: Zero-argument coroutine function to invoke
        max_attempts: Total number of attempts
        delay: Seconds to wait between attempts
        backoff: If True, wait delay * attempt instead of a flat delay
        on_retry: Called with (attempt, error) after every failed attempt

    Returns:
        The operation's result

    Raises:
        The last error once all attempts are exhausted
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            last_error = e

            if on_retry:
                on_retry(attempt, e)

            if attempt < max_attempts:
                wait_time = delay * attempt if backoff else delay
                await asyncio.sleep(wait_time)

    raise last_error
