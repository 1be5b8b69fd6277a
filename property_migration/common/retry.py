"""Retry logic for network calls with exponential backoff.

Both collaborators of the migration (the document API and PostgreSQL) are
reached over the network. Transient failures there are retried a bounded
number of times; once retries are exhausted the last exception propagates and
the caller marks the affected unit (one page, one record or one batch) as
errored.
"""

import logging
import time
from functools import wraps
from typing import Any, Callable, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (ConnectionError, TimeoutError),
) -> Callable[[F], F]:
    """Decorator to retry a function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Delay in seconds before the first retry (default: 1.0)
        backoff_factor: Multiplier applied after each retry (default: 2.0)
                       delay = initial_delay * (backoff_factor ** attempt)
        exceptions: Exception types that trigger a retry. Anything else
                    propagates immediately.

    Returns:
        Decorated function that will retry on failure

    Example:
        @retry_with_backoff(max_retries=3, initial_delay=0.5,
                            exceptions=(TransientDatabaseError,))
        def upsert(rows):
            ...

    Backoff calculation (initial_delay=1.0, backoff_factor=2.0):
        Attempt 1: No delay (first try)
        Attempt 2: Wait 1 second  (1.0 * 2^0)
        Attempt 3: Wait 2 seconds (1.0 * 2^1)
        Attempt 4: Wait 4 seconds (1.0 * 2^2)
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    if attempt < max_retries:
                        delay = initial_delay * (backoff_factor**attempt)

                        logger.warning(
                            "Call %s failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
                            func.__name__,
                            attempt + 1,
                            max_retries + 1,
                            e,
                            delay,
                            extra={
                                "function": func.__name__,
                                "retry_attempt": attempt + 1,
                                "max_retries": max_retries + 1,
                                "delay_seconds": delay,
                                "exception_type": type(e).__name__,
                            },
                        )

                        time.sleep(delay)
                    else:
                        logger.error(
                            "Call %s failed after %d attempts",
                            func.__name__,
                            max_retries + 1,
                            extra={
                                "function": func.__name__,
                                "total_attempts": max_retries + 1,
                                "exception_type": type(e).__name__,
                            },
                        )

            raise last_exception  # type: ignore

        return wrapper  # type: ignore

    return decorator
