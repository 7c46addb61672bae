"""
Async retry with exponential backoff for exchange and storage reads.

Only errors classified as transient are retried. Retries exhausted -> the
last error propagates and the caller picks its local fallback.
"""
import asyncio
import functools
import random
from typing import Callable, Optional, Tuple, Type

from hedgebot.exceptions import OperationalError
from hedgebot.monitoring.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TRANSIENT_ERRORS: Tuple[Type[Exception], ...] = (OperationalError,)


def backoff_delay(attempt: int, base_delay: float, max_backoff: float, jitter: float = 0.0) -> float:
    """Delay before retry ``attempt`` (0-based): base * 2^attempt, capped, plus jitter."""
    delay = min(base_delay * (2 ** attempt), max_backoff)
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


def retry_on_transient_errors(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_backoff: float = 10.0,
    jitter: float = 0.5,
    transient_errors: Optional[Tuple[Type[Exception], ...]] = None,
):
    """
    Decorator retrying an async call on transient errors.

    Args:
        max_retries: Retries after the first attempt
        base_delay: First backoff in seconds
        max_backoff: Backoff cap in seconds (before jitter)
        jitter: Upper bound of the random delay added to each backoff
        transient_errors: Exception types worth retrying.
                          Defaults to ``OperationalError``.
    """
    retryable = transient_errors or DEFAULT_TRANSIENT_ERRORS

    def decorator(func: Callable):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retryable as e:
                    if attempt >= max_retries:
                        logger.warning(
                            "Retries exhausted",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                            error_type=type(e).__name__,
                        )
                        raise
                    delay = backoff_delay(attempt, base_delay, max_backoff, jitter)
                    attempt += 1
                    logger.warning(
                        "Transient error, retrying",
                        operation=func.__name__,
                        retry=f"{attempt}/{max_retries}",
                        wait=f"{delay:.2f}s",
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
