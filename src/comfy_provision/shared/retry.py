"""Retry utilities with exponential backoff."""

import time
import random
import logging
from typing import Callable, TypeVar, Optional, Type, Tuple
from functools import wraps

T = TypeVar('T')


def compute_backoff(
    attempt: int,
    backoff_seconds: float,
    exponential: bool = True,
    jitter: bool = True,
    max_backoff: float = 60.0
) -> float:
    """Wait time before retrying after failed ``attempt`` (1-based)."""
    if exponential:
        wait_time = backoff_seconds * (2 ** (attempt - 1))
    else:
        wait_time = backoff_seconds * attempt

    wait_time = min(wait_time, max_backoff)

    if jitter:
        wait_time = wait_time * (0.5 + random.random())

    return wait_time


def retry_with_backoff(
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
    exponential: bool = True,
    jitter: bool = True,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    logger: Optional[logging.Logger] = None,
    sleep: Optional[Callable[[float], None]] = None
):
    """
    Decorator for retrying a function with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        backoff_seconds: Initial backoff time in seconds
        exponential: Use exponential backoff (2^attempt * backoff_seconds)
        jitter: Add random jitter to backoff time
        exceptions: Tuple of exception types to catch and retry
        logger: Optional logger notified before each retry
        sleep: Sleep function (defaults to time.sleep)

    Returns:
        Decorated function
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        raise

                    wait_time = compute_backoff(attempt, backoff_seconds, exponential, jitter)
                    if logger is not None:
                        logger.warning(
                            f"{func.__name__} failed (attempt {attempt}/{max_attempts}): {e}; "
                            f"retrying in {wait_time:.1f}s"
                        )
                    (sleep or time.sleep)(wait_time)

            raise RuntimeError("Retry logic failed unexpectedly")

        return wrapper
    return decorator
