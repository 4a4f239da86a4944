"""Retry helpers with exponential backoff"""

import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, Type, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_async(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
):
    """
    Async retry decorator with exponential backoff

    Only exceptions listed in ``exceptions`` are retried; anything else
    propagates on the first attempt.

    Args:
        max_attempts: Number of attempts (default 3)
        delay: Initial delay in seconds (default 1.0)
        backoff: Backoff multiplier (default 2.0 = exponential)
        exceptions: Tuple of exceptions to retry on (default all)

    Usage:
        @retry_async(max_attempts=3, delay=0.5, backoff=2.0)
        async def refresh():
            ...
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            current_delay = delay

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        logger.error(
                            f"{func.__name__} failed after {max_attempts} attempts: {e}"
                        )
                        raise

                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{max_attempts} failed: {e}. "
                        f"Retrying in {current_delay:.1f}s..."
                    )

                    await asyncio.sleep(current_delay)
                    current_delay *= backoff

            raise RuntimeError(f"{func.__name__}: max_attempts must be at least 1")

        return wrapper
    return decorator


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    **kwargs,
) -> T:
    """Apply retry_async to a single call whose policy is only known at runtime"""
    wrapped = retry_async(
        max_attempts=max_attempts,
        delay=delay,
        backoff=backoff,
        exceptions=exceptions,
    )(func)
    return await wrapped(*args, **kwargs)
