"""Retry decorator for async RPC reads."""

import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def async_retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,),
):
    """
    Retry a coroutine function on ``exceptions``, sleeping ``delay * backoff**n``
    between attempts. The last error is re-raised.

    Example:
        @async_retry(max_attempts=3, delay=0.5, exceptions=(NetworkError,))
        async def get_parsed_transaction(self, signature): ...
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            wait = delay
            attempt = 1
            while True:
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        logger.error("%s gave up after %d attempts: %s", func.__name__, attempt, e,
                                     extra={"extra_data": {"function": func.__name__, "attempts": attempt}})
                        raise
                    logger.warning("%s attempt %d/%d failed (%s), retrying in %.2fs",
                                   func.__name__, attempt, max_attempts, e, wait)
                    await asyncio.sleep(wait)
                    wait *= backoff
                    attempt += 1

        return wrapper
    return decorator
