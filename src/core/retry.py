"""
Timeout and bounded-retry helpers for external calls
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from .config import get_performance_config
from .errors import StoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    error_cls: Type[Exception] = StoreError,
    description: str = "operation"
) -> T:
    """Await with a deadline, converting a timeout into ``error_cls``"""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise error_cls(f"{description} timed out after {timeout}s") from e


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    retry_on: Tuple[Type[Exception], ...] = (StoreError,),
    max_attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
    description: str = "operation",
    **kwargs: Any
) -> T:
    """
    Call ``func`` until it succeeds, retrying only on ``retry_on``.

    Backoff doubles from ``base_delay`` between attempts. The last error is
    re-raised once ``max_attempts`` is exhausted.
    """
    perf = get_performance_config()
    attempts = max_attempts or perf.retry_max_attempts
    delay = perf.retry_base_delay_seconds if base_delay is None else base_delay

    for attempt in range(1, attempts + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            if attempt >= attempts:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise
            wait = delay * (2 ** (attempt - 1))
            logger.warning(f"{description} failed (attempt {attempt}/{attempts}): {e}; retrying in {wait:.2f}s")
            await asyncio.sleep(wait)

    raise RuntimeError("unreachable")
