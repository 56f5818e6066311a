"""Retry utilities with exponential backoff."""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


async def retry_with_backoff(
    func: Callable,
    max_retries: int = 2,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    *args,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    **kwargs,
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        func: Async function to retry
        max_retries: Maximum number of retries (default: 2)
        base_delay: Base delay in seconds for exponential backoff (default: 1.0)
        max_delay: Maximum delay in seconds (default: 10.0)
        *args: Positional arguments to pass to func
        retry_on: Exception types worth retrying; anything else propagates at once
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from func

    Raises:
        Exception: The last error once all retries are exhausted
    """
    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except retry_on as e:
            if attempt >= max_retries:
                raise
            delay = min(base_delay * (2**attempt), max_delay)
            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.2fs",
                attempt + 1,
                max_retries + 1,
                e,
                delay,
            )
            await asyncio.sleep(delay)
