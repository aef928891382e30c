"""
Retry with exponential backoff for transient RPC failures.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from .errors import RpcError

logger = structlog.get_logger()

T = TypeVar("T")


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    backoff_seconds: float,
    event: str,
    max_delay_seconds: float = 60.0,
    **context: Any,
) -> T:
    """
    Await ``operation()`` up to ``attempts`` times.

    Only RpcError is retried; every other error propagates immediately.
    The last RpcError is re-raised once attempts are exhausted.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except RpcError as e:
            if attempt >= attempts:
                raise
            delay = min(backoff_seconds * (2 ** (attempt - 1)), max_delay_seconds)
            logger.warning(
                event,
                attempt=attempt,
                attempts=attempts,
                retry_in=delay,
                error=str(e),
                **context,
            )
            await asyncio.sleep(delay)
            attempt += 1
