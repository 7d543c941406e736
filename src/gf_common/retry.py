"""Bounded retry with exponential backoff for external calls.

Only ExternalServiceError with retryable=True is repeated. Anything else, or
the last failure once the attempt budget is spent, propagates to the caller,
which turns it into a terminal state (failed) plus an audit-visible error.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from src.gf_common.errors import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    operation: str,
) -> T:
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except ExternalServiceError as exc:
            if not exc.retryable or attempt == attempts:
                logger.error(
                    "%s failed after %d attempt(s): %s", operation, attempt, exc.message
                )
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "%s attempt %d/%d failed (%s), retrying in %.2fs",
                operation,
                attempt,
                attempts,
                exc.message,
                delay,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
