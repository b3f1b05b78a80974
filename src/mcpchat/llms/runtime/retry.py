"""
MIT License
Copyright (c) 2026 arpan404
See LICENSE file for full license text.

Module: runtime/retry.py.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..errors import LLMError, LLMRetryableError
from .contracts import RetryPolicy

T = TypeVar("T")

logger = logging.getLogger("mcpchat.llms.retry")

Sleep = Callable[[float], Awaitable[None]]


def status_code_of(error: BaseException) -> int | None:
    """Read the HTTP status an SDK exception carries, if any."""
    for attr in ("status_code", "status", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def classify_error(error: Exception) -> LLMError:
    """Classify exceptions into retryable (rate limited) and terminal errors."""
    if isinstance(error, LLMError):
        return error
    status = status_code_of(error)
    if status == 429:
        return LLMRetryableError(str(error), status_code=429)
    return LLMError(str(error), status_code=status)


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Execute callable, retrying rate-limited failures with linear backoff."""
    last: Exception | None = None
    for attempt in range(policy.max_retries + 1):
        try:
            return await fn()
        except Exception as error:
            classified = classify_error(error)
            last = classified
            if isinstance(classified, LLMRetryableError) and attempt < policy.max_retries:
                delay = policy.delay_for(attempt)
                logger.info(
                    "Model call rate limited (attempt %d/%d), retrying in %.1fs",
                    attempt + 1,
                    policy.max_retries + 1,
                    delay,
                )
                await sleep(delay)
                continue
            raise classified from error
    raise LLMError("Retry loop exhausted") from last
