"""Bounded exponential-backoff retries for calls to external collaborators."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
from typing import TypeVar

from quiz_attempt.constants.quiz_constants import (
    PERSISTENCE_BASE_DELAY_SECONDS,
    PERSISTENCE_MAX_ATTEMPTS,
    PERSISTENCE_MAX_DELAY_SECONDS,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = PERSISTENCE_MAX_ATTEMPTS
    base_delay: float = PERSISTENCE_BASE_DELAY_SECONDS
    max_delay: float = PERSISTENCE_MAX_DELAY_SECONDS
    factor: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must not be negative.")

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(self.max_delay, self.base_delay * self.factor ** (attempt - 1))


async def retry_async(
    policy: RetryPolicy,
    operation: Callable[[], Awaitable[T]],
    *,
    retry_on: tuple[type[BaseException], ...],
    description: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Only exceptions listed in ``retry_on`` are retried; the last one is
    re-raised once ``policy.max_attempts`` calls have failed.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as exc:
            if attempt >= policy.max_attempts:
                logger.error("%s failed after %d attempt(s): %s", description, attempt, exc)
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.2fs",
                description,
                attempt,
                policy.max_attempts,
                exc,
                delay,
            )
            attempt += 1
            await asyncio.sleep(delay)
