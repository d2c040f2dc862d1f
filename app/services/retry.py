# =============================================================================
# Retry with Exponential Backoff and Jitter
# =============================================================================
#
#   delay(attempt) = min(base_delay * backoff_factor ** attempt, max_delay)
#                    * (1 + U[0, jitter))
#
# attempt is 0 for the first retry. The jitter is multiplicative and
# bounded, so a delay never exceeds max_delay * (1 + jitter).
#
# Only errors whose `retryable` flag is set are retried. After the last
# retry the final error is re-raised unchanged.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from app.services.errors import ClientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    jitter: float = 0.1

    def base_delay_for(self, attempt: int) -> float:
        """Capped delay before jitter for the given retry index."""
        return min(self.base_delay * self.backoff_factor ** attempt, self.max_delay)

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        return self.base_delay_for(attempt) * (1 + rng() * self.jitter)


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """
    Await `operation()` and retry retryable ClientErrors per `policy`.

    Non-ClientError exceptions and non-retryable ClientErrors propagate
    on the first failure.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except ClientError as exc:
            if not exc.retryable or attempt >= policy.max_retries:
                raise
            delay = policy.delay_for(attempt, rng)
            logger.warning(
                "Retryable %s error (attempt %d/%d), retrying in %.2fs: %s",
                exc.category,
                attempt + 1,
                policy.max_retries,
                delay,
                exc.detail,
            )
            attempt += 1
            await sleep(delay)
