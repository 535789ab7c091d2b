from __future__ import annotations

"""Retry policy shared by embedding and LLM upstream calls."""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from docsense.rag.errors import UpstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter for transient upstream failures.

    Only ``UpstreamError`` is considered. Errors without an upstream status
    (timeouts, connection failures) are retryable; errors with a status are
    retried only when the status is in ``retryable_statuses``.
    """
    max_attempts: int = 3
    initial_delay: float = 0.5
    max_delay: float = 8.0
    multiplier: float = 2.0
    jitter: float = 0.1
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def is_retryable(self, exc: BaseException) -> bool:
        if not isinstance(exc, UpstreamError):
            return False
        if exc.upstream_status is None:
            return True
        return exc.upstream_status in self.retryable_statuses

    def backoff_delay(self, attempt: int) -> float:
        """Return the delay before retry number ``attempt`` (0-based)."""
        delay = min(self.max_delay, self.initial_delay * (self.multiplier ** attempt))
        return delay + random.uniform(0, self.jitter * delay)

    async def run(self, operation: Callable[[], Awaitable[T]], *, name: str) -> T:
        """Run ``operation`` until it succeeds or the policy gives up."""
        attempts = max(1, self.max_attempts)
        for attempt in range(attempts):
            try:
                return await operation()
            except UpstreamError as exc:
                if attempt + 1 >= attempts or not self.is_retryable(exc):
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "upstream_retry",
                    extra={
                        "operation": name,
                        "attempt": attempt + 1,
                        "max_attempts": attempts,
                        "delay": round(delay, 3),
                        "upstream_status": exc.upstream_status,
                    },
                )
                await self.sleep(delay)
        raise AssertionError("unreachable")


NO_RETRY = RetryPolicy(max_attempts=1)
