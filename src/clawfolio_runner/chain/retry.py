"""Bounded exponential-backoff retry for remote reads."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from clawfolio_runner.config import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0


@dataclass(frozen=True)
class RetryPolicy:
    """How many attempts to make and how long to wait between them."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_seconds=settings.base_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the zero-based ``attempt`` failed."""
        return self.base_delay_seconds * (2**attempt)


async def retry_call(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    label: str | None = None,
) -> T:
    """Invoke ``fn`` until it succeeds or the attempt budget is spent.

    Every exception is treated as transient. There is no jitter: the n-th
    retry waits ``base_delay * 2**(n-1)`` seconds. When all attempts fail
    the last exception is re-raised unchanged.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        policy: Attempt budget and base delay. Defaults to 3 attempts, 1s.
        label: Name used in log lines.

    Returns:
        Whatever ``fn`` returned on the first successful attempt.
    """
    policy = policy or RetryPolicy()
    name = label or getattr(fn, "__name__", "call")
    attempts = max(1, policy.max_attempts)

    for attempt in range(attempts):
        try:
            return await fn()
        except Exception as e:
            if attempt == attempts - 1:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s. Retrying in %.1f seconds...",
                name,
                attempt + 1,
                attempts,
                e,
                delay,
            )
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
