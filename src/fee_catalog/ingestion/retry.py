"""Retry with exponential backoff for flaky ingestion calls."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from loguru import logger

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 10.0
    exponential_base: float = 2.0
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,)

    def delay_for(self, attempt: int) -> float:
        """Delay after the given zero-based failed attempt."""
        delay = self.base_delay_s * (self.exponential_base**attempt)
        return max(0.0, min(delay, self.max_delay_s))


class RetryHandler:
    """Run a callable until it succeeds or the attempts run out."""

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    def call(self, func: Callable[[], T], *, operation_name: str = "operation") -> T:
        attempts = max(self.policy.max_attempts, 1)
        for attempt in range(attempts):
            try:
                result = func()
            except self.policy.retryable_exceptions as exc:
                if attempt == attempts - 1:
                    logger.error(
                        "{} failed after {} attempts: {}", operation_name, attempts, exc
                    )
                    raise
                delay = self.policy.delay_for(attempt)
                logger.warning(
                    "{} failed (attempt {}/{}), retrying in {:.1f}s: {}",
                    operation_name,
                    attempt + 1,
                    attempts,
                    delay,
                    exc,
                )
                self._sleep(delay)
            else:
                if attempt > 0:
                    logger.info("{} succeeded after {} attempts", operation_name, attempt + 1)
                return result
        raise RuntimeError("unreachable")  # pragma: no cover
