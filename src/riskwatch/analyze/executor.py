from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from ..errors import AuthError, ConfigurationError, DeadlineExceeded, QuotaExceeded
from ..logging import RiskWatchLogger

T = TypeVar("T")


class Retryability(str, Enum):
    RETRYABLE = "retryable"
    NON_RETRYABLE = "non_retryable"


def classify_provider_error(exc: BaseException) -> Retryability:
    """Auth, quota and configuration failures never improve on retry."""
    if isinstance(exc, (AuthError, QuotaExceeded, ConfigurationError)):
        return Retryability.NON_RETRYABLE
    return Retryability.RETRYABLE


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Sleep after failed ``attempt`` (1-based)."""
        return self.base_delay * (self.backoff_multiplier ** (attempt - 1))


class CallExecutor:
    """Classified retry with exponential backoff, bounded by a deadline."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[RiskWatchLogger] = None,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.clock = clock
        self.logger = logger

    def deadline_after(self, seconds: float) -> float:
        """Absolute deadline on this executor's clock."""
        return self.clock() + seconds

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        classify: Callable[[BaseException], Retryability] = classify_provider_error,
        policy: Optional[RetryPolicy] = None,
        deadline: Optional[float] = None,
        context: str = "",
    ) -> T:
        """
        Run ``operation`` until it succeeds or retries are exhausted.

        Flow:
        1. Attempt the operation (bounded by the remaining deadline)
        2. NON_RETRYABLE error -> re-raise immediately
        3. RETRYABLE error -> sleep base * multiplier^(attempt-1), retry
        4. Last attempt -> re-raise its error without sleeping

        Raises DeadlineExceeded when the deadline passes before an attempt
        finishes or would pass during a backoff sleep.
        """
        policy = policy or self.policy

        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await self._attempt(operation, deadline, context)
            except DeadlineExceeded:
                raise
            except Exception as exc:
                verdict = classify(exc)
                if self.logger is not None:
                    self.logger.warning(
                        "Attempt failed",
                        context=context,
                        attempt=attempt,
                        max_attempts=policy.max_attempts,
                        error_type=type(exc).__name__,
                        error=str(exc),
                        retryable=verdict is Retryability.RETRYABLE,
                    )
                if verdict is Retryability.NON_RETRYABLE or attempt == policy.max_attempts:
                    raise

                delay = policy.delay_for(attempt)
                if deadline is not None and self.clock() + delay >= deadline:
                    raise DeadlineExceeded(
                        f"Deadline reached before retry {attempt + 1} of {context or 'call'}"
                    ) from exc
                await self._sleep(delay)

        raise AssertionError("unreachable")  # pragma: no cover

    async def _attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        deadline: Optional[float],
        context: str,
    ) -> T:
        if deadline is None:
            return await operation()
        remaining = deadline - self.clock()
        if remaining <= 0:
            raise DeadlineExceeded(f"Deadline reached before {context or 'call'}")
        try:
            return await asyncio.wait_for(operation(), timeout=remaining)
        except asyncio.TimeoutError as exc:
            raise DeadlineExceeded(f"Deadline reached during {context or 'call'}") from exc
