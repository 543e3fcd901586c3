from __future__ import annotations

import asyncio
from typing import List

import pytest

from riskwatch.analyze.executor import CallExecutor, Retryability, RetryPolicy, classify_provider_error
from riskwatch.errors import (
    AuthError,
    ConfigurationError,
    DeadlineExceeded,
    ProviderUnavailable,
    QuotaExceeded,
    StructuralError,
)


class FakeTime:
    """Monotonic clock advanced only by the recorded sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _executor(fake: FakeTime, **policy) -> CallExecutor:
    return CallExecutor(RetryPolicy(**policy), sleep=fake.sleep, clock=fake.clock)


def test_classification() -> None:
    assert classify_provider_error(AuthError("x")) is Retryability.NON_RETRYABLE
    assert classify_provider_error(QuotaExceeded("x")) is Retryability.NON_RETRYABLE
    assert classify_provider_error(ConfigurationError("x")) is Retryability.NON_RETRYABLE
    assert classify_provider_error(ProviderUnavailable("x")) is Retryability.RETRYABLE
    assert classify_provider_error(StructuralError("x")) is Retryability.RETRYABLE
    assert classify_provider_error(RuntimeError("x")) is Retryability.RETRYABLE


def test_delay_grows_exponentially() -> None:
    policy = RetryPolicy(max_attempts=4, base_delay=0.5, backoff_multiplier=3.0)
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [0.5, 1.5, 4.5]


def test_policy_requires_one_attempt() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


@pytest.mark.anyio
async def test_success_returns_without_sleeping() -> None:
    fake = FakeTime()

    async def operation() -> str:
        return "ok"

    assert await _executor(fake).execute(operation) == "ok"
    assert fake.sleeps == []


@pytest.mark.anyio
async def test_non_retryable_error_runs_once() -> None:
    fake = FakeTime()
    calls = 0

    async def operation() -> str:
        nonlocal calls
        calls += 1
        raise AuthError("bad key", provider="openai")

    with pytest.raises(AuthError):
        await _executor(fake, max_attempts=5).execute(operation)
    assert calls == 1
    assert fake.sleeps == []


@pytest.mark.anyio
async def test_retryable_error_uses_all_attempts_with_backoff(logger, log_stream) -> None:
    fake = FakeTime()
    calls = 0

    async def operation() -> str:
        nonlocal calls
        calls += 1
        raise ProviderUnavailable("503", provider="gemini")

    executor = CallExecutor(
        RetryPolicy(max_attempts=3, base_delay=1.0, backoff_multiplier=2.0),
        sleep=fake.sleep,
        clock=fake.clock,
        logger=logger,
    )
    with pytest.raises(ProviderUnavailable):
        await executor.execute(operation, context="gemini/risk")

    assert calls == 3
    assert fake.sleeps == [1.0, 2.0]
    assert log_stream.getvalue().count("Attempt failed") == 3


@pytest.mark.anyio
async def test_recovers_after_transient_failure() -> None:
    fake = FakeTime()
    outcomes = [ProviderUnavailable("503"), "done"]

    async def operation() -> str:
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert await _executor(fake).execute(operation) == "done"
    assert fake.sleeps == [1.0]


@pytest.mark.anyio
async def test_backoff_past_deadline_raises_deadline_exceeded() -> None:
    fake = FakeTime()

    async def operation() -> str:
        raise ProviderUnavailable("503")

    executor = _executor(fake, max_attempts=5, base_delay=4.0)
    deadline = executor.deadline_after(10.0)

    with pytest.raises(DeadlineExceeded):
        await executor.execute(operation, deadline=deadline)
    # 4s fits, the following 8s would cross the deadline
    assert fake.sleeps == [4.0]


@pytest.mark.anyio
async def test_slow_attempt_is_cut_at_deadline() -> None:
    executor = CallExecutor(RetryPolicy(max_attempts=3))

    async def operation() -> str:
        await asyncio.sleep(5)
        return "late"

    with pytest.raises(DeadlineExceeded):
        await executor.execute(operation, deadline=executor.deadline_after(0.05))


@pytest.mark.anyio
async def test_expired_deadline_skips_attempt() -> None:
    fake = FakeTime()
    calls = 0

    async def operation() -> str:
        nonlocal calls
        calls += 1
        return "ok"

    executor = _executor(fake)
    deadline = executor.deadline_after(0)
    with pytest.raises(DeadlineExceeded):
        await executor.execute(operation, deadline=deadline)
    assert calls == 0
