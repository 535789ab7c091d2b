from __future__ import annotations

import pytest

from docsense.rag.errors import ValidationError
from docsense.rag.llm import LLMError
from docsense.rag.retry import RetryPolicy

pytestmark = pytest.mark.anyio


def build_policy(delays: list[float], max_attempts: int = 3) -> RetryPolicy:
    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    return RetryPolicy(max_attempts=max_attempts, initial_delay=0.5, jitter=0.0, sleep=fake_sleep)


async def test_retries_transient_status_until_success() -> None:
    delays: list[float] = []
    attempts = 0

    async def operation() -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise LLMError("rate limited", upstream_status=429)
        return "ok"

    result = await build_policy(delays).run(operation, name="test")

    assert result == "ok"
    assert attempts == 3
    assert delays == [0.5, 1.0]


async def test_non_retryable_status_fails_fast() -> None:
    delays: list[float] = []
    attempts = 0

    async def operation() -> str:
        nonlocal attempts
        attempts += 1
        raise LLMError("bad request", upstream_status=400)

    with pytest.raises(LLMError):
        await build_policy(delays).run(operation, name="test")

    assert attempts == 1
    assert delays == []


async def test_gives_up_after_max_attempts() -> None:
    delays: list[float] = []
    attempts = 0

    async def operation() -> str:
        nonlocal attempts
        attempts += 1
        raise LLMError("timeout")

    with pytest.raises(LLMError):
        await build_policy(delays, max_attempts=2).run(operation, name="test")

    assert attempts == 2
    assert len(delays) == 1


async def test_local_errors_are_never_retried() -> None:
    delays: list[float] = []

    async def operation() -> str:
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        await build_policy(delays).run(operation, name="test")
    assert delays == []


def test_backoff_is_capped() -> None:
    policy = RetryPolicy(initial_delay=1.0, max_delay=4.0, jitter=0.0)
    assert [policy.backoff_delay(attempt) for attempt in range(5)] == [1.0, 2.0, 4.0, 4.0, 4.0]
