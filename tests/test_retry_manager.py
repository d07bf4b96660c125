import asyncio

import pytest

from chatbridge.models.errors.enums import ErrorKind
from chatbridge.models.errors.models import BridgeRequestError, HttpStatusError, OfflineError
from chatbridge.services.error_classifier import ErrorClassifier
from chatbridge.services.retry_manager import RetryManager, RetryPolicy, RetryState


def _failing(error: Exception, calls: list[int]):
    async def operation():
        calls.append(len(calls) + 1)
        raise error

    return operation


async def test_server_errors_exhaust_the_attempt_budget(recording_sleep) -> None:
    manager = RetryManager(ErrorClassifier(), sleep=recording_sleep)
    policy = RetryPolicy(max_attempts=3, base_delay_ms=1000, max_delay_ms=30000, jitter_ratio=0.0)
    calls: list[int] = []

    with pytest.raises(BridgeRequestError) as exc_info:
        await manager.with_retry(_failing(HttpStatusError(500), calls), policy)

    assert calls == [1, 2, 3]
    assert exc_info.value.attempts == 3
    assert exc_info.value.error.kind == ErrorKind.SERVER_ERROR
    assert recording_sleep.delays == [1.0, 2.0]
    assert recording_sleep.delays == sorted(recording_sleep.delays)


async def test_success_after_a_retry(recording_sleep) -> None:
    manager = RetryManager(ErrorClassifier(), sleep=recording_sleep)
    attempts = []

    async def operation():
        attempts.append(1)
        if len(attempts) == 1:
            raise HttpStatusError(503)
        return "ok"

    result = await manager.with_retry(operation, RetryPolicy(jitter_ratio=0.0))

    assert result == "ok"
    assert len(attempts) == 2


async def test_non_retryable_failures_are_not_retried(recording_sleep) -> None:
    manager = RetryManager(ErrorClassifier(), sleep=recording_sleep)
    calls: list[int] = []

    with pytest.raises(BridgeRequestError) as exc_info:
        await manager.with_retry(_failing(HttpStatusError(401), calls), RetryPolicy())

    assert calls == [1]
    assert exc_info.value.error.kind == ErrorKind.UNAUTHORIZED
    assert recording_sleep.delays == []


async def test_offline_skips_the_retry_budget(recording_sleep) -> None:
    manager = RetryManager(ErrorClassifier(), sleep=recording_sleep)
    calls: list[int] = []

    with pytest.raises(BridgeRequestError) as exc_info:
        await manager.with_retry(_failing(OfflineError("down"), calls), RetryPolicy(max_attempts=5))

    assert calls == [1]
    assert exc_info.value.error.kind == ErrorKind.OFFLINE


async def test_rate_limit_waits_for_retry_after(recording_sleep) -> None:
    manager = RetryManager(ErrorClassifier(), sleep=recording_sleep)
    calls: list[int] = []

    with pytest.raises(BridgeRequestError):
        await manager.with_retry(
            _failing(HttpStatusError(429, retry_after="12"), calls),
            RetryPolicy(max_attempts=2),
        )

    assert recording_sleep.delays == [12.0]


async def test_retry_after_is_capped_at_the_maximum_delay(recording_sleep) -> None:
    manager = RetryManager(ErrorClassifier(), sleep=recording_sleep)
    calls: list[int] = []

    with pytest.raises(BridgeRequestError):
        await manager.with_retry(
            _failing(HttpStatusError(429, retry_after="3600"), calls),
            RetryPolicy(max_attempts=2, max_delay_ms=30000),
        )

    assert calls == [1, 2]
    assert recording_sleep.delays == [30.0]


def test_delay_is_capped_at_the_maximum() -> None:
    policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=5000, backoff_multiplier=2.0)

    assert [policy.delay_for(attempt) for attempt in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_jitter_stays_within_the_ratio() -> None:
    classifier = ErrorClassifier()
    error = classifier.classify(HttpStatusError(500))
    policy = RetryPolicy(base_delay_ms=1000, jitter_ratio=0.2)

    low = RetryManager(classifier, random_source=lambda: 0.0).compute_delay(1, policy, error)
    high = RetryManager(classifier, random_source=lambda: 1.0).compute_delay(1, policy, error)

    assert low == pytest.approx(0.8)
    assert high == pytest.approx(1.2)


async def test_listeners_see_each_scheduled_retry(recording_sleep) -> None:
    manager = RetryManager(ErrorClassifier(), sleep=recording_sleep)
    states: list[RetryState] = []
    manager.add_retry_listener(states.append)

    with pytest.raises(BridgeRequestError):
        await manager.with_retry(_failing(HttpStatusError(502), []), RetryPolicy(max_attempts=3, jitter_ratio=0.0))

    assert [state.attempt for state in states] == [1, 2]
    assert all(state.error.kind == ErrorKind.BAD_GATEWAY for state in states)


async def test_cancellation_aborts_the_backoff_sleep() -> None:
    manager = RetryManager(ErrorClassifier())
    calls: list[int] = []
    task = asyncio.create_task(
        manager.with_retry(
            _failing(HttpStatusError(500), calls),
            RetryPolicy(max_attempts=3, base_delay_ms=60000, max_delay_ms=60000),
        )
    )

    await asyncio.sleep(0.01)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert calls == [1]


async def test_each_call_starts_from_the_first_attempt(recording_sleep) -> None:
    manager = RetryManager(ErrorClassifier(), sleep=recording_sleep)
    policy = RetryPolicy(max_attempts=2, jitter_ratio=0.0)

    for _ in range(2):
        with pytest.raises(BridgeRequestError) as exc_info:
            await manager.with_retry(_failing(HttpStatusError(500), []), policy)
        assert exc_info.value.attempts == 2

    assert recording_sleep.delays == [1.0, 1.0]
