"""AdaptiveRetryManager 유닛 테스트"""
import random

import pytest

from facility_crawler.core.exceptions import (
    BlockedException,
    CircuitOpenException,
    InvalidResultException,
    OperationCancelledException,
    RetryExhaustedException,
)
from facility_crawler.engine.cancellation import CancellationToken
from facility_crawler.engine.retry import AdaptiveRetryManager, RetryConfig


def _flaky(failures: int, exc: Exception, value="ok"):
    state = {"calls": 0}

    async def operation():
        state["calls"] += 1
        if state["calls"] <= failures:
            raise exc
        return value

    return operation, state


@pytest.fixture
def config():
    return RetryConfig(
        max_retries=3,
        base_delay=1.0,
        max_delay=30.0,
        jitter=False,
        min_delay=0.1,
        rate_limit_delay=10.0,
        circuit_fail_threshold=100,
    )


@pytest.mark.asyncio
async def test_success_after_failures(config, recording_sleep):
    manager = AdaptiveRetryManager(config, sleep=recording_sleep)
    operation, state = _flaky(2, RuntimeError("temporary"))

    assert await manager.execute_with_retry(operation, "search_naver") == "ok"

    assert state["calls"] == 3
    assert recording_sleep.waits("retry:search_naver") == [1.0, 2.0]
    metrics = manager.get_metrics()
    assert metrics["successful_attempts"] == 1
    assert metrics["failed_attempts"] == 2
    assert metrics["consecutive_failures"] == 0


@pytest.mark.asyncio
async def test_exhaustion_wraps_last_error(config, recording_sleep):
    manager = AdaptiveRetryManager(config, sleep=recording_sleep)
    error = RuntimeError("down")
    operation, state = _flaky(10, error)

    with pytest.raises(RetryExhaustedException) as exc_info:
        await manager.execute_with_retry(operation, "search_daum")

    assert state["calls"] == 3
    assert exc_info.value.attempts == 3
    assert exc_info.value.last_error is error
    assert exc_info.value.__cause__ is error
    assert manager.metrics.exhausted_operations == 1


@pytest.mark.asyncio
async def test_structural_error_not_retried(config, recording_sleep):
    manager = AdaptiveRetryManager(config, sleep=recording_sleep)
    operation, state = _flaky(10, InvalidResultException("naver", "bad shape"))

    with pytest.raises(RetryExhaustedException):
        await manager.execute_with_retry(operation, "search_naver")

    assert state["calls"] == 1
    assert recording_sleep.calls == []


@pytest.mark.asyncio
async def test_rate_limited_waits_at_least_cooldown(config, recording_sleep):
    manager = AdaptiveRetryManager(config, sleep=recording_sleep)
    operation, _ = _flaky(1, BlockedException("naver", 429))

    await manager.execute_with_retry(operation, "search_naver")

    assert recording_sleep.waits("retry:") == [10.0]


@pytest.mark.asyncio
async def test_open_circuit_fails_fast(recording_sleep):
    config = RetryConfig(max_retries=3, base_delay=1.0, jitter=False, circuit_fail_threshold=1)
    manager = AdaptiveRetryManager(config, sleep=recording_sleep)
    operation, state = _flaky(10, RuntimeError("down"))

    with pytest.raises(RetryExhaustedException):
        await manager.execute_with_retry(operation, "search_google")

    with pytest.raises(RetryExhaustedException) as exc_info:
        await manager.execute_with_retry(operation, "search_google")

    assert isinstance(exc_info.value.last_error, CircuitOpenException)
    # 두 번째 호출은 회로가 열려 있어 작업을 실행하지 않음
    assert state["calls"] == 1


@pytest.mark.asyncio
async def test_cancellation_propagates(config, recording_sleep):
    token = CancellationToken()
    token.cancel("stop")
    manager = AdaptiveRetryManager(config, cancel_token=token, sleep=recording_sleep)
    operation, state = _flaky(0, RuntimeError())

    with pytest.raises(OperationCancelledException):
        await manager.execute_with_retry(operation, "search_naver")
    assert state["calls"] == 0


class TestCalculateDelay:
    def test_exponential_growth_and_cap(self, config):
        manager = AdaptiveRetryManager(config)
        assert [manager.calculate_delay(n) for n in (1, 2, 3, 4, 5, 6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]

    def test_streak_penalty(self, config):
        manager = AdaptiveRetryManager(config)
        manager.metrics.consecutive_failures = 5
        # 1 + 0.5 * (5 - 3) = 2배
        assert manager.calculate_delay(1) == pytest.approx(2.0)

        manager.metrics.consecutive_failures = 50
        assert manager.calculate_delay(1) == pytest.approx(3.0)

    def test_jitter_bounds_and_floor(self):
        config = RetryConfig(base_delay=0.05, max_delay=1.0, jitter=True, min_delay=0.1)
        manager = AdaptiveRetryManager(config, rng=random.Random(7))
        for attempt in range(1, 8):
            delay = manager.calculate_delay(attempt)
            assert 0.1 <= delay <= 1.1

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            RetryConfig(max_retries=0)
        with pytest.raises(ValueError):
            RetryConfig(backoff_multiplier=0.5)
