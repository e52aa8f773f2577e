"""취소 토큰 / 대기 함수 유닛 테스트"""
import asyncio

import pytest

from facility_crawler.core.exceptions import OperationCancelledException
from facility_crawler.engine.cancellation import CancellationToken, cancellable_sleep, random_delay


@pytest.mark.asyncio
async def test_sleep_is_interrupted_by_cancel():
    token = CancellationToken()

    async def cancel_soon():
        await asyncio.sleep(0.01)
        token.cancel("stop")

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(OperationCancelledException):
        await cancellable_sleep(5.0, token, "batch:delay")
    await canceller


@pytest.mark.asyncio
async def test_sleep_completes_without_cancel():
    token = CancellationToken()
    await cancellable_sleep(0.01, token)
    await cancellable_sleep(0.0, None)
    assert not token.is_cancelled


@pytest.mark.asyncio
async def test_cancelled_before_sleep():
    token = CancellationToken()
    token.cancel()
    with pytest.raises(OperationCancelledException):
        await cancellable_sleep(0.0, token, "pace")


def test_reset_clears_cancellation():
    token = CancellationToken()
    token.cancel("stop")
    token.reset()

    assert not token.is_cancelled
    assert token.reason is None
    token.raise_if_cancelled("anywhere")


def test_random_delay_window():
    for _ in range(20):
        assert 1.0 <= random_delay(1.0, 3.0) <= 3.0
    assert random_delay(2.0, 2.0) == 2.0
    assert random_delay(-1.0, -2.0) == 0.0
