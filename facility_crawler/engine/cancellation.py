"""Cooperative cancellation and pacing delays.

모든 대기 지점(어댑터 간 지연, 배치 간 지연, 재시도 백오프, 저성공률 쿨다운)은
cancellable_sleep을 통과하며, 대기 전후로 취소 신호를 확인합니다.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Optional

from facility_crawler.core.exceptions import OperationCancelledException


class CancellationToken:
    """실행 단위(run) 범위의 협력적 취소 플래그"""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    def reset(self) -> None:
        """새 실행을 위해 취소 상태 해제"""
        self.reason = None
        self._event.clear()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, where: str) -> None:
        if self._event.is_set():
            raise OperationCancelledException(where, details={"reason": self.reason})

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled}, reason={self.reason!r})"


SleepFunc = Callable[[float, Optional[CancellationToken], str], Awaitable[None]]


async def cancellable_sleep(
    seconds: float,
    token: Optional[CancellationToken] = None,
    where: str = "sleep",
) -> None:
    """취소 가능한 대기

    Raises:
        OperationCancelledException: 대기 전 또는 대기 중 취소된 경우
    """
    if token is not None:
        token.raise_if_cancelled(where)

    if seconds <= 0:
        return

    if token is None:
        await asyncio.sleep(seconds)
        return

    try:
        await asyncio.wait_for(token.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    token.raise_if_cancelled(where)


def random_delay(min_s: float, max_s: float) -> float:
    """[min_s, max_s] 구간의 무작위 대기 시간 (초)"""
    if max_s <= min_s:
        return max(0.0, min_s)
    return random.uniform(min_s, max_s)
