"""Circuit Breaker - 반복 실패하는 작업을 일시적으로 빠르게 실패시키는 게이트.

상태:
- CLOSED: 정상 호출
- OPEN: 호출 없이 즉시 CircuitOpenException
- HALF_OPEN: 쿨다운 후 시험 호출 1회 허용 (성공 → CLOSED, 실패 → OPEN)
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

from facility_crawler.core.exceptions import CircuitOpenException
from facility_crawler.core.logging import logger


T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerMetrics:
    """회로 차단기 메트릭 추적."""

    successes: int = 0
    failures: int = 0
    rejections: int = 0
    trips: int = 0

    @property
    def success_rate(self) -> float:
        """호출 성공률 (0.0~1.0)."""
        total = self.successes + self.failures
        return self.successes / total if total > 0 else 0.0

    def __repr__(self) -> str:
        return (
            f"Metrics({self.successes}S/{self.failures}F={self.success_rate:.1%}, "
            f"rejected={self.rejections}, trips={self.trips})"
        )


class CircuitBreaker:
    """연속 실패 기반 회로 차단기.

    - 연속 실패가 임계값에 도달하면 회로 개방
    - 개방 후 cooldown 경과 시 HALF_OPEN으로 전환해 시험 호출 1회 허용
    - 성공 시 즉시 회로 닫기
    """

    def __init__(
        self,
        fail_threshold: int = 5,
        open_duration_sec: float = 60.0,
        name: str = "default",
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        """초기화.

        Args:
            fail_threshold: 회로 개방 임계값 (연속 실패 횟수)
            open_duration_sec: 개방 상태 유지 시간 (초)
            name: 로그용 이름
            clock: 단조 시계 (테스트에서 주입)
        """
        if fail_threshold <= 0:
            raise ValueError("fail_threshold must be positive")

        self.fail_threshold = fail_threshold
        self.open_duration_sec = open_duration_sec
        self.name = name
        self._clock = clock or time.monotonic

        self._state = CircuitState.CLOSED
        self._fail_count = 0
        self._open_until: float = 0.0
        self._trial_in_flight = False
        self.metrics = CircuitBreakerMetrics()

    @property
    def state(self) -> CircuitState:
        """현재 상태 (쿨다운이 지났으면 HALF_OPEN으로 전환)."""
        if self._state == CircuitState.OPEN and self._clock() >= self._open_until:
            self._state = CircuitState.HALF_OPEN
            self._trial_in_flight = False
            logger.info(f"[CIRCUIT_BREAKER] {self.name} HALF_OPEN (cooldown elapsed)")
        return self._state

    def is_open(self) -> bool:
        """회로가 개방되었는가?"""
        return self.state == CircuitState.OPEN

    def get_remaining_open_time(self) -> float:
        """회로 개방 남은 시간 (초)."""
        if self._state != CircuitState.OPEN:
            return 0.0
        return max(0.0, self._open_until - self._clock())

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """회로 상태에 따라 작업 실행

        Raises:
            CircuitOpenException: 회로 개방 중이거나 시험 호출이 이미 진행 중인 경우
            Exception: 작업이 던진 예외 (실패로 기록 후 그대로 전파)
        """
        state = self.state
        if state == CircuitState.OPEN or (state == CircuitState.HALF_OPEN and self._trial_in_flight):
            self.metrics.rejections += 1
            raise CircuitOpenException(self.name, self.get_remaining_open_time())

        if state == CircuitState.HALF_OPEN:
            self._trial_in_flight = True

        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        except BaseException:
            # 취소된 시험 호출은 성공/실패로 세지 않고 다음 호출에 시험 기회를 넘김
            self._trial_in_flight = False
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        """성공 기록 → 회로 닫기."""
        if self._state != CircuitState.CLOSED:
            logger.info(f"[CIRCUIT_BREAKER] {self.name} CLOSED (recovered)")
        self._state = CircuitState.CLOSED
        self._fail_count = 0
        self._open_until = 0.0
        self._trial_in_flight = False
        self.metrics.successes += 1

    def record_failure(self) -> None:
        """실패 기록 → 임계값 도달 또는 시험 호출 실패 시 회로 개방."""
        self._fail_count += 1
        self.metrics.failures += 1

        if self._state == CircuitState.HALF_OPEN or self._fail_count >= self.fail_threshold:
            self._trip()

    def _trip(self) -> None:
        self._state = CircuitState.OPEN
        self._open_until = self._clock() + self.open_duration_sec
        self._trial_in_flight = False
        self.metrics.trips += 1
        logger.warning(
            f"[CIRCUIT_BREAKER] {self.name} OPEN (fail_count={self._fail_count} >= {self.fail_threshold}). "
            f"Blocked for {self.open_duration_sec}s"
        )

    def reset(self) -> None:
        """수동 리셋 → CLOSED."""
        self._state = CircuitState.CLOSED
        self._fail_count = 0
        self._open_until = 0.0
        self._trial_in_flight = False
        logger.info(f"[CIRCUIT_BREAKER] {self.name} reset")

    def __repr__(self) -> str:
        return (
            f"CircuitBreaker({self.name}, {self.state.value.upper()}, "
            f"fail_count={self._fail_count}/{self.fail_threshold}, "
            f"open_time={self.get_remaining_open_time():.1f}s)"
        )
