"""Adaptive Retry Manager - 지수 백오프 + 지터 + 연속 실패 가중 재시도.

각 시도는 라벨별 CircuitBreaker를 통과합니다.

지연 계산:
    delay = base_delay * backoff_multiplier ** (attempt - 1)
    연속 실패가 3회를 넘으면 최대 3배까지 추가 가중
    max_delay로 상한, ±10% 지터, 최소 100ms
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from facility_crawler.core.config import Settings, settings
from facility_crawler.core.exceptions import (
    NetworkTimeoutException,
    OperationCancelledException,
    RetryExhaustedException,
)
from facility_crawler.core.logging import logger

from .cancellation import CancellationToken, SleepFunc, cancellable_sleep
from .circuit_breaker import CircuitBreaker
from .error_policy import ErrorPolicy


T = TypeVar("T")

# 연속 실패 가중 시작 기준과 최대 배수
STREAK_THRESHOLD = 3
MAX_STREAK_FACTOR = 3.0
JITTER_RATIO = 0.1


@dataclass
class RetryConfig:
    """재시도 설정"""

    max_retries: int = 5
    base_delay: float = 2.0  # 초
    max_delay: float = 30.0  # 초
    backoff_multiplier: float = 2.0
    jitter: bool = True
    min_delay: float = 0.1  # 지터 적용 후 하한 (초)
    rate_limit_delay: float = 10.0  # 403/429 감지 시 최소 대기 (초)
    attempt_timeout: Optional[float] = None  # 시도별 타임아웃 (초)
    circuit_fail_threshold: int = 5
    circuit_open_seconds: float = 60.0

    def __post_init__(self):
        if self.max_retries <= 0:
            raise ValueError("max_retries must be positive")
        if self.backoff_multiplier < 1.0:
            raise ValueError("backoff_multiplier must be >= 1")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "RetryConfig":
        s = s or settings
        return cls(
            max_retries=s.retry_max_retries,
            base_delay=s.retry_base_delay_s,
            max_delay=s.retry_max_delay_s,
            backoff_multiplier=s.retry_backoff_multiplier,
            jitter=s.retry_jitter,
            min_delay=s.retry_min_delay_s,
            rate_limit_delay=s.search_rate_limit_cooldown_s,
            attempt_timeout=s.search_timeout_s,
            circuit_fail_threshold=s.circuit_fail_threshold,
            circuit_open_seconds=s.circuit_open_seconds,
        )


@dataclass
class RetryMetrics:
    """재시도 누적 통계 (관측 용도)"""

    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    exhausted_operations: int = 0
    total_delay: float = 0.0
    delay_count: int = 0
    consecutive_failures: int = 0
    labels: dict[str, int] = field(default_factory=dict)

    @property
    def average_delay(self) -> float:
        return self.total_delay / self.delay_count if self.delay_count else 0.0

    @property
    def success_rate(self) -> float:
        return self.successful_attempts / self.total_attempts if self.total_attempts else 0.0

    def to_dict(self) -> dict:
        return {
            "total_attempts": self.total_attempts,
            "successful_attempts": self.successful_attempts,
            "failed_attempts": self.failed_attempts,
            "exhausted_operations": self.exhausted_operations,
            "average_delay_s": round(self.average_delay, 3),
            "consecutive_failures": self.consecutive_failures,
            "success_rate": round(self.success_rate, 4),
        }


class AdaptiveRetryManager:
    """적응형 재시도 관리자

    Usage:
        manager = AdaptiveRetryManager(RetryConfig(max_retries=3))
        result = await manager.execute_with_retry(lambda: adapter.search(name, addr), "search_naver")
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Optional[SleepFunc] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or RetryConfig.from_settings()
        self.cancel_token = cancel_token
        self._sleep = sleep or cancellable_sleep
        self._rng = rng or random.Random()
        self.metrics = RetryMetrics()
        self._breakers: dict[str, CircuitBreaker] = {}
        self.policy = ErrorPolicy()

    def get_circuit_breaker(self, label: str) -> CircuitBreaker:
        """라벨(감싼 작업)별 회로 차단기"""
        breaker = self._breakers.get(label)
        if breaker is None:
            breaker = CircuitBreaker(
                fail_threshold=self.config.circuit_fail_threshold,
                open_duration_sec=self.config.circuit_open_seconds,
                name=label,
            )
            self._breakers[label] = breaker
        return breaker

    def calculate_delay(self, attempt: int, rate_limited: bool = False) -> float:
        """다음 시도 전 대기 시간 (초)

        Args:
            attempt: 방금 실패한 시도 번호 (1부터)
            rate_limited: 403/429 계열 실패 여부
        """
        cfg = self.config
        delay = cfg.base_delay * (cfg.backoff_multiplier ** (attempt - 1))

        streak = self.metrics.consecutive_failures
        if streak > STREAK_THRESHOLD:
            factor = min(MAX_STREAK_FACTOR, 1.0 + 0.5 * (streak - STREAK_THRESHOLD))
            delay *= factor

        if rate_limited:
            delay = max(delay, cfg.rate_limit_delay)

        delay = min(delay, cfg.max_delay)

        if cfg.jitter:
            delay *= 1.0 + self._rng.uniform(-JITTER_RATIO, JITTER_RATIO)

        return max(cfg.min_delay, delay)

    async def execute_with_retry(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        """재시도와 회로 차단을 적용해 작업 실행

        Raises:
            RetryExhaustedException: 모든 시도 실패 (마지막 원인 예외가 __cause__로 연결됨)
            OperationCancelledException: 취소 신호 감지
        """
        breaker = self.get_circuit_breaker(label)
        last_error: Optional[BaseException] = None
        attempt = 0

        for attempt in range(1, self.config.max_retries + 1):
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled(label)

            self.metrics.total_attempts += 1
            self.metrics.labels[label] = self.metrics.labels.get(label, 0) + 1

            try:
                result = await breaker.execute(lambda: self._run_attempt(operation, label))
            except OperationCancelledException:
                raise
            except Exception as e:
                last_error = e
                self.metrics.failed_attempts += 1
                self.metrics.consecutive_failures += 1
                logger.warning(
                    f"[RETRY] {label} attempt {attempt}/{self.config.max_retries} failed: "
                    f"{type(e).__name__}: {e}"
                )

                if not self.policy.is_retryable(e):
                    logger.info(f"[RETRY] {label} not retryable ({type(e).__name__}), giving up")
                    break
                if attempt >= self.config.max_retries:
                    break

                delay = self.calculate_delay(attempt, rate_limited=self.policy.is_rate_limited(e))
                self.metrics.total_delay += delay
                self.metrics.delay_count += 1
                logger.debug(f"[RETRY] {label} waiting {delay:.2f}s before attempt {attempt + 1}")
                await self._sleep(delay, self.cancel_token, f"retry:{label}")
                continue

            self.metrics.successful_attempts += 1
            self.metrics.consecutive_failures = 0
            if attempt > 1:
                logger.info(f"[RETRY] {label} succeeded on attempt {attempt}")
            return result

        self.metrics.exhausted_operations += 1
        raise RetryExhaustedException(label, attempt, last_error) from last_error

    async def _run_attempt(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        timeout = self.config.attempt_timeout
        if not timeout:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise NetworkTimeoutException(label, int(timeout * 1000)) from e

    def get_metrics(self) -> dict:
        return self.metrics.to_dict()

    def reset_metrics(self) -> None:
        self.metrics = RetryMetrics()

    def reset_circuits(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
