"""Fallback Strategy Manager - 우선순위 기반 대체 조회 전략 관리.

기본 조회가 실패하면 등록된 전략을 우선순위(오름차순) 순서로 시도합니다.
각 전략 실행은 AdaptiveRetryManager로 감싸지며, 결과는 엔티티별 실행 이력
(최대 10건, FIFO)에 기록되어 성공률 기반 재정렬에 사용됩니다.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from facility_crawler.core.config import settings
from facility_crawler.core.exceptions import OperationCancelledException
from facility_crawler.core.logging import logger, sanitize_for_log
from facility_crawler.schemas.facility_schema import RawSourceResult

from .result import FallbackResult
from .retry import AdaptiveRetryManager


# 이력이 없는 전략의 재정렬용 성공률
UNOBSERVED_SUCCESS_RATE = 0.5


@dataclass(frozen=True)
class FallbackContext:
    """폴백 전략에 전달되는 엔티티 정보"""

    name: str
    address: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class FallbackStrategy(Protocol):
    """폴백 전략 인터페이스

    priority가 낮을수록 먼저 실행됩니다.
    """

    name: str
    priority: int
    enabled: bool

    def is_available(self, context: FallbackContext) -> bool:
        ...

    async def execute(self, context: FallbackContext) -> Optional[RawSourceResult]:
        ...


@dataclass
class FunctionStrategy:
    """비동기 함수 하나로 구성된 폴백 전략"""

    name: str
    priority: int
    func: Callable[[FallbackContext], Awaitable[Optional[RawSourceResult]]]
    enabled: bool = True
    availability: Optional[Callable[[FallbackContext], bool]] = None

    def is_available(self, context: FallbackContext) -> bool:
        if self.availability is None:
            return True
        return bool(self.availability(context))

    async def execute(self, context: FallbackContext) -> Optional[RawSourceResult]:
        return await self.func(context)


@dataclass(frozen=True)
class ExecutionRecord:
    """전략 실행 이력 1건"""

    strategy: str
    success: bool
    confidence: float = 0.0
    execution_ms: float = 0.0
    error: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class StrategyStats:
    attempts: int = 0
    successes: int = 0
    total_execution_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successes / self.attempts if self.attempts else 0.0

    @property
    def average_execution_ms(self) -> float:
        return self.total_execution_ms / self.attempts if self.attempts else 0.0


class FallbackStrategyManager:
    """폴백 전략 관리자

    Usage:
        manager = FallbackStrategyManager(retry_manager)
        manager.register_strategy(FunctionStrategy("naver_map", 1, search_map))
        result = await manager.execute_fallback(entity.key, FallbackContext(entity.name, entity.address))
        if result.success:
            ...
    """

    def __init__(
        self,
        retry_manager: AdaptiveRetryManager,
        accepted_min_confidence: Optional[float] = None,
        history_size: Optional[int] = None,
        label_prefix: str = "fallback",
    ):
        self.retry_manager = retry_manager
        self.label_prefix = label_prefix
        self.accepted_min_confidence = (
            settings.search_accepted_min_confidence
            if accepted_min_confidence is None
            else accepted_min_confidence
        )
        self.history_size = history_size or settings.fallback_history_size
        self._strategies: list[FallbackStrategy] = []
        self._history: dict[str, deque[ExecutionRecord]] = {}
        self._stats: dict[str, StrategyStats] = {}

    # ------------------------------------------------------------------
    # 등록/조회
    # ------------------------------------------------------------------
    def register_strategy(self, strategy: FallbackStrategy) -> None:
        if any(s.name == strategy.name for s in self._strategies):
            raise ValueError(f"Strategy already registered: {strategy.name}")
        self._strategies.append(strategy)
        self._stats.setdefault(strategy.name, StrategyStats())
        self._sort_by_priority()
        logger.debug(f"[FALLBACK] registered strategy '{strategy.name}' (priority={strategy.priority})")

    def unregister_strategy(self, name: str) -> bool:
        before = len(self._strategies)
        self._strategies = [s for s in self._strategies if s.name != name]
        return len(self._strategies) < before

    def get_strategy(self, name: str) -> Optional[FallbackStrategy]:
        return next((s for s in self._strategies if s.name == name), None)

    def get_strategies(self) -> list[FallbackStrategy]:
        """우선순위 순서의 전략 목록 (복사본)"""
        return list(self._strategies)

    def enable_strategy(self, name: str) -> bool:
        return self._set_enabled(name, True)

    def disable_strategy(self, name: str) -> bool:
        return self._set_enabled(name, False)

    def _set_enabled(self, name: str, enabled: bool) -> bool:
        strategy = self.get_strategy(name)
        if strategy is None:
            logger.warning(f"[FALLBACK] unknown strategy: {name}")
            return False
        strategy.enabled = enabled
        logger.info(f"[FALLBACK] strategy '{name}' {'enabled' if enabled else 'disabled'}")
        return True

    def _sort_by_priority(self) -> None:
        # sorted()는 안정 정렬이라 같은 우선순위는 등록 순서 유지
        self._strategies = sorted(self._strategies, key=lambda s: s.priority)

    # ------------------------------------------------------------------
    # 실행
    # ------------------------------------------------------------------
    def is_valid_result(self, result: Optional[RawSourceResult]) -> bool:
        """식별 필드가 있고 신뢰도가 기준을 넘는 결과만 유효"""
        if result is None or not isinstance(result, RawSourceResult):
            return False
        if not result.name or not result.name.strip():
            return False
        return result.confidence > self.accepted_min_confidence

    async def execute_fallback(self, entity_key: str, context: FallbackContext) -> FallbackResult:
        """사용 가능한 전략을 우선순위 순서로 실행

        Returns:
            FallbackResult: 첫 유효 결과, 또는 strategy="all_strategies_failed"인 실패 결과
        """
        started = time.monotonic()
        attempted: list[str] = []
        last_error: Optional[str] = None

        available = [s for s in self._strategies if s.enabled and self._safe_available(s, context)]
        if not available:
            logger.warning(f"[FALLBACK] no available strategies for {sanitize_for_log(context.name)}")

        for strategy in available:
            attempted.append(strategy.name)
            strategy_started = time.monotonic()
            try:
                result = await self.retry_manager.execute_with_retry(
                    lambda s=strategy: s.execute(context),
                    f"{self.label_prefix}_{strategy.name}",
                )
            except OperationCancelledException:
                raise
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                self._record(entity_key, ExecutionRecord(
                    strategy.name, False, 0.0, _elapsed_ms(strategy_started), last_error,
                ))
                logger.info(f"[FALLBACK] strategy '{strategy.name}' failed: {last_error}")
                continue

            elapsed = _elapsed_ms(strategy_started)
            if self.is_valid_result(result):
                self._record(entity_key, ExecutionRecord(strategy.name, True, result.confidence, elapsed))
                logger.info(
                    f"[FALLBACK] strategy '{strategy.name}' succeeded for {sanitize_for_log(context.name)} "
                    f"(confidence={result.confidence:.2f})"
                )
                return FallbackResult.ok(strategy.name, result, attempted, _elapsed_ms(started))

            last_error = "invalid_or_low_confidence_result"
            confidence = result.confidence if isinstance(result, RawSourceResult) else 0.0
            self._record(entity_key, ExecutionRecord(strategy.name, False, confidence, elapsed, last_error))
            logger.info(f"[FALLBACK] strategy '{strategy.name}' returned no usable result")

        logger.warning(f"[FALLBACK] all strategies failed for {sanitize_for_log(context.name)}")
        return FallbackResult.all_failed(attempted, last_error, _elapsed_ms(started))

    @staticmethod
    def _safe_available(strategy: FallbackStrategy, context: FallbackContext) -> bool:
        try:
            return bool(strategy.is_available(context))
        except Exception as e:
            logger.warning(f"[FALLBACK] availability check failed for '{strategy.name}': {e}")
            return False

    def _record(self, entity_key: str, record: ExecutionRecord) -> None:
        history = self._history.setdefault(entity_key, deque(maxlen=self.history_size))
        history.append(record)

        stats = self._stats.setdefault(record.strategy, StrategyStats())
        stats.attempts += 1
        stats.total_execution_ms += record.execution_ms
        if record.success:
            stats.successes += 1

    # ------------------------------------------------------------------
    # 적응형 재정렬 / 통계
    # ------------------------------------------------------------------
    def historical_success_rates(self) -> dict[str, float]:
        """엔티티 이력 전체에서 계산한 전략별 성공률"""
        attempts: dict[str, int] = {}
        successes: dict[str, int] = {}
        for history in self._history.values():
            for record in history:
                attempts[record.strategy] = attempts.get(record.strategy, 0) + 1
                if record.success:
                    successes[record.strategy] = successes.get(record.strategy, 0) + 1
        return {
            name: successes.get(name, 0) / count
            for name, count in attempts.items()
        }

    def reorder_strategies_by_success(self) -> list[str]:
        """성공률 내림차순으로 우선순위 재배치 (동률은 기존 순서 유지)

        Returns:
            재배치된 전략 이름 순서
        """
        rates = self.historical_success_rates()
        ordered = sorted(
            self._strategies,
            key=lambda s: rates.get(s.name, UNOBSERVED_SUCCESS_RATE),
            reverse=True,
        )
        for index, strategy in enumerate(ordered, start=1):
            strategy.priority = index
        self._strategies = ordered

        names = [s.name for s in ordered]
        logger.info(f"[FALLBACK] strategies reordered by success rate: {names}")
        return names

    def get_strategy_stats(self) -> dict[str, dict[str, Any]]:
        report: dict[str, dict[str, Any]] = {}
        for s in self._strategies:
            stats = self._stats.get(s.name, StrategyStats())
            report[s.name] = {
                "priority": s.priority,
                "enabled": s.enabled,
                "attempts": stats.attempts,
                "successes": stats.successes,
                "success_rate": round(stats.success_rate, 4),
                "average_execution_ms": round(stats.average_execution_ms, 2),
            }
        return report

    def get_execution_history(self, entity_key: str) -> list[ExecutionRecord]:
        return list(self._history.get(entity_key, ()))

    def clear_history(self) -> None:
        self._history.clear()
        self._stats = {s.name: StrategyStats() for s in self._strategies}


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000
