"""Search Engine Orchestrator - 다중 소스 조회와 교차 검증 진입점.

흐름:
1. 등록 순서대로(또는 제한된 병렬로) 어댑터 조회 - 어댑터별 재시도/회로 차단
2. 기본 조회가 쓸 수 없는 결과면 어댑터별 폴백 전략 실행
3. 신뢰도가 높은 결과가 나오면 남은 어댑터 조회 생략 (순차 모드)
4. 쓸 수 있는 결과가 없으면 최소 정보 레코드, 있으면 CrossValidator로 통합
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol, Sequence, runtime_checkable

from facility_crawler.core.config import Settings, settings
from facility_crawler.core.exceptions import (
    CircuitOpenException,
    InvalidResultException,
    NoAdaptersConfiguredException,
    OperationCancelledException,
)
from facility_crawler.core.logging import logger, sanitize_for_log
from facility_crawler.processors.cross_validator import CrossValidator
from facility_crawler.schemas.facility_schema import (
    MINIMAL_FALLBACK_CONFIDENCE,
    CanonicalRecord,
    FacilityEntity,
    RawSourceResult,
)

from .cancellation import CancellationToken, SleepFunc, cancellable_sleep, random_delay
from .error_policy import ErrorPolicy
from .fallback import FallbackContext, FallbackStrategyManager
from .monitor import PerformanceMonitor
from .result import SourceOutcome, SourceStatus
from .retry import AdaptiveRetryManager


@runtime_checkable
class SourceAdapter(Protocol):
    """외부 소스 어댑터

    결과가 없으면 None, 차단(403/429)은 BlockedException으로 알립니다.
    """

    name: str

    async def search(self, name: str, address: str) -> Optional[RawSourceResult]:
        ...


@dataclass
class OrchestratorConfig:
    """오케스트레이터 설정 (시간 단위: 초)"""

    high_confidence_threshold: float = 0.7
    accepted_min_confidence: float = 0.1
    request_delay_min: float = 1.0
    request_delay_max: float = 3.0
    rate_limit_cooldown: float = 10.0
    enable_parallel: bool = False
    max_concurrent: int = 1
    use_fallback: bool = True

    def __post_init__(self):
        if self.max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        if self.request_delay_max < self.request_delay_min:
            raise ValueError("request_delay_max must be >= request_delay_min")

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "OrchestratorConfig":
        s = s or settings
        return cls(
            high_confidence_threshold=s.search_high_confidence_threshold,
            accepted_min_confidence=s.search_accepted_min_confidence,
            request_delay_min=s.search_request_delay_min_s,
            request_delay_max=s.search_request_delay_max_s,
            rate_limit_cooldown=s.search_rate_limit_cooldown_s,
            enable_parallel=s.search_enable_parallel,
            max_concurrent=s.search_max_concurrent,
        )


class SearchEngineOrchestrator:
    """다중 소스 조회 오케스트레이터

    Usage:
        orchestrator = SearchEngineOrchestrator(adapters, retry_manager, fallback_managers)
        record = await orchestrator.resolve(entity.name, entity.address, original=entity)

    Raises:
        NoAdaptersConfiguredException: 생성 시 어댑터가 하나도 없는 경우
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        retry_manager: Optional[AdaptiveRetryManager] = None,
        fallback_managers: Optional[Mapping[str, FallbackStrategyManager]] = None,
        cross_validator: Optional[CrossValidator] = None,
        config: Optional[OrchestratorConfig] = None,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Optional[SleepFunc] = None,
        monitor: Optional[PerformanceMonitor] = None,
    ):
        if not adapters:
            raise NoAdaptersConfiguredException()

        names = [a.name for a in adapters]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate adapter names: {names}")

        self.adapters = list(adapters)
        self.cancel_token = cancel_token
        self.retry_manager = retry_manager or AdaptiveRetryManager(cancel_token=cancel_token)
        self.fallback_managers = dict(fallback_managers or {})
        self.cross_validator = cross_validator or CrossValidator()
        self.config = config or OrchestratorConfig.from_settings()
        self.monitor = monitor
        self.policy = ErrorPolicy()
        self._sleep = sleep or cancellable_sleep

        logger.info(
            f"[ORCHESTRATOR] initialized with {len(self.adapters)} adapters: {names} "
            f"(mode={'parallel' if self.config.enable_parallel else 'sequential'})"
        )

    # ------------------------------------------------------------------
    # 공개 API
    # ------------------------------------------------------------------
    async def resolve_entity(self, entity: FacilityEntity) -> CanonicalRecord:
        return await self.resolve(entity.name, entity.address, original=entity, entity_key=entity.key)

    async def resolve(
        self,
        name: str,
        address: str = "",
        original: Any = None,
        entity_key: Optional[str] = None,
    ) -> CanonicalRecord:
        """시설 하나를 모든 소스에서 조회하고 교차 검증

        취소 외의 오류는 밖으로 나가지 않고 폴백 레코드로 흡수됩니다.

        Raises:
            OperationCancelledException: 취소 신호 감지
        """
        original = original if original is not None else {"name": name, "address": address}
        try:
            outcomes = await self.search_all(name, address, entity_key=entity_key)
            usable = [o.data for o in outcomes if o.is_usable]
            if not usable:
                logger.warning(f"[ORCHESTRATOR] no usable results for {sanitize_for_log(name)}")
                return self.cross_validator.fallback_record(original, confidence=MINIMAL_FALLBACK_CONFIDENCE)
            return self.cross_validator.reconcile(usable, original)
        except OperationCancelledException:
            raise
        except Exception as e:
            logger.error(f"[ORCHESTRATOR] resolve failed for {sanitize_for_log(name)}: {e}", exc_info=True)
            return self.cross_validator.fallback_record(original, confidence=MINIMAL_FALLBACK_CONFIDENCE)

    async def search_all(
        self, name: str, address: str = "", entity_key: Optional[str] = None
    ) -> list[SourceOutcome]:
        """모든 어댑터 조회 결과 (등록 순서, 조기 종료 시 조회한 어댑터까지만)"""
        entity_key = entity_key or f"{name}|{address}"
        if self.config.enable_parallel and self.config.max_concurrent > 1:
            return await self._search_parallel(name, address, entity_key)
        return await self._search_sequential(name, address, entity_key)

    async def query_adapter(
        self, adapter: SourceAdapter, name: str, address: str, entity_key: str
    ) -> SourceOutcome:
        """어댑터 하나 조회: 재시도 → 검증 → (필요 시) 폴백"""
        started = time.monotonic()
        label = f"search_{adapter.name}"

        try:
            data = await self.retry_manager.execute_with_retry(
                lambda: self._call_adapter(adapter, name, address), label
            )
        except OperationCancelledException:
            raise
        except Exception as e:
            status = self._classify_error(e)
            error = f"{type(self.policy.root_cause(e)).__name__}: {self.policy.root_cause(e)}"
            logger.info(f"[ORCHESTRATOR] {adapter.name} failed ({status.value}): {error}")
        else:
            status = self._classify_result(data)
            error = None if status == SourceStatus.SUCCESS else status.value
            if status == SourceStatus.SUCCESS:
                return SourceOutcome.success(adapter.name, data, _elapsed_ms(started))

        fallback = await self._run_fallback(adapter, name, address, entity_key)
        if fallback is not None:
            return SourceOutcome.success(adapter.name, fallback, _elapsed_ms(started), via_fallback=True)

        outcome = SourceOutcome.failure(adapter.name, status, _elapsed_ms(started), error)
        if status == SourceStatus.LOW_CONFIDENCE:
            outcome.data = data
        return outcome

    # ------------------------------------------------------------------
    # 조회 모드
    # ------------------------------------------------------------------
    async def _search_sequential(self, name: str, address: str, entity_key: str) -> list[SourceOutcome]:
        outcomes: list[SourceOutcome] = []
        for index, adapter in enumerate(self.adapters):
            if index > 0:
                await self._pace(outcomes[-1], adapter.name)

            outcome = await self.query_adapter(adapter, name, address, entity_key)
            outcomes.append(outcome)

            if self._is_high_confidence(outcome):
                skipped = len(self.adapters) - index - 1
                logger.info(
                    f"[ORCHESTRATOR] high confidence from {adapter.name} "
                    f"({outcome.confidence:.2f}), skipping {skipped} adapters"
                )
                if self.monitor is not None:
                    self.monitor.record_optimization_attempt(True)
                break
        else:
            if self.monitor is not None:
                self.monitor.record_optimization_attempt(False)
        return outcomes

    async def _search_parallel(self, name: str, address: str, entity_key: str) -> list[SourceOutcome]:
        semaphore = asyncio.Semaphore(self.config.max_concurrent)
        started_calls = 0
        order = {adapter.name: i for i, adapter in enumerate(self.adapters)}

        async def _guarded(adapter: SourceAdapter) -> SourceOutcome:
            nonlocal started_calls
            async with semaphore:
                if started_calls > 0:
                    delay = random_delay(self.config.request_delay_min, self.config.request_delay_max)
                    await self._sleep(delay, self.cancel_token, f"pace:{adapter.name}")
                started_calls += 1
                return await self.query_adapter(adapter, name, address, entity_key)

        tasks = [asyncio.create_task(_guarded(adapter)) for adapter in self.adapters]
        outcomes: list[SourceOutcome] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                outcome = await next_done
                outcomes.append(outcome)
                if self._is_high_confidence(outcome):
                    logger.info(
                        f"[ORCHESTRATOR] high confidence from {outcome.engine} "
                        f"({outcome.confidence:.2f}), cancelling pending adapters"
                    )
                    if self.monitor is not None:
                        self.monitor.record_optimization_attempt(True)
                    break
            else:
                if self.monitor is not None:
                    self.monitor.record_optimization_attempt(False)
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        outcomes.sort(key=lambda o: order[o.engine])
        return outcomes

    async def _pace(self, previous: SourceOutcome, next_adapter: str) -> None:
        """어댑터 간 대기. 직전 조회가 레이트리밋이면 쿨다운으로 대체"""
        if previous.status == SourceStatus.RATE_LIMITED:
            delay = max(
                self.config.rate_limit_cooldown,
                random_delay(self.config.request_delay_min, self.config.request_delay_max),
            )
            logger.warning(f"[ORCHESTRATOR] rate limited by {previous.engine}, cooling down {delay:.1f}s")
        else:
            delay = random_delay(self.config.request_delay_min, self.config.request_delay_max)
        await self._sleep(delay, self.cancel_token, f"pace:{next_adapter}")

    # ------------------------------------------------------------------
    # 내부 헬퍼
    # ------------------------------------------------------------------
    async def _call_adapter(
        self, adapter: SourceAdapter, name: str, address: str
    ) -> Optional[RawSourceResult]:
        result = await adapter.search(name, address)
        if result is None or isinstance(result, RawSourceResult):
            return result
        if isinstance(result, dict):
            try:
                return RawSourceResult.model_validate(result)
            except Exception as e:
                raise InvalidResultException(adapter.name, f"malformed result: {e}") from e
        raise InvalidResultException(adapter.name, f"unexpected result type {type(result).__name__}")

    def _classify_result(self, data: Optional[RawSourceResult]) -> SourceStatus:
        if data is None:
            return SourceStatus.EMPTY
        if not data.name or not data.name.strip():
            return SourceStatus.INVALID
        if data.confidence <= self.config.accepted_min_confidence:
            return SourceStatus.LOW_CONFIDENCE
        return SourceStatus.SUCCESS

    def _classify_error(self, error: BaseException) -> SourceStatus:
        if self.policy.is_rate_limited(error):
            return SourceStatus.RATE_LIMITED
        if isinstance(self.policy.root_cause(error), CircuitOpenException):
            return SourceStatus.CIRCUIT_OPEN
        if self.policy.is_structural(error):
            return SourceStatus.INVALID
        return SourceStatus.FAILED

    async def _run_fallback(
        self, adapter: SourceAdapter, name: str, address: str, entity_key: str
    ) -> Optional[RawSourceResult]:
        if not self.config.use_fallback:
            return None
        manager = self.fallback_managers.get(adapter.name)
        if manager is None:
            return None

        result = await manager.execute_fallback(entity_key, FallbackContext(name, address))
        if result.success:
            logger.info(f"[ORCHESTRATOR] {adapter.name} recovered via fallback '{result.strategy}'")
            return result.data
        return None

    def _is_high_confidence(self, outcome: SourceOutcome) -> bool:
        return outcome.is_usable and outcome.confidence > self.config.high_confidence_threshold

    # ------------------------------------------------------------------
    # 통계
    # ------------------------------------------------------------------
    @staticmethod
    def generate_search_stats(outcomes: Sequence[SourceOutcome]) -> dict[str, Any]:
        """조회 결과 요약 통계"""
        total = len(outcomes)
        usable = [o for o in outcomes if o.is_usable]
        by_status: dict[str, int] = {}
        for o in outcomes:
            by_status[o.status.value] = by_status.get(o.status.value, 0) + 1

        return {
            "total_engines": total,
            "successful_engines": len(usable),
            "failed_engines": total - len(usable),
            "success_rate": round(len(usable) / total, 4) if total else 0.0,
            "fallback_recoveries": sum(1 for o in usable if o.via_fallback),
            "average_confidence": (
                round(sum(o.confidence for o in usable) / len(usable), 4) if usable else 0.0
            ),
            "average_processing_ms": (
                round(sum(o.processing_ms for o in outcomes) / total, 2) if total else 0.0
            ),
            "by_status": by_status,
            "engines": [o.engine for o in outcomes],
        }

    def get_adapter_names(self) -> list[str]:
        return [a.name for a in self.adapters]


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000
