"""시설 정보 교차 검증 서비스 - 구성 요소 조립과 실행 제어

- 조회는 SearchEngineOrchestrator
- 배치 분할/적응은 BatchProcessor
- 저장은 RecordSink (실패해도 실행 결과는 유지)
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional, Sequence

from facility_crawler.core.config import Settings, settings
from facility_crawler.core.exceptions import ValidationException
from facility_crawler.core.logging import logger
from facility_crawler.engine.batch import BatchConfig, BatchProcessor, BatchRunResult
from facility_crawler.engine.cancellation import CancellationToken, SleepFunc
from facility_crawler.engine.fallback import FallbackStrategy, FallbackStrategyManager
from facility_crawler.engine.monitor import PerformanceMonitor
from facility_crawler.engine.orchestrator import (
    OrchestratorConfig,
    SearchEngineOrchestrator,
    SourceAdapter,
)
from facility_crawler.engine.retry import AdaptiveRetryManager, RetryConfig
from facility_crawler.processors.cross_validator import CrossValidator
from facility_crawler.schemas.facility_schema import CanonicalRecord, FacilityEntity

from .persistence import RecordSink


class ReconciliationService:
    """시설 목록 전체를 조회/교차 검증하는 서비스

    Usage:
        service = ReconciliationService(adapters, fallback_strategies)
        run = await service.run(entities)
        print(service.get_performance_report()["report"])
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        fallback_strategies: Optional[Mapping[str, Sequence[FallbackStrategy]]] = None,
        sink: Optional[RecordSink] = None,
        s: Optional[Settings] = None,
        retry_config: Optional[RetryConfig] = None,
        orchestrator_config: Optional[OrchestratorConfig] = None,
        batch_config: Optional[BatchConfig] = None,
        sleep: Optional[SleepFunc] = None,
        max_concurrency: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        s = s or settings
        self.sink = sink
        self.cancel_token = cancel_token or CancellationToken()
        self.monitor = PerformanceMonitor()
        self.max_concurrency = max_concurrency or s.batch_max_concurrency
        self.cross_validator = CrossValidator()

        self.retry_manager = AdaptiveRetryManager(
            retry_config or RetryConfig.from_settings(s), cancel_token=self.cancel_token, sleep=sleep
        )

        self.fallback_managers: dict[str, FallbackStrategyManager] = {}
        for adapter_name, strategies in (fallback_strategies or {}).items():
            manager = FallbackStrategyManager(
                self.retry_manager,
                accepted_min_confidence=s.search_accepted_min_confidence,
                history_size=s.fallback_history_size,
                label_prefix=f"fallback_{adapter_name}",
            )
            for strategy in strategies:
                manager.register_strategy(strategy)
            self.fallback_managers[adapter_name] = manager

        self.orchestrator = SearchEngineOrchestrator(
            adapters,
            retry_manager=self.retry_manager,
            fallback_managers=self.fallback_managers,
            cross_validator=self.cross_validator,
            config=orchestrator_config or OrchestratorConfig.from_settings(s),
            cancel_token=self.cancel_token,
            sleep=sleep,
            monitor=self.monitor,
        )
        self.batch_processor: BatchProcessor[FacilityEntity] = BatchProcessor(
            batch_config or BatchConfig.from_settings(s),
            monitor=self.monitor,
            cancel_token=self.cancel_token,
            sleep=sleep,
        )
        self.last_run: Optional[BatchRunResult] = None

    # ------------------------------------------------------------------
    # 실행
    # ------------------------------------------------------------------
    async def run(self, entities: Sequence[Any]) -> BatchRunResult:
        """시설 목록 처리

        Raises:
            ValidationException: 입력 항목을 FacilityEntity로 변환할 수 없는 경우
        """
        items = self._coerce_entities(entities)
        self.cancel_token.reset()
        self.monitor.start()
        successes_before = self.retry_manager.metrics.successful_attempts
        failures_before = self.retry_manager.metrics.failed_attempts

        run = await self.batch_processor.run(items, self.process_batch)
        self.last_run = run

        self._record_retry_stats(successes_before, failures_before)
        await self._persist(run.results)
        return run

    async def process_batch(self, batch: list[FacilityEntity]) -> list[CanonicalRecord]:
        """배치 하나를 (제한된 동시성으로) 처리

        한 엔티티에서 예외(취소 포함)가 나면 나머지 작업을 취소하고 정리한 뒤 다시 던집니다.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _one(entity: FacilityEntity) -> CanonicalRecord:
            async with semaphore:
                return await self.orchestrator.resolve_entity(entity)

        tasks = [asyncio.create_task(_one(e)) for e in batch]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def cancel(self, reason: str = "cancelled by user") -> None:
        logger.warning(f"[SERVICE] cancellation requested: {reason}")
        self.cancel_token.cancel(reason)

    # ------------------------------------------------------------------
    # 런타임 제어
    # ------------------------------------------------------------------
    def set_batch_size(self, size: int) -> bool:
        return self.batch_processor.set_batch_size(size)

    def set_max_consecutive_failures(self, count: int) -> bool:
        return self.batch_processor.set_max_consecutive_failures(count)

    def enable_strategy(self, name: str) -> bool:
        return self._for_each_manager(lambda m: m.enable_strategy(name), name)

    def disable_strategy(self, name: str) -> bool:
        return self._for_each_manager(lambda m: m.disable_strategy(name), name)

    def reorder_strategies(self) -> dict[str, list[str]]:
        return {
            adapter_name: manager.reorder_strategies_by_success()
            for adapter_name, manager in self.fallback_managers.items()
        }

    def reset_stats(self) -> None:
        self.monitor.reset()
        self.retry_manager.reset_metrics()
        self.retry_manager.reset_circuits()
        for manager in self.fallback_managers.values():
            manager.clear_history()
        self.batch_processor.reset()
        logger.info("[SERVICE] statistics reset")

    def get_performance_report(self) -> dict[str, Any]:
        return {
            "report": self.monitor.generate_performance_report(),
            "stats": self.monitor.get_stats(),
            "retry": self.retry_manager.get_metrics(),
            "strategies": {
                adapter_name: manager.get_strategy_stats()
                for adapter_name, manager in self.fallback_managers.items()
            },
            "last_run": self.last_run.summary() if self.last_run else None,
        }

    # ------------------------------------------------------------------
    # 내부 헬퍼
    # ------------------------------------------------------------------
    def _for_each_manager(self, action, name: str) -> bool:
        # 전략 이름이 없는 관리자에서는 경고 로그 없이 건너뜀
        results = [action(m) for m in self.fallback_managers.values() if m.get_strategy(name) is not None]
        if not results:
            logger.warning(f"[SERVICE] unknown strategy: {name}")
        return any(results)

    @staticmethod
    def _coerce_entities(entities: Sequence[Any]) -> list[FacilityEntity]:
        items: list[FacilityEntity] = []
        for index, raw in enumerate(entities):
            if isinstance(raw, FacilityEntity):
                items.append(raw)
                continue
            try:
                items.append(FacilityEntity.model_validate(raw))
            except Exception as e:
                raise ValidationException(f"entities[{index}]", str(e)) from e
        return items

    def _record_retry_stats(self, successes_before: int, failures_before: int) -> None:
        metrics = self.retry_manager.metrics
        for _ in range(metrics.successful_attempts - successes_before):
            self.monitor.record_retry_attempt(True)
        for _ in range(metrics.failed_attempts - failures_before):
            self.monitor.record_retry_attempt(False)

    async def _persist(self, records: list[CanonicalRecord]) -> None:
        if self.sink is None:
            return
        try:
            await self.sink.save_records(records)
            logger.info(f"[SERVICE] persisted {len(records)} records")
        except Exception as e:
            logger.error(f"[SERVICE] persistence failed: {type(e).__name__}: {e}", exc_info=True)
