"""Batch Processor - 적응형 배치 크기 조절과 개별 재시도.

- 배치 성공: 크기 +1 (상한 max_batch_size), 연속 실패 카운터 초기화
- 배치 실패 (예외 또는 쓸 수 있는 레코드가 하나도 없음):
  연속 실패가 기준 이상이면 크기 절반 (하한 min_batch_size),
  이어서 배치 내 엔티티를 하나씩 재시도. 그래도 실패하면 최소 정보 레코드로 대체
- 최근 성공률이 기준 미만이면 추가 쿨다운
- 배치 사이에는 항상 무작위 지연

입력 N개에 대해 항상 입력 순서대로 N개의 레코드를 반환합니다.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

from facility_crawler.core.config import Settings, settings
from facility_crawler.core.exceptions import (
    CrawlerException,
    InvalidResultException,
    OperationCancelledException,
)
from facility_crawler.core.logging import logger
from facility_crawler.processors.cross_validator import CrossValidator
from facility_crawler.schemas.facility_schema import (
    MINIMAL_FALLBACK_CONFIDENCE,
    SOURCE_BATCH_FALLBACK,
    CanonicalRecord,
)

from .cancellation import CancellationToken, SleepFunc, cancellable_sleep, random_delay
from .monitor import PerformanceMonitor


E = TypeVar("E")

ProcessBatch = Callable[[list[E]], Awaitable[list[CanonicalRecord]]]

# 개별 재시도 중 이 비율 이상 성공하면 연속 실패 카운터를 1 감소
PARTIAL_RECOVERY_RATIO = 0.5


@dataclass
class BatchConfig:
    """배치 처리 설정 (시간 단위: 초)"""

    initial_batch_size: int = 10
    min_batch_size: int = 1
    max_batch_size: int = 20
    max_consecutive_failures: int = 3
    batch_delay: tuple[float, float] = (2.0, 5.0)
    low_success_rate_threshold: float = 0.8
    low_success_rate_delay: tuple[float, float] = (5.0, 10.0)
    individual_delay: tuple[float, float] = (1.0, 3.0)
    accepted_min_confidence: float = 0.1
    success_rate_window: int = 50

    def __post_init__(self):
        if not 1 <= self.min_batch_size <= self.initial_batch_size <= self.max_batch_size:
            raise ValueError("batch sizes must satisfy 1 <= min <= initial <= max")
        if self.max_consecutive_failures <= 0:
            raise ValueError("max_consecutive_failures must be positive")
        if self.success_rate_window <= 0:
            raise ValueError("success_rate_window must be positive")
        for label, (low, high) in (
            ("batch_delay", self.batch_delay),
            ("low_success_rate_delay", self.low_success_rate_delay),
            ("individual_delay", self.individual_delay),
        ):
            if low < 0 or high < low:
                raise ValueError(f"{label} must satisfy 0 <= min <= max")

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "BatchConfig":
        s = s or settings
        return cls(
            initial_batch_size=s.batch_initial_size,
            min_batch_size=s.batch_min_size,
            max_batch_size=s.batch_max_size,
            max_consecutive_failures=s.batch_max_consecutive_failures,
            batch_delay=(s.batch_delay_min_s, s.batch_delay_max_s),
            low_success_rate_threshold=s.batch_low_success_rate_threshold,
            low_success_rate_delay=(s.batch_low_success_rate_delay_min_s, s.batch_low_success_rate_delay_max_s),
            individual_delay=(s.batch_individual_delay_min_s, s.batch_individual_delay_max_s),
            accepted_min_confidence=s.search_accepted_min_confidence,
        )


@dataclass
class BatchRunResult:
    """배치 실행 결과"""

    results: list[CanonicalRecord] = field(default_factory=list)
    total_batches: int = 0
    successful_batches: int = 0
    failed_batches: int = 0
    processed_entities: int = 0
    degraded_entities: int = 0
    processing_ms: float = 0.0
    cancelled: bool = False

    @property
    def average_batch_size(self) -> float:
        return self.processed_entities / self.total_batches if self.total_batches else 0.0

    @property
    def success_rate(self) -> float:
        return self.successful_batches / self.total_batches if self.total_batches else 0.0

    def summary(self) -> dict[str, Any]:
        return {
            "total_entities": len(self.results),
            "total_batches": self.total_batches,
            "successful_batches": self.successful_batches,
            "failed_batches": self.failed_batches,
            "average_batch_size": round(self.average_batch_size, 2),
            "degraded_entities": self.degraded_entities,
            "processing_ms": round(self.processing_ms, 2),
            "cancelled": self.cancelled,
        }


class BatchProcessor(Generic[E]):
    """적응형 배치 처리기

    Usage:
        processor = BatchProcessor(BatchConfig(initial_batch_size=5))
        run = await processor.run(entities, service.process_batch)
        assert len(run.results) == len(entities)
    """

    def __init__(
        self,
        config: Optional[BatchConfig] = None,
        monitor: Optional[PerformanceMonitor] = None,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Optional[SleepFunc] = None,
        fallback_builder: Optional[Callable[[E], CanonicalRecord]] = None,
    ):
        self.config = config or BatchConfig.from_settings()
        self.monitor = monitor
        self.cancel_token = cancel_token
        self._sleep = sleep or cancellable_sleep
        self._fallback_builder = fallback_builder or _default_fallback_builder()
        self.current_batch_size = self.config.initial_batch_size
        self.consecutive_failures = 0
        self._recent: deque[bool] = deque(maxlen=self.config.success_rate_window)

    # ------------------------------------------------------------------
    # 실행
    # ------------------------------------------------------------------
    async def run(self, entities: Sequence[E], process_batch: ProcessBatch) -> BatchRunResult:
        """엔티티 전체를 배치 단위로 처리

        취소되면 남은 엔티티는 최소 정보 레코드로 채워 길이를 맞춥니다.
        """
        entities = list(entities)
        run = BatchRunResult()
        started = time.monotonic()
        total = len(entities)

        logger.info(f"[BATCH] start: {total} entities (batch size {self.current_batch_size})")

        index = 0
        try:
            while index < total:
                self._check_cancelled("batch:start")

                batch = entities[index : index + self.current_batch_size]
                run.total_batches += 1
                logger.info(
                    f"[BATCH] batch {run.total_batches} "
                    f"({index + 1}-{index + len(batch)}/{total}, size={len(batch)})"
                )

                records = await self._process_one_batch(batch, process_batch, run)
                run.results.extend(records)
                run.processed_entities += len(batch)
                index += len(batch)

                self._update_monitor()

                if index < total:
                    await self._cooldown_if_low_success_rate()
                    await self._wait(self.config.batch_delay, "batch:delay")
        except OperationCancelledException as e:
            run.cancelled = True
            remaining = entities[len(run.results) :]
            logger.warning(f"[BATCH] cancelled ({e}); filling {len(remaining)} remaining entities")
            for entity in remaining:
                run.results.append(self._build_fallback(entity))
                run.degraded_entities += 1

        run.processing_ms = (time.monotonic() - started) * 1000
        logger.info(f"[BATCH] done: {run.summary()}")
        return run

    async def _process_one_batch(
        self, batch: list[E], process_batch: ProcessBatch, run: BatchRunResult
    ) -> list[CanonicalRecord]:
        started = time.monotonic()
        try:
            records = await process_batch(batch)
            self._validate(records, len(batch))
            if all(self._is_degraded(r) for r in records):
                raise CrawlerException(
                    f"no usable records in batch of {len(batch)}", "BATCH_DEGRADED", {"size": len(batch)}
                )
        except OperationCancelledException:
            raise
        except Exception as e:
            run.failed_batches += 1
            if self.monitor is not None:
                self.monitor.record_batch_attempt(False, time.monotonic() - started)
            logger.warning(f"[BATCH] batch failed: {type(e).__name__}: {e}")
            self._on_batch_failure()
            return await self._process_individually(batch, process_batch, run)

        run.successful_batches += 1
        if self.monitor is not None:
            self.monitor.record_batch_attempt(True, time.monotonic() - started)
        self._on_batch_success()
        self._track(records)
        return list(records)

    async def _process_individually(
        self, batch: list[E], process_batch: ProcessBatch, run: BatchRunResult
    ) -> list[CanonicalRecord]:
        """실패한 배치를 엔티티 하나씩 재시도

        예외가 나거나 쓸 수 있는 레코드가 없으면 실패로 보고 폴백 레코드를 사용합니다.
        """
        logger.info(f"[BATCH] retrying {len(batch)} entities individually")
        records: list[CanonicalRecord] = []
        recovered = 0

        for entity in batch:
            started = time.monotonic()
            try:
                await self._wait(self.config.individual_delay, "batch:individual")
                single = await process_batch([entity])
                self._validate(single, 1)
            except OperationCancelledException:
                # 이미 처리한 엔티티는 유지하고 나머지는 run()에서 채움
                self._track(records)
                run.results.extend(records)
                raise
            except Exception as e:
                logger.info(f"[BATCH] individual retry failed: {type(e).__name__}: {e}")
                records.append(self._degrade(entity, None, started, run))
                continue

            if self._is_degraded(single[0]):
                logger.info(f"[BATCH] individual retry degraded: source={single[0].source}")
                records.append(self._degrade(entity, single[0], started, run))
                continue

            recovered += 1
            if self.monitor is not None:
                self.monitor.record_individual_attempt(True, time.monotonic() - started)
            records.append(single[0])

        if batch and recovered / len(batch) >= PARTIAL_RECOVERY_RATIO and self.consecutive_failures > 0:
            self.consecutive_failures -= 1
            logger.info(
                f"[BATCH] {recovered}/{len(batch)} recovered individually, "
                f"consecutive failures -> {self.consecutive_failures}"
            )

        self._track(records)
        return records

    def _degrade(
        self, entity: E, record: Optional[CanonicalRecord], started: float, run: BatchRunResult
    ) -> CanonicalRecord:
        """개별 재시도 실패 처리. 이미 폴백 레코드면 그대로 사용"""
        if self.monitor is not None:
            self.monitor.record_individual_attempt(False, time.monotonic() - started)
            self.monitor.record_fallback_success()
        run.degraded_entities += 1
        if record is not None and record.is_fallback:
            return record
        return self._build_fallback(entity)

    def _is_degraded(self, record: CanonicalRecord) -> bool:
        return record.is_fallback or record.confidence <= self.config.accepted_min_confidence

    # ------------------------------------------------------------------
    # 크기 조절
    # ------------------------------------------------------------------
    def _on_batch_success(self) -> None:
        self.consecutive_failures = 0
        if self.current_batch_size < self.config.max_batch_size:
            self.current_batch_size += 1
            logger.debug(f"[BATCH] batch size increased to {self.current_batch_size}")

    def _on_batch_failure(self) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.config.max_consecutive_failures:
            previous = self.current_batch_size
            self.current_batch_size = max(self.config.min_batch_size, previous // 2)
            logger.warning(
                f"[BATCH] {self.consecutive_failures} consecutive failures, "
                f"batch size {previous} -> {self.current_batch_size}"
            )

    # ------------------------------------------------------------------
    # 대기 / 성공률
    # ------------------------------------------------------------------
    def _track(self, records: Sequence[CanonicalRecord]) -> None:
        for record in records:
            self._recent.append(record.confidence > self.config.accepted_min_confidence)

    def recent_success_rate(self) -> float:
        if not self._recent:
            return 1.0
        return sum(self._recent) / len(self._recent)

    async def _cooldown_if_low_success_rate(self) -> None:
        rate = self.recent_success_rate()
        if rate < self.config.low_success_rate_threshold:
            logger.warning(
                f"[BATCH] low success rate {rate:.1%} "
                f"(< {self.config.low_success_rate_threshold:.0%}), cooling down"
            )
            await self._wait(self.config.low_success_rate_delay, "batch:low_success_rate")

    async def _wait(self, window: tuple[float, float], where: str) -> None:
        delay = random_delay(*window)
        if self.monitor is not None:
            self.monitor.record_wait_time(delay)
        await self._sleep(delay, self.cancel_token, where)

    def _check_cancelled(self, where: str) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled(where)

    @staticmethod
    def _validate(records: Any, expected: int) -> None:
        if not isinstance(records, list):
            raise InvalidResultException("batch", f"expected list, got {type(records).__name__}")
        if len(records) != expected:
            raise InvalidResultException("batch", f"expected {expected} records, got {len(records)}")
        if not all(isinstance(r, CanonicalRecord) for r in records):
            raise InvalidResultException("batch", "non-record item in batch result")

    def _build_fallback(self, entity: E) -> CanonicalRecord:
        return self._fallback_builder(entity)

    def _update_monitor(self) -> None:
        if self.monitor is not None:
            self.monitor.update_system_stats(
                self.consecutive_failures, self.current_batch_size, self.config.max_consecutive_failures
            )

    # ------------------------------------------------------------------
    # 런타임 제어
    # ------------------------------------------------------------------
    def get_current_batch_size(self) -> int:
        return self.current_batch_size

    def set_batch_size(self, size: int) -> bool:
        if not self.config.min_batch_size <= size <= self.config.max_batch_size:
            logger.warning(
                f"[BATCH] batch size {size} out of range "
                f"[{self.config.min_batch_size}, {self.config.max_batch_size}]"
            )
            return False
        self.current_batch_size = size
        logger.info(f"[BATCH] batch size set to {size}")
        return True

    def set_max_consecutive_failures(self, count: int) -> bool:
        if count <= 0:
            logger.warning(f"[BATCH] invalid max consecutive failures: {count}")
            return False
        self.config.max_consecutive_failures = count
        logger.info(f"[BATCH] max consecutive failures set to {count}")
        return True

    def reset(self) -> None:
        self.current_batch_size = self.config.initial_batch_size
        self.consecutive_failures = 0
        self._recent.clear()


def _default_fallback_builder() -> Callable[[Any], CanonicalRecord]:
    validator = CrossValidator()

    def _build(entity: Any) -> CanonicalRecord:
        return validator.fallback_record(
            entity, confidence=MINIMAL_FALLBACK_CONFIDENCE, source=SOURCE_BATCH_FALLBACK
        )

    return _build
