"""Performance Monitor - 크롤링 성능 통계 수집.

카운터와 타이머만 기록하며 실행 흐름에는 영향을 주지 않습니다.
성공률/효율은 퍼센트(0~100)로 표기합니다.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Optional

from facility_crawler.core.logging import logger


def _rate(successes: int, attempts: int) -> float:
    return (successes / attempts) * 100 if attempts > 0 else 0.0


@dataclass
class AttemptStats:
    total_attempts: int = 0
    total_successes: int = 0

    @property
    def success_rate(self) -> float:
        return _rate(self.total_successes, self.total_attempts)

    def record(self, success: bool) -> None:
        self.total_attempts += 1
        if success:
            self.total_successes += 1


@dataclass
class TimeStats:
    total_processing_time: float = 0.0  # 초
    total_wait_time: float = 0.0  # 초

    @property
    def processing_efficiency(self) -> float:
        """처리 시간 / (처리 + 대기) 비율 (%)"""
        total = self.total_processing_time + self.total_wait_time
        return (self.total_processing_time / total) * 100 if total > 0 else 0.0


@dataclass
class SystemStats:
    consecutive_failures: int = 0
    current_batch_size: int = 10
    max_consecutive_failures: int = 3


@dataclass
class PerformanceStats:
    """세션 누적 통계"""

    batch: AttemptStats = field(default_factory=AttemptStats)
    individual: AttemptStats = field(default_factory=AttemptStats)
    fallback_successes: int = 0
    time: TimeStats = field(default_factory=TimeStats)
    retry: AttemptStats = field(default_factory=AttemptStats)
    optimization: AttemptStats = field(default_factory=AttemptStats)
    system: SystemStats = field(default_factory=SystemStats)

    @property
    def fallback_success_rate(self) -> float:
        return _rate(self.fallback_successes, self.individual.total_attempts)


class PerformanceMonitor:
    """성능 모니터

    Usage:
        monitor = PerformanceMonitor()
        monitor.start()
        monitor.record_batch_attempt(True, 1.2)
        print(monitor.generate_performance_report())
    """

    def __init__(
        self,
        enable_real_time_monitoring: bool = True,
        report_interval_s: float = 10.0,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.enable_real_time_monitoring = enable_real_time_monitoring
        self.report_interval_s = report_interval_s
        self._clock = clock or time.monotonic
        self.stats = PerformanceStats()
        self._start_time: float = 0.0
        self._last_report_time: float = 0.0

    def start(self) -> None:
        """모니터링 시작"""
        self._start_time = self._clock()
        self._last_report_time = self._start_time
        logger.info("[MONITOR] performance monitoring started")

    def record_batch_attempt(self, success: bool, processing_time: float) -> None:
        self.stats.batch.record(success)
        self.stats.time.total_processing_time += max(0.0, processing_time)
        self._check_report_interval()

    def record_individual_attempt(self, success: bool, processing_time: float) -> None:
        self.stats.individual.record(success)
        self.stats.time.total_processing_time += max(0.0, processing_time)

    def record_fallback_success(self) -> None:
        self.stats.fallback_successes += 1

    def record_retry_attempt(self, success: bool) -> None:
        self.stats.retry.record(success)

    def record_optimization_attempt(self, success: bool) -> None:
        self.stats.optimization.record(success)

    def record_wait_time(self, wait_time: float) -> None:
        self.stats.time.total_wait_time += max(0.0, wait_time)

    def update_system_stats(
        self, consecutive_failures: int, current_batch_size: int, max_consecutive_failures: int
    ) -> None:
        self.stats.system = SystemStats(consecutive_failures, current_batch_size, max_consecutive_failures)

    def _check_report_interval(self) -> None:
        if not self.enable_real_time_monitoring:
            return
        now = self._clock()
        if now - self._last_report_time >= self.report_interval_s:
            self._log_real_time_report(now)
            self._last_report_time = now

    def _log_real_time_report(self, now: float) -> None:
        s = self.stats
        logger.info(
            f"[MONITOR] {now - self._start_time:.1f}s elapsed | "
            f"batch={s.batch.success_rate:.1f}% individual={s.individual.success_rate:.1f}% "
            f"efficiency={s.time.processing_efficiency:.1f}% "
            f"consecutive_failures={s.system.consecutive_failures}"
        )

    def get_stats(self) -> dict[str, Any]:
        """구조화된 통계 덤프"""
        s = self.stats
        return {
            "batch": {**asdict(s.batch), "success_rate": round(s.batch.success_rate, 2)},
            "individual": {**asdict(s.individual), "success_rate": round(s.individual.success_rate, 2)},
            "fallback": {
                "total_fallback_successes": s.fallback_successes,
                "fallback_success_rate": round(s.fallback_success_rate, 2),
            },
            "time": {
                **asdict(s.time),
                "processing_efficiency": round(s.time.processing_efficiency, 2),
            },
            "retry": {**asdict(s.retry), "success_rate": round(s.retry.success_rate, 2)},
            "optimization": {**asdict(s.optimization), "success_rate": round(s.optimization.success_rate, 2)},
            "system": asdict(s.system),
        }

    def generate_performance_report(self) -> str:
        """텍스트 성능 리포트"""
        s = self.stats
        lines = [
            "",
            "크롤링 성능 리포트",
            "=" * 50,
            "",
            "[배치 처리]",
            f"   - 총 배치 시도: {s.batch.total_attempts}회",
            f"   - 배치 성공: {s.batch.total_successes}회",
            f"   - 배치 성공률: {s.batch.success_rate:.1f}%",
            "",
            "[개별 처리]",
            f"   - 총 개별 시도: {s.individual.total_attempts}회",
            f"   - 개별 성공: {s.individual.total_successes}회",
            f"   - 개별 성공률: {s.individual.success_rate:.1f}%",
            "",
            "[폴백]",
            f"   - 폴백 레코드 생성: {s.fallback_successes}회",
            f"   - 폴백 비율: {s.fallback_success_rate:.1f}%",
            "",
            "[시간]",
            f"   - 총 처리 시간: {s.time.total_processing_time:.1f}초",
            f"   - 총 대기 시간: {s.time.total_wait_time:.1f}초",
            f"   - 처리 효율성: {s.time.processing_efficiency:.1f}%",
            "",
            "[재시도]",
            f"   - 재시도 시도: {s.retry.total_attempts}회",
            f"   - 재시도 성공: {s.retry.total_successes}회",
            f"   - 재시도 성공률: {s.retry.success_rate:.1f}%",
            "",
            "[최적화]",
            f"   - 최적화 시도: {s.optimization.total_attempts}회",
            f"   - 최적화 성공: {s.optimization.total_successes}회",
            f"   - 최적화 성공률: {s.optimization.success_rate:.1f}%",
            "",
            "[시스템 상태]",
            f"   - 연속 실패: {s.system.consecutive_failures}회",
            f"   - 현재 배치 크기: {s.system.current_batch_size}개",
            f"   - 최대 연속 실패 허용: {s.system.max_consecutive_failures}회",
        ]
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """통계 리셋"""
        self.stats = PerformanceStats()
        self._start_time = 0.0
        self._last_report_time = 0.0
        logger.info("[MONITOR] performance stats reset")
