"""PerformanceMonitor 유닛 테스트"""
import pytest

from facility_crawler.engine.monitor import PerformanceMonitor


def test_counts_and_rates():
    monitor = PerformanceMonitor(enable_real_time_monitoring=False)
    monitor.start()
    monitor.record_batch_attempt(True, 2.0)
    monitor.record_batch_attempt(False, 1.0)
    monitor.record_individual_attempt(True, 0.5)
    monitor.record_individual_attempt(False, 0.5)
    monitor.record_fallback_success()
    monitor.record_wait_time(4.0)

    stats = monitor.get_stats()

    assert stats["batch"]["total_attempts"] == 2
    assert stats["batch"]["success_rate"] == pytest.approx(50.0)
    assert stats["individual"]["success_rate"] == pytest.approx(50.0)
    assert stats["fallback"]["fallback_success_rate"] == pytest.approx(50.0)
    assert stats["time"]["total_processing_time"] == pytest.approx(4.0)
    assert stats["time"]["processing_efficiency"] == pytest.approx(50.0)


def test_rates_are_zero_without_attempts():
    stats = PerformanceMonitor().get_stats()
    assert stats["batch"]["success_rate"] == 0.0
    assert stats["time"]["processing_efficiency"] == 0.0


def test_report_contains_sections():
    monitor = PerformanceMonitor(enable_real_time_monitoring=False)
    monitor.update_system_stats(consecutive_failures=2, current_batch_size=5, max_consecutive_failures=3)
    report = monitor.generate_performance_report()

    assert "[배치 처리]" in report
    assert "현재 배치 크기: 5개" in report
    assert "연속 실패: 2회" in report


def test_real_time_report_respects_interval():
    now = {"t": 0.0}
    monitor = PerformanceMonitor(report_interval_s=10.0, clock=lambda: now["t"])
    monitor.start()

    monitor.record_batch_attempt(True, 1.0)
    assert monitor._last_report_time == 0.0

    now["t"] = 11.0
    monitor.record_batch_attempt(True, 1.0)
    assert monitor._last_report_time == 11.0


def test_reset():
    monitor = PerformanceMonitor()
    monitor.record_retry_attempt(True)
    monitor.record_optimization_attempt(False)
    monitor.reset()

    stats = monitor.get_stats()
    assert stats["retry"]["total_attempts"] == 0
    assert stats["optimization"]["total_attempts"] == 0
