"""SearchEngineOrchestrator 유닛 테스트"""
import pytest

from facility_crawler.core.exceptions import BlockedException, NoAdaptersConfiguredException, OperationCancelledException
from facility_crawler.engine.cancellation import CancellationToken
from facility_crawler.engine.fallback import FallbackStrategyManager, FunctionStrategy
from facility_crawler.engine.monitor import PerformanceMonitor
from facility_crawler.engine.orchestrator import OrchestratorConfig, SearchEngineOrchestrator
from facility_crawler.engine.result import SourceStatus
from facility_crawler.engine.retry import AdaptiveRetryManager
from facility_crawler.schemas.facility_schema import SOURCE_FALLBACK_ERROR_RECOVERY


@pytest.fixture
def build(fast_retry_config, fast_orchestrator_config, recording_sleep):
    """어댑터 목록으로 오케스트레이터 생성"""

    def _build(adapters, config=None, fallback_managers=None, cancel_token=None, monitor=None):
        retry = AdaptiveRetryManager(fast_retry_config, cancel_token=cancel_token, sleep=recording_sleep)
        return SearchEngineOrchestrator(
            adapters,
            retry_manager=retry,
            fallback_managers=fallback_managers,
            config=config or fast_orchestrator_config,
            cancel_token=cancel_token,
            sleep=recording_sleep,
            monitor=monitor,
        )

    return _build


def _fallback_manager(fast_retry_config, recording_sleep, *strategies):
    manager = FallbackStrategyManager(
        AdaptiveRetryManager(fast_retry_config, sleep=recording_sleep), accepted_min_confidence=0.1
    )
    for strategy in strategies:
        manager.register_strategy(strategy)
    return manager


def test_requires_adapters():
    with pytest.raises(NoAdaptersConfiguredException):
        SearchEngineOrchestrator([])


def test_rejects_duplicate_adapter_names(adapter_factory):
    with pytest.raises(ValueError):
        SearchEngineOrchestrator([adapter_factory("naver"), adapter_factory("naver")])


@pytest.mark.asyncio
async def test_high_confidence_skips_remaining(build, adapter_factory, result_factory, facility):
    first = adapter_factory("naver", result_factory("naver", confidence=0.8, phone="02-1234-5678"))
    second = adapter_factory("daum", result_factory("daum", confidence=0.5))
    monitor = PerformanceMonitor(enable_real_time_monitoring=False)
    orchestrator = build([first, second], monitor=monitor)

    outcomes = await orchestrator.search_all(facility["name"], facility["address"])

    assert [o.engine for o in outcomes] == ["naver"]
    assert second.calls == 0
    assert monitor.stats.optimization.total_successes == 1


@pytest.mark.asyncio
async def test_threshold_is_exclusive(build, adapter_factory, result_factory, facility):
    first = adapter_factory("naver", result_factory("naver", confidence=0.7))
    second = adapter_factory("daum", result_factory("daum", confidence=0.5))
    orchestrator = build([first, second])

    outcomes = await orchestrator.search_all(facility["name"], facility["address"])

    assert len(outcomes) == 2
    assert second.calls == 1


@pytest.mark.asyncio
async def test_phone_corroboration(build, adapter_factory, result_factory, facility):
    adapters = [
        adapter_factory("naver", result_factory("naver", confidence=0.5, phone="02-1234-5678")),
        adapter_factory("daum", result_factory("daum", confidence=0.5, phone="02-1234-5678")),
        adapter_factory("google", result_factory("google", confidence=0.5, phone="02-9999-0000")),
    ]
    orchestrator = build(adapters)

    record = await orchestrator.resolve(facility["name"], facility["address"])

    assert record.phone == "02-1234-5678"
    assert record.confidence >= 0.5 + 0.3 - 1e-9
    assert record.source == "cross_validated_3_sources"


@pytest.mark.asyncio
async def test_all_sources_and_fallbacks_fail(
    build, adapter_factory, facility, fast_retry_config, recording_sleep
):
    async def failing(ctx):
        raise RuntimeError("fallback down")

    adapters = [adapter_factory("naver", RuntimeError("down")), adapter_factory("daum", RuntimeError("down"))]
    managers = {
        a.name: _fallback_manager(fast_retry_config, recording_sleep, FunctionStrategy("retry_page", 1, failing))
        for a in adapters
    }
    orchestrator = build(adapters, fallback_managers=managers)

    record = await orchestrator.resolve(facility["name"], facility["address"])

    assert record.source == SOURCE_FALLBACK_ERROR_RECOVERY
    assert record.confidence <= 0.1
    assert record.name == facility["name"]
    assert record.address == facility["address"]
    assert record.is_fallback


@pytest.mark.asyncio
async def test_fallback_recovers_adapter(
    build, adapter_factory, result_factory, facility, fast_retry_config, recording_sleep
):
    async def recover(ctx):
        return result_factory("naver", confidence=0.6, phone="02-1234-5678")

    adapter = adapter_factory("naver", None)
    managers = {"naver": _fallback_manager(fast_retry_config, recording_sleep, FunctionStrategy("simplified", 1, recover))}
    orchestrator = build([adapter], fallback_managers=managers)

    outcomes = await orchestrator.search_all(facility["name"], facility["address"], entity_key="gym-1")

    assert outcomes[0].status == SourceStatus.SUCCESS
    assert outcomes[0].via_fallback
    assert managers["naver"].get_execution_history("gym-1")[0].success


@pytest.mark.asyncio
async def test_rate_limit_triggers_cooldown(build, adapter_factory, result_factory, facility, recording_sleep):
    config = OrchestratorConfig(request_delay_min=0.0, request_delay_max=0.0, rate_limit_cooldown=10.0)
    adapters = [
        adapter_factory("naver", BlockedException("naver", 429)),
        adapter_factory("daum", result_factory("daum", confidence=0.5)),
    ]
    orchestrator = build(adapters, config=config)

    outcomes = await orchestrator.search_all(facility["name"], facility["address"])

    assert outcomes[0].status == SourceStatus.RATE_LIMITED
    assert recording_sleep.waits("pace:daum") == [10.0]


@pytest.mark.asyncio
async def test_delay_between_adapters(build, adapter_factory, facility, recording_sleep):
    config = OrchestratorConfig(request_delay_min=1.5, request_delay_max=1.5)
    adapters = [adapter_factory("naver", None), adapter_factory("daum", None), adapter_factory("google", None)]
    orchestrator = build(adapters, config=config)

    await orchestrator.search_all(facility["name"], facility["address"])

    assert recording_sleep.waits("pace:") == [1.5, 1.5]


@pytest.mark.asyncio
async def test_invalid_result_is_not_retried(build, adapter_factory, facility):
    adapter = adapter_factory("naver", "not-a-record")
    orchestrator = build([adapter])

    outcomes = await orchestrator.search_all(facility["name"], facility["address"])

    assert outcomes[0].status == SourceStatus.INVALID
    assert adapter.calls == 1


@pytest.mark.asyncio
async def test_dict_result_is_coerced(build, adapter_factory, facility):
    adapter = adapter_factory("naver", {"name": "강남 피트니스", "confidence": 0.5, "source": "naver"})
    orchestrator = build([adapter])

    outcomes = await orchestrator.search_all(facility["name"], facility["address"])

    assert outcomes[0].is_usable


@pytest.mark.asyncio
async def test_low_confidence_is_not_usable(build, adapter_factory, result_factory, facility):
    orchestrator = build([adapter_factory("naver", result_factory("naver", confidence=0.1))])

    outcomes = await orchestrator.search_all(facility["name"], facility["address"])
    record = await orchestrator.resolve(facility["name"], facility["address"])

    assert outcomes[0].status == SourceStatus.LOW_CONFIDENCE
    assert not outcomes[0].is_usable
    assert record.confidence <= 0.05


@pytest.mark.asyncio
async def test_failed_status_after_retries(build, adapter_factory, facility):
    adapter = adapter_factory("naver", RuntimeError("down"))
    orchestrator = build([adapter])

    outcomes = await orchestrator.search_all(facility["name"], facility["address"])

    assert outcomes[0].status == SourceStatus.FAILED
    assert adapter.calls == 2
    assert "RuntimeError" in outcomes[0].error


@pytest.mark.asyncio
async def test_parallel_mode_keeps_registration_order(build, adapter_factory, result_factory, facility):
    config = OrchestratorConfig(
        request_delay_min=0.0, request_delay_max=0.0, enable_parallel=True, max_concurrent=3
    )
    adapters = [
        adapter_factory("naver", result_factory("naver", confidence=0.5, phone="02-1234-5678")),
        adapter_factory("daum", result_factory("daum", confidence=0.5, phone="02-1234-5678")),
        adapter_factory("google", None),
    ]
    orchestrator = build(adapters, config=config)

    outcomes = await orchestrator.search_all(facility["name"], facility["address"])
    record = await orchestrator.resolve(facility["name"], facility["address"])

    assert [o.engine for o in outcomes] == ["naver", "daum", "google"]
    assert record.phone == "02-1234-5678"


@pytest.mark.asyncio
async def test_cancellation_propagates(build, adapter_factory, result_factory, facility):
    token = CancellationToken()
    token.cancel("stop")
    orchestrator = build([adapter_factory("naver", result_factory("naver"))], cancel_token=token)

    with pytest.raises(OperationCancelledException):
        await orchestrator.resolve(facility["name"], facility["address"])


def test_generate_search_stats(result_factory):
    from facility_crawler.engine.result import SourceOutcome

    outcomes = [
        SourceOutcome.success("naver", result_factory("naver", confidence=0.6), 10.0),
        SourceOutcome.success("daum", result_factory("daum", confidence=0.4), 30.0, via_fallback=True),
        SourceOutcome.failure("google", SourceStatus.RATE_LIMITED, 20.0, "blocked"),
    ]

    stats = SearchEngineOrchestrator.generate_search_stats(outcomes)

    assert stats["total_engines"] == 3
    assert stats["successful_engines"] == 2
    assert stats["fallback_recoveries"] == 1
    assert stats["average_confidence"] == pytest.approx(0.5)
    assert stats["average_processing_ms"] == pytest.approx(20.0)
    assert stats["by_status"] == {"success": 2, "rate_limited": 1}
