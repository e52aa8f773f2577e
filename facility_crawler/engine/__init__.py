"""Engine Layer - 조회/재시도/폴백/배치 오케스트레이션

- SearchEngineOrchestrator: 시설 하나에 대한 다중 소스 조회 진입점
- BatchProcessor: 적응형 배치 처리
- AdaptiveRetryManager / CircuitBreaker: 재시도와 회로 차단
- FallbackStrategyManager: 우선순위 기반 대체 조회
- PerformanceMonitor: 실행 통계
"""

from .batch import BatchConfig, BatchProcessor, BatchRunResult
from .cancellation import CancellationToken, cancellable_sleep
from .circuit_breaker import CircuitBreaker, CircuitState
from .error_policy import ErrorPolicy
from .fallback import FallbackContext, FallbackStrategy, FallbackStrategyManager, FunctionStrategy
from .monitor import PerformanceMonitor
from .orchestrator import OrchestratorConfig, SearchEngineOrchestrator, SourceAdapter
from .result import FallbackResult, SourceOutcome, SourceStatus
from .retry import AdaptiveRetryManager, RetryConfig

__all__ = [
    "AdaptiveRetryManager",
    "BatchConfig",
    "BatchProcessor",
    "BatchRunResult",
    "CancellationToken",
    "CircuitBreaker",
    "CircuitState",
    "ErrorPolicy",
    "FallbackContext",
    "FallbackResult",
    "FallbackStrategy",
    "FallbackStrategyManager",
    "FunctionStrategy",
    "OrchestratorConfig",
    "PerformanceMonitor",
    "RetryConfig",
    "SearchEngineOrchestrator",
    "SourceAdapter",
    "SourceOutcome",
    "SourceStatus",
    "cancellable_sleep",
]
