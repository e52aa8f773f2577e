"""Typed result values for the adapter → retry → fallback chain.

예외 대신 결과 타입으로 성공/저하 경로를 모두 드러냅니다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from facility_crawler.schemas.facility_schema import RawSourceResult


class SourceStatus(str, Enum):
    """소스 조회 상태"""

    SUCCESS = "success"  # 신뢰도 기준 통과
    LOW_CONFIDENCE = "low_confidence"  # 결과는 있으나 기준 미달
    EMPTY = "empty"  # 결과 없음
    INVALID = "invalid"  # 구조 검증 실패 (재시도 무의미)
    RATE_LIMITED = "rate_limited"  # 403/429 계열
    CIRCUIT_OPEN = "circuit_open"  # 회로 차단으로 호출 생략
    FAILED = "failed"  # 재시도/폴백 모두 실패


@dataclass
class SourceOutcome:
    """어댑터 하나의 조회 결과

    Attributes:
        engine: 어댑터 이름
        status: 조회 상태
        data: 추출 결과 (성공/저신뢰 시)
        processing_ms: 소요 시간 (밀리초)
        error: 오류 메시지
        via_fallback: 폴백 전략으로 얻은 결과 여부
    """

    engine: str
    status: SourceStatus
    data: Optional[RawSourceResult] = None
    processing_ms: float = 0.0
    error: Optional[str] = None
    via_fallback: bool = False

    @property
    def confidence(self) -> float:
        return self.data.confidence if self.data else 0.0

    @property
    def is_usable(self) -> bool:
        return self.status == SourceStatus.SUCCESS and self.data is not None

    @classmethod
    def success(
        cls, engine: str, data: RawSourceResult, processing_ms: float, via_fallback: bool = False
    ) -> "SourceOutcome":
        return cls(engine, SourceStatus.SUCCESS, data, processing_ms, via_fallback=via_fallback)

    @classmethod
    def failure(
        cls, engine: str, status: SourceStatus, processing_ms: float, error: Optional[str] = None
    ) -> "SourceOutcome":
        return cls(engine, status, None, processing_ms, error)


@dataclass
class FallbackResult:
    """폴백 전략 실행 결과"""

    success: bool
    strategy: str
    data: Optional[RawSourceResult] = None
    attempts: list[str] = field(default_factory=list)
    error: Optional[str] = None
    execution_ms: float = 0.0

    ALL_FAILED = "all_strategies_failed"

    @classmethod
    def ok(cls, strategy: str, data: RawSourceResult, attempts: list[str], execution_ms: float) -> "FallbackResult":
        return cls(True, strategy, data, attempts, None, execution_ms)

    @classmethod
    def all_failed(cls, attempts: list[str], error: Optional[str], execution_ms: float) -> "FallbackResult":
        return cls(False, cls.ALL_FAILED, None, attempts, error, execution_ms)
