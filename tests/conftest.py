"""전역 테스트 설정

역할:
- 테스트 환경 구성
- 공통 Dummy/Fake 주입 (어댑터, 대기 함수, 설정)

금지:
- 실제 네트워크 요청
- 실제 시간 대기
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import pytest


# 프로젝트 루트를 경로에 추가
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from facility_crawler.engine.batch import BatchConfig  # noqa: E402
from facility_crawler.engine.cancellation import CancellationToken  # noqa: E402
from facility_crawler.engine.orchestrator import OrchestratorConfig  # noqa: E402
from facility_crawler.engine.retry import RetryConfig  # noqa: E402
from facility_crawler.schemas.facility_schema import RawSourceResult  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def test_env() -> None:
    """테스트 환경 변수 설정 (세션 전역)"""
    os.environ["ENVIRONMENT"] = "test"
    os.environ["LOG_LEVEL"] = "INFO"


@dataclass
class RecordingSleep:
    """실제로 기다리지 않고 요청된 대기만 기록하는 SleepFunc

    - 대기 전에 취소 토큰을 확인 (cancellable_sleep과 동일)
    - on_call이 있으면 n번째 호출에서 실행 (취소 주입 등)
    """

    calls: list[tuple[float, str]] = field(default_factory=list)
    on_call: Optional[Any] = None

    async def __call__(self, seconds: float, token: Optional[CancellationToken] = None, where: str = "sleep") -> None:
        self.calls.append((seconds, where))
        if self.on_call is not None:
            self.on_call(len(self.calls), where)
        if token is not None:
            token.raise_if_cancelled(where)

    def waits(self, prefix: str) -> list[float]:
        return [seconds for seconds, where in self.calls if where.startswith(prefix)]


@dataclass
class FakeAdapter:
    """스크립트된 응답을 순서대로 돌려주는 소스 어댑터

    responses 항목:
    - RawSourceResult / dict / None: 그대로 반환
    - Exception 인스턴스: raise
    마지막 항목은 이후 호출에서도 반복됩니다.
    """

    name: str
    responses: list[Any] = field(default_factory=list)
    calls: int = 0

    async def search(self, name: str, address: str) -> Optional[RawSourceResult]:
        self.calls += 1
        if not self.responses:
            return None
        index = min(self.calls - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, BaseException):
            raise response
        return response


def make_result(source: str = "naver", confidence: float = 0.6, **fields: Any) -> RawSourceResult:
    """테스트용 RawSourceResult"""
    data = {"name": "강남 피트니스", "address": "서울 강남구 역삼동 123"}
    data.update(fields)
    return RawSourceResult(confidence=confidence, source=source, **data)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_retry_config() -> RetryConfig:
    """대기 없는 재시도 설정 (시도 2회)"""
    return RetryConfig(
        max_retries=2,
        base_delay=0.01,
        max_delay=0.02,
        jitter=False,
        min_delay=0.0,
        rate_limit_delay=0.01,
        circuit_fail_threshold=100,
        circuit_open_seconds=60.0,
    )


@pytest.fixture
def fast_orchestrator_config() -> OrchestratorConfig:
    return OrchestratorConfig(
        request_delay_min=0.0,
        request_delay_max=0.0,
        rate_limit_cooldown=0.0,
    )


@pytest.fixture
def fast_batch_config() -> BatchConfig:
    return BatchConfig(
        initial_batch_size=2,
        min_batch_size=1,
        max_batch_size=4,
        max_consecutive_failures=2,
        batch_delay=(0.0, 0.0),
        low_success_rate_delay=(0.0, 0.0),
        individual_delay=(0.0, 0.0),
    )


@pytest.fixture
def facility() -> dict[str, str]:
    return {"name": "강남 피트니스", "address": "서울 강남구 역삼동 123"}


@pytest.fixture
def result_factory():
    """RawSourceResult 생성 함수 (make_result)"""
    return make_result


@pytest.fixture
def adapter_factory():
    """FakeAdapter(name, responses) 생성 함수"""
    def _make(name: str, *responses: Any) -> FakeAdapter:
        return FakeAdapter(name=name, responses=list(responses))
    return _make


@pytest.fixture
def search_page_html() -> str:
    """검색 결과 페이지 예시 (전화/운영시간/가격/편의시설 포함)"""
    return """
    <html>
      <head><title>강남 피트니스</title><script>var x = "010-0000-0000";</script></head>
      <body>
        <div class="result">
          <h2>강남 피트니스 역삼점</h2>
          <p>문의 02-555-1234</p>
          <p>운영시간 06:00 ~ 23:00</p>
          <p>회원권 50,000원 / PT 10회 400,000원</p>
          <p>샤워실, 주차 가능, 락커 완비</p>
          <style>.x { color: red; }</style>
        </div>
      </body>
    </html>
    """
