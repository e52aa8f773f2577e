"""SearchPageAdapter / 레지스트리 유닛 테스트"""
from dataclasses import dataclass, field

import pytest

from facility_crawler.core.exceptions import (
    BlockedException,
    OperationCancelledException,
    SourceUnavailableException,
)
from facility_crawler.crawlers.base import FetchResponse, SearchPageAdapter, score_extraction
from facility_crawler.crawlers.headers import RotatingHeaderProvider
from facility_crawler.crawlers.registry import (
    SEARCH_ENGINES,
    build_default_adapters,
    build_fallback_strategies,
)
from facility_crawler.engine.cancellation import CancellationToken
from facility_crawler.engine.fallback import FallbackContext
from facility_crawler.schemas.facility_schema import PriceFacts


@dataclass
class FakeFetcher:
    """URL 순서대로 스크립트된 응답을 돌려주는 PageFetcher"""

    responses: list = field(default_factory=list)
    urls: list = field(default_factory=list)
    headers: list = field(default_factory=list)

    async def fetch(self, url, headers, timeout_s):
        self.urls.append(url)
        self.headers.append(headers)
        index = min(len(self.urls) - 1, len(self.responses) - 1)
        return self.responses[index]


@pytest.fixture
def make_adapter(recording_sleep):
    def _make(*responses, name="naver_blog"):
        fetcher = FakeFetcher(list(responses))
        adapter = SearchPageAdapter(
            name=name,
            url_template="https://search.example.com/?q={query}",
            fetcher=fetcher,
            header_provider=RotatingHeaderProvider(["agent-a", "agent-b"]),
            query_delay=(0.0, 0.0),
            sleep=recording_sleep,
        )
        return adapter, fetcher

    return _make


@pytest.mark.asyncio
async def test_extracts_fields_from_page(make_adapter, search_page_html, facility):
    adapter, fetcher = make_adapter(FetchResponse(200, search_page_html))

    result = await adapter.search(facility["name"], facility["address"])

    assert result is not None
    assert result.source == "naver_blog"
    assert result.name == facility["name"]
    assert result.phone == "02-555-1234"
    assert (result.open_hour, result.close_hour) == ("06:00", "23:00")
    assert result.membership_price == "50,000원"
    assert result.facilities == ["샤워실", "주차", "락커"]
    assert result.confidence == pytest.approx(0.95)
    assert len(fetcher.urls) == 1
    assert "%ED%97%AC%EC%8A%A4%EC%9E%A5" in fetcher.urls[0]  # "헬스장"


@pytest.mark.asyncio
async def test_tries_next_query_when_page_is_empty(make_adapter, search_page_html, facility):
    adapter, fetcher = make_adapter(
        FetchResponse(200, "<html><body>검색 결과가 없습니다</body></html>"),
        FetchResponse(404, ""),
        FetchResponse(200, search_page_html),
    )

    result = await adapter.search(facility["name"], facility["address"])

    assert result is not None
    assert len(fetcher.urls) == 3
    assert fetcher.headers[0]["User-Agent"] == "agent-a"
    assert fetcher.headers[1]["User-Agent"] == "agent-b"


@pytest.mark.asyncio
async def test_returns_none_when_nothing_found(make_adapter, facility):
    adapter, fetcher = make_adapter(FetchResponse(200, "<html><body>없음</body></html>"))

    assert await adapter.search(facility["name"], facility["address"]) is None
    # 질의 변형 5개를 모두 시도
    assert len(fetcher.urls) == 5


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [403, 429])
async def test_blocked_status_raises(make_adapter, facility, status):
    adapter, _ = make_adapter(FetchResponse(status, "blocked"))

    with pytest.raises(BlockedException) as exc_info:
        await adapter.search(facility["name"], facility["address"])
    assert exc_info.value.status_code == status


@pytest.mark.asyncio
async def test_server_error_raises(make_adapter, facility):
    adapter, _ = make_adapter(FetchResponse(503, ""))

    with pytest.raises(SourceUnavailableException):
        await adapter.search(facility["name"], facility["address"])


@pytest.mark.asyncio
async def test_cancel_between_query_variants(facility):
    token = CancellationToken()

    class CancellingFetcher(FakeFetcher):
        async def fetch(self, url, headers, timeout_s):
            token.cancel("user stop")
            return await super().fetch(url, headers, timeout_s)

    fetcher = CancellingFetcher([FetchResponse(404, "")])
    adapter = SearchPageAdapter(
        name="naver",
        url_template="https://search.example.com/?q={query}",
        fetcher=fetcher,
        header_provider=RotatingHeaderProvider(["agent-a"]),
        query_delay=(0.0, 0.0),
        cancel_token=token,
    )

    with pytest.raises(OperationCancelledException):
        await adapter.search(facility["name"], facility["address"])

    # 첫 질의 이후 대기에서 중단
    assert len(fetcher.urls) == 1


def test_score_extraction():
    assert score_extraction(None, None, PriceFacts(), []) == pytest.approx(0.1)
    assert score_extraction("02-1234-5678", None, PriceFacts(), []) == pytest.approx(0.4)
    facts = PriceFacts(membership_price="50,000원", confidence=0.9)
    assert score_extraction("02-1234-5678", "06:00", facts, ["a"] * 10) == pytest.approx(0.95)


def test_build_default_adapters():
    adapters = build_default_adapters(FakeFetcher(), RotatingHeaderProvider())
    assert [a.name for a in adapters] == list(SEARCH_ENGINES)

    subset = build_default_adapters(FakeFetcher(), RotatingHeaderProvider(), engines=["daum", "naver"])
    assert [a.name for a in subset] == ["daum", "naver"]

    with pytest.raises(ValueError):
        build_default_adapters(FakeFetcher(), RotatingHeaderProvider(), engines=["bing"])

    token = CancellationToken()
    wired = build_default_adapters(FakeFetcher(), RotatingHeaderProvider(), cancel_token=token)
    assert all(a.cancel_token is token for a in wired)


@pytest.mark.asyncio
async def test_fallback_strategies(make_adapter, search_page_html):
    adapter, fetcher = make_adapter(FetchResponse(200, search_page_html), name="naver")
    strategies = build_fallback_strategies(adapter)

    assert [(s.name, s.priority) for s in strategies] == [
        ("simplified_name", 1),
        ("region_keyword", 2),
        ("mobile_page", 3),
    ]

    ctx = FallbackContext("스포애니 (역삼점)", "서울 강남구 역삼동")
    assert all(s.is_available(ctx) for s in strategies)
    assert not strategies[0].is_available(FallbackContext("스포애니", ""))
    assert not strategies[1].is_available(FallbackContext("스포애니", ""))

    result = await strategies[2].execute(ctx)
    assert result is not None
    assert result.source == "naver_mobile"
    assert fetcher.urls[-1].startswith("https://m.search.naver.com/")


def test_header_provider_rotation():
    provider = RotatingHeaderProvider(["a", "b"], referer="https://www.naver.com/")
    agents = [provider.get_headers()["User-Agent"] for _ in range(3)]

    assert agents == ["a", "b", "a"]
    assert provider.get_headers()["Referer"] == "https://www.naver.com/"
    assert "ko-KR" in provider.get_headers()["Accept-Language"]
