"""Source adapter contracts and the generic search-page adapter.

어댑터는 (시설명, 주소)로 외부 소스를 조회해 RawSourceResult 하나를 돌려줍니다.
- 결과 없음: None
- 403/429: BlockedException (재시도 관리자가 레이트리밋 대기 적용)
- 5xx: SourceUnavailableException
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol, Sequence
from urllib.parse import quote_plus

from facility_crawler.core.exceptions import BlockedException, SourceUnavailableException
from facility_crawler.core.logging import logger, sanitize_for_log
from facility_crawler.engine.cancellation import CancellationToken, SleepFunc, cancellable_sleep, random_delay
from facility_crawler.engine.orchestrator import SourceAdapter  # noqa: F401
from facility_crawler.processors.price_extractor import PriceExtractor
from facility_crawler.schemas.facility_schema import PriceFacts, RawSourceResult
from facility_crawler.utils.text import (
    detect_facilities,
    generate_search_queries,
    html_to_text,
    parse_operating_hours,
    parse_phone,
)


# 이 값 이하의 추출 결과는 버림
ADAPTER_MIN_CONFIDENCE = 0.3


@dataclass(frozen=True)
class FetchResponse:
    status: int
    body: str


class PageFetcher(Protocol):
    async def fetch(self, url: str, headers: dict[str, str], timeout_s: float) -> FetchResponse:
        ...


class HeaderProvider(Protocol):
    def get_headers(self) -> dict[str, str]:
        ...


TextExtractor = Callable[[str], str]


def score_extraction(
    phone: Optional[str],
    open_hour: Optional[str],
    price_facts: PriceFacts,
    facilities: Sequence[str],
) -> float:
    """추출된 필드로 결과 신뢰도 산정 (0~0.95)"""
    score = 0.1
    if phone:
        score += 0.3
    if open_hour:
        score += 0.2
    if price_facts.has_price:
        score += 0.3 * max(price_facts.confidence, 0.5)
    score += 0.05 * min(len(facilities), 4)
    return round(min(score, 0.95), 4)


@dataclass
class SearchPageAdapter:
    """검색 결과 페이지 기반 어댑터

    url_template의 {query} 자리에 URL 인코딩된 질의가 들어갑니다.
    질의 변형을 순서대로 시도하며 신뢰도가 ADAPTER_MIN_CONFIDENCE를 넘는 첫 결과를 반환합니다.

    Usage:
        adapter = SearchPageAdapter(
            name="naver_blog",
            url_template="https://search.naver.com/search.naver?where=blog&query={query}",
            fetcher=client,
            header_provider=RotatingHeaderProvider(),
        )
        result = await adapter.search("강남 피트니스", "서울 강남구")
    """

    name: str
    url_template: str
    fetcher: PageFetcher
    header_provider: HeaderProvider
    text_extractor: TextExtractor = html_to_text
    price_extractor: PriceExtractor = field(default_factory=PriceExtractor)
    timeout_s: float = 30.0
    min_confidence: float = ADAPTER_MIN_CONFIDENCE
    query_delay: tuple[float, float] = (0.5, 1.5)
    max_queries: Optional[int] = None
    sleep: SleepFunc = cancellable_sleep
    cancel_token: Optional[CancellationToken] = None

    def build_url(self, query: str) -> str:
        return self.url_template.format(query=quote_plus(query))

    async def search(self, name: str, address: str) -> Optional[RawSourceResult]:
        queries = generate_search_queries(name, address)
        if self.max_queries:
            queries = queries[: self.max_queries]
        return await self.search_queries(queries, name, address)

    async def search_queries(
        self, queries: Sequence[str], name: str, address: str
    ) -> Optional[RawSourceResult]:
        """주어진 질의들을 순서대로 조회"""
        for index, query in enumerate(queries):
            if index > 0:
                await self.sleep(random_delay(*self.query_delay), self.cancel_token, f"{self.name}:query")

            response = await self.fetcher.fetch(
                self.build_url(query), self.header_provider.get_headers(), self.timeout_s
            )
            if response.status in (403, 429):
                raise BlockedException(self.name, response.status)
            if response.status >= 500:
                raise SourceUnavailableException(self.name, response.status)
            if response.status != 200 or not response.body:
                logger.debug(f"[{self.name.upper()}] status={response.status} for {sanitize_for_log(query)}")
                continue

            result = self.extract_info(self.text_extractor(response.body), name, address)
            if result is not None:
                logger.info(
                    f"[{self.name.upper()}] found {sanitize_for_log(name)} "
                    f"(query={sanitize_for_log(query)}, confidence={result.confidence:.2f})"
                )
                return result

        logger.debug(f"[{self.name.upper()}] no result for {sanitize_for_log(name)}")
        return None

    def extract_info(self, text: str, name: str, address: str) -> Optional[RawSourceResult]:
        """페이지 텍스트에서 시설 정보 추출

        Returns:
            신뢰도가 기준을 넘으면 RawSourceResult, 아니면 None
        """
        if not text:
            return None

        phone = parse_phone(text)
        open_hour, close_hour = parse_operating_hours(text)
        facts = self.price_extractor.extract(text)
        facilities = detect_facilities(text)

        confidence = score_extraction(phone, open_hour, facts, facilities)
        if confidence <= self.min_confidence:
            return None

        return RawSourceResult(
            name=name,
            address=address,
            phone=phone,
            open_hour=open_hour,
            close_hour=close_hour,
            membership_price=facts.membership_price,
            pt_price=facts.pt_price,
            gx_price=facts.gx_price,
            day_pass_price=facts.day_pass_price,
            price_details=facts.price_details,
            minimum_price=facts.minimum_price,
            discount_info=facts.discount_info,
            facilities=facilities,
            confidence=confidence,
            source=self.name,
        )
