"""기본 소스 어댑터 / 폴백 전략 구성"""

from __future__ import annotations

from typing import Optional, Sequence

from facility_crawler.core.config import Settings, settings
from facility_crawler.engine.cancellation import CancellationToken
from facility_crawler.engine.fallback import FallbackContext, FallbackStrategy, FunctionStrategy
from facility_crawler.processors.price_extractor import PriceExtractor
from facility_crawler.utils.text import extract_region, simplify_facility_name

from .base import HeaderProvider, PageFetcher, SearchPageAdapter


# 등록 순서 = 순차 조회 순서
SEARCH_ENGINES: dict[str, str] = {
    "naver_cafe": "https://search.naver.com/search.naver?where=article&query={query}",
    "naver": "https://search.naver.com/search.naver?query={query}",
    "google": "https://www.google.com/search?q={query}&hl=ko",
    "daum": "https://search.daum.net/search?w=tot&q={query}",
    "naver_blog": "https://search.naver.com/search.naver?where=blog&query={query}",
}

# 모바일 검색 페이지 (폴백 전략용)
MOBILE_SEARCH_URLS: dict[str, str] = {
    "naver_cafe": "https://m.search.naver.com/search.naver?where=m_article&query={query}",
    "naver": "https://m.search.naver.com/search.naver?query={query}",
    "google": "https://www.google.com/search?q={query}&hl=ko&gl=kr",
    "daum": "https://m.search.daum.net/search?w=tot&q={query}",
    "naver_blog": "https://m.search.naver.com/search.naver?where=m_blog&query={query}",
}


def build_default_adapters(
    fetcher: PageFetcher,
    header_provider: HeaderProvider,
    engines: Optional[Sequence[str]] = None,
    s: Optional[Settings] = None,
    cancel_token: Optional[CancellationToken] = None,
) -> list[SearchPageAdapter]:
    """검색 엔진 어댑터 목록 생성

    Args:
        engines: 사용할 엔진 이름 (None이면 전체, 순서는 인자 순서)
        cancel_token: 질의 사이 대기에서 확인할 취소 토큰 (보통 서비스의 토큰)
    """
    s = s or settings
    names = list(engines) if engines else list(SEARCH_ENGINES)
    unknown = [n for n in names if n not in SEARCH_ENGINES]
    if unknown:
        raise ValueError(f"Unknown search engines: {unknown}")

    extractor = PriceExtractor()
    return [
        SearchPageAdapter(
            name=name,
            url_template=SEARCH_ENGINES[name],
            fetcher=fetcher,
            header_provider=header_provider,
            price_extractor=extractor,
            timeout_s=s.search_timeout_s,
            cancel_token=cancel_token,
        )
        for name in names
    ]


def build_fallback_strategies(adapter: SearchPageAdapter) -> list[FallbackStrategy]:
    """어댑터 하나에 대한 폴백 전략 (우선순위 오름차순)

    1. simplified_name: 지점명/괄호를 뗀 시설명으로 재검색
    2. region_keyword: "지역 + 헬스장 + 시설명" 단일 질의
    3. mobile_page: 모바일 검색 페이지로 시설명 단독 질의
    """
    mobile = SearchPageAdapter(
        name=f"{adapter.name}_mobile",
        url_template=MOBILE_SEARCH_URLS.get(adapter.name, adapter.url_template),
        fetcher=adapter.fetcher,
        header_provider=adapter.header_provider,
        text_extractor=adapter.text_extractor,
        price_extractor=adapter.price_extractor,
        timeout_s=adapter.timeout_s,
        min_confidence=adapter.min_confidence,
        sleep=adapter.sleep,
        cancel_token=adapter.cancel_token,
    )

    async def simplified_name(ctx: FallbackContext):
        simple = simplify_facility_name(ctx.name)
        return await adapter.search_queries([f"{simple} 헬스장", simple], ctx.name, ctx.address)

    async def region_keyword(ctx: FallbackContext):
        region = extract_region(ctx.address)
        return await adapter.search_queries([f"{region} 헬스장 {ctx.name}"], ctx.name, ctx.address)

    async def mobile_page(ctx: FallbackContext):
        return await mobile.search_queries([ctx.name], ctx.name, ctx.address)

    return [
        FunctionStrategy(
            "simplified_name", 1, simplified_name,
            availability=lambda ctx: simplify_facility_name(ctx.name) != ctx.name,
        ),
        FunctionStrategy(
            "region_keyword", 2, region_keyword,
            availability=lambda ctx: extract_region(ctx.address) is not None,
        ),
        FunctionStrategy("mobile_page", 3, mobile_page),
    ]
