"""Price extraction and multi-source price consensus.

자유 텍스트에서 회원권/PT/GX/일일권/최소가격/범위 가격과 할인 문구를 추출하고,
여러 소스의 가격 필드에서 합의된 가격을 고릅니다.

합의 우선순위: 정확한 금액 > 최소 금액(~부터/이상) > 기타 가격 설명 > "방문후 확인"
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

from facility_crawler.core.logging import logger
from facility_crawler.schemas.facility_schema import (
    PRICE_VISIT_TO_CONFIRM,
    PriceConsensus,
    PriceFacts,
)


_AMOUNT = r"(\d{1,3}(?:,\d{3})*|\d+)"


@dataclass(frozen=True)
class PriceRule:
    """가격 패턴 규칙 (카테고리 내에서는 선언 순서대로 첫 매칭이 이김)"""

    category: str
    pattern: re.Pattern
    confidence: float
    kind: str


def _rule(category: str, pattern: str, confidence: float, kind: str) -> PriceRule:
    return PriceRule(category, re.compile(pattern, re.IGNORECASE), confidence, kind)


# 정확한 금액 필드 (카테고리 -> PriceFacts 필드명)
EXACT_PRICE_FIELDS: dict[str, str] = {
    "membership": "membership_price",
    "pt": "pt_price",
    "gx": "gx_price",
    "day_pass": "day_pass_price",
}

PRICE_RULES: tuple[PriceRule, ...] = (
    # 회원권
    _rule("membership", rf"회원권\s*{_AMOUNT}\s*원", 0.9, "membership"),
    _rule("membership", rf"(?<!\d)월\s*{_AMOUNT}\s*원", 0.8, "membership"),
    _rule("membership", rf"(?<!\d)년\s*{_AMOUNT}\s*원", 0.8, "membership"),
    # PT
    _rule("pt", rf"PT\s*{_AMOUNT}\s*원", 0.9, "pt"),
    _rule("pt", rf"개인\s*트레이(?:너|닝)\s*{_AMOUNT}\s*원", 0.8, "pt"),
    # GX (그룹 수업)
    _rule("gx", rf"GX\s*{_AMOUNT}\s*원", 0.9, "gx"),
    _rule("gx", rf"그룹\s*레슨\s*{_AMOUNT}\s*원", 0.8, "gx"),
    # 일일권
    _rule("day_pass", rf"일일권\s*{_AMOUNT}\s*원", 0.9, "daypass"),
    _rule("day_pass", rf"(?<!\d)1일\s*{_AMOUNT}\s*원", 0.8, "daypass"),
)

MINIMUM_PRICE_RULES: tuple[PriceRule, ...] = (
    _rule("minimum", rf"{_AMOUNT}\s*원\s*부터", 0.7, "minimum"),
    _rule("minimum", rf"{_AMOUNT}\s*만\s*원\s*부터", 0.7, "minimum"),
    _rule("minimum", rf"{_AMOUNT}\s*원\s*이상", 0.7, "minimum"),
    _rule("minimum", rf"{_AMOUNT}\s*만\s*원\s*이상", 0.7, "minimum"),
)

RANGE_PRICE_RULES: tuple[PriceRule, ...] = (
    _rule("range", rf"{_AMOUNT}\s*원\s*[~-]\s*{_AMOUNT}\s*원", 0.8, "range"),
    _rule("range", rf"{_AMOUNT}\s*만\s*원\s*[~-]\s*{_AMOUNT}\s*만\s*원", 0.8, "range"),
)

BASIC_PRICE_RULES: tuple[PriceRule, ...] = (
    _rule("basic", rf"{_AMOUNT}\s*원", 0.3, "basic"),
    _rule("basic", rf"{_AMOUNT}\s*만\s*원", 0.3, "basic"),
)

# 할인 문구는 신뢰도에 반영하지 않음
DISCOUNT_RULES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(rf"할인\s*{_AMOUNT}\s*원"), "할인"),
    (re.compile(rf"{_AMOUNT}\s*원\s*할인"), "할인"),
    (re.compile(r"\d{1,3}\s*%\s*할인"), "할인"),
    (re.compile(rf"초특가\s*{_AMOUNT}\s*원"), "특가"),
    (re.compile(rf"특가\s*{_AMOUNT}\s*원"), "특가"),
)


def _non_empty(values: Iterable[Any]) -> list[str]:
    return [v.strip() for v in values if isinstance(v, str) and v.strip()]


def most_common_value(values: Sequence[str]) -> Optional[tuple[str, int]]:
    """최빈값과 빈도 반환 (동률이면 먼저 등장한 값)"""
    if not values:
        return None
    counts = Counter(values)
    best = max(counts.items(), key=lambda item: item[1])
    # Counter는 삽입 순서를 유지하므로 동률이면 먼저 등장한 값이 선택됨
    return best


class PriceExtractor:
    """가격 정보 추출기

    Usage:
        extractor = PriceExtractor()
        facts = extractor.extract("회원권 50,000원 / PT 10회 400,000원")
        consensus = extractor.consensus(texts, results)
    """

    def extract(self, text: Any) -> PriceFacts:
        """자유 텍스트에서 가격 정보 추출 (순수 함수)

        Args:
            text: 검색 결과/본문 텍스트

        Returns:
            PriceFacts: 카테고리별 첫 매칭 결과. confidence는 매칭된 카테고리의 최댓값.
        """
        if not text or not isinstance(text, str):
            return PriceFacts(confidence=0.0, source="invalid_input")

        found: dict[str, str] = {}
        best_confidence = 0.0
        best_source = ""

        def _apply(rules: Sequence[PriceRule], field_name: str, render) -> None:
            nonlocal best_confidence, best_source
            for rule in rules:
                match = rule.pattern.search(text)
                if match:
                    found[field_name] = render(match)
                    if rule.confidence > best_confidence:
                        best_confidence = rule.confidence
                        best_source = f"{rule.kind}_pattern"
                    return

        for category, field_name in EXACT_PRICE_FIELDS.items():
            rules = [r for r in PRICE_RULES if r.category == category]
            _apply(rules, field_name, lambda m: f"{m.group(1)}원")

        for pattern, label in DISCOUNT_RULES:
            match = pattern.search(text)
            if match:
                found["discount_info"] = f"{label}: {match.group(0).strip()}"
                break

        _apply(MINIMUM_PRICE_RULES, "minimum_price", lambda m: m.group(0).strip())
        _apply(RANGE_PRICE_RULES, "price_details", lambda m: f"범위: {m.group(0).strip()}")

        price_fields = set(EXACT_PRICE_FIELDS.values()) | {"minimum_price", "price_details"}
        if not price_fields & found.keys():
            _apply(BASIC_PRICE_RULES, "price_details", lambda m: f"기본: {m.group(0).strip()}")

        return PriceFacts(confidence=best_confidence, source=best_source, **found)

    def consensus(
        self,
        candidate_texts: Sequence[Any],
        results: Sequence[Any],
    ) -> PriceConsensus:
        """여러 소스의 가격 필드에서 합의된 가격 결정

        각 단계는 최소 2개 소스가 같은 값을 가진 경우에만 채택됩니다.

        Args:
            candidate_texts: 모든 소스의 가격 관련 텍스트 (할인 제외)
            results: 소스별 결과 (RawSourceResult 또는 동일 속성을 가진 객체)

        Returns:
            PriceConsensus: 합의 결과. 합의 실패 시 final_price="방문후 확인", match_count=0
        """
        try:
            if not _non_empty(candidate_texts or []):
                return PriceConsensus()

            results = list(results or [])

            # 1단계: 정확한 금액 (회원권/PT/GX/일일권)
            exact_fields: dict[str, str] = {}
            best_exact: Optional[tuple[str, int]] = None
            for field_name in EXACT_PRICE_FIELDS.values():
                values = _non_empty(getattr(r, field_name, None) for r in results)
                common = most_common_value(values)
                if common and common[1] >= 2:
                    exact_fields[field_name] = common[0]
                    if best_exact is None or common[1] > best_exact[1]:
                        best_exact = common

            if best_exact:
                logger.debug(f"[PRICE] exact price consensus: {best_exact[0]} ({best_exact[1]} sources)")
                return PriceConsensus(
                    **exact_fields,
                    final_price=best_exact[0],
                    match_count=best_exact[1],
                    tier="exact",
                )

            # 2단계: 최소 금액 (~원부터 / ~원 이상)
            common = most_common_value(_non_empty(getattr(r, "minimum_price", None) for r in results))
            if common and common[1] >= 2:
                return PriceConsensus(
                    minimum_price=common[0],
                    final_price=common[0],
                    match_count=common[1],
                    tier="minimum",
                )

            # 3단계: 기타 가격 설명 (범위 등)
            common = most_common_value(_non_empty(getattr(r, "price_details", None) for r in results))
            if common and common[1] >= 2:
                return PriceConsensus(
                    price_details=common[0],
                    final_price=common[0],
                    match_count=common[1],
                    tier="details",
                )

            return PriceConsensus()
        except Exception as e:
            logger.warning(f"[PRICE] consensus failed: {type(e).__name__}: {e}")
            return PriceConsensus()
