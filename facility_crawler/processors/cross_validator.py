"""Cross Validator - 다중 소스 결과 교차 검증

같은 시설에 대한 여러 소스의 추출 결과를 필드별 다수결로 합쳐
하나의 CanonicalRecord를 만듭니다.

- 전화번호/운영시간/할인: 최빈값이 2개 이상 소스에서 일치할 때만 채택
- 가격: PriceExtractor.consensus (정확한 금액 > 최소 금액 > 기타 설명 > 방문후 확인)
- 편의시설: 2개 이상 소스에서 언급된 항목만 채택
- 신뢰도: 첫 소스 신뢰도 + 검증 보너스, 최대 0.9

경계 밖으로 예외를 던지지 않습니다. 입력이 비정상이거나 처리 중 오류가 나면
원본 정보로 만든 폴백 레코드(신뢰도 0.1)를 반환합니다.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Callable, Optional, Sequence

from facility_crawler.core.logging import logger, sanitize_for_log
from facility_crawler.schemas.facility_schema import (
    FALLBACK_CONFIDENCE,
    SOURCE_FALLBACK_CRITICAL_ERROR,
    SOURCE_FALLBACK_ERROR_RECOVERY,
    CanonicalRecord,
    FacilityRecord,
    RawSourceResult,
    cross_validated_source,
)

from .price_extractor import PriceExtractor, most_common_value


UNKNOWN_FACILITY_NAME = "알 수 없는 시설"

# 검증 보너스
PHONE_BONUS = 0.3
HOURS_BONUS = 0.2
PRICE_BONUS = 0.3
FACILITIES_BONUS = 0.2
MAX_CROSS_VALIDATED_CONFIDENCE = 0.9

MIN_CORROBORATION = 2


def _get(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def safe_trim(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip()


def safe_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple, set)):
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def _corroborated(values: Sequence[str]) -> Optional[tuple[str, int]]:
    common = most_common_value(values)
    if common and common[1] >= MIN_CORROBORATION:
        return common
    return None


class CrossValidator:
    """교차 검증기"""

    def __init__(self, price_extractor: Optional[PriceExtractor] = None):
        self.price_extractor = price_extractor or PriceExtractor()

    def reconcile(self, results: Any, original: Any) -> CanonicalRecord:
        """교차 검증 실행

        Args:
            results: 소스별 RawSourceResult 리스트
            original: 원본 시설 정보 (FacilityEntity, dict 등)

        Returns:
            CanonicalRecord: 교차 검증 결과 또는 폴백 레코드
        """
        try:
            if not isinstance(results, (list, tuple)) or len(results) == 0:
                logger.warning("[CROSS_VALIDATE] invalid or empty result list")
                return self.fallback_record(original)

            if original is None:
                logger.warning("[CROSS_VALIDATE] missing original facility data")
                return self.fallback_record(original)

            records = self._coerce_results(results)
            if not records:
                logger.warning("[CROSS_VALIDATE] no structurally valid results")
                return self.fallback_record(original)

            return self._reconcile(records, original)
        except Exception as e:
            logger.error(f"[CROSS_VALIDATE] unexpected error: {type(e).__name__}: {e}", exc_info=True)
            return self.fallback_record(original)

    def _coerce_results(self, results: Sequence[Any]) -> list[FacilityRecord]:
        records: list[FacilityRecord] = []
        for item in results:
            if isinstance(item, FacilityRecord):
                records.append(item)
            elif isinstance(item, dict):
                try:
                    records.append(RawSourceResult.model_validate(item))
                except Exception as e:
                    logger.debug(f"[CROSS_VALIDATE] skipping malformed result: {e}")
        return records

    def _reconcile(self, records: list[FacilityRecord], original: Any) -> CanonicalRecord:
        base = records[0]
        name = safe_trim(_get(original, "name")) or base.name
        logger.info(f"[CROSS_VALIDATE] start: {sanitize_for_log(name)} ({len(records)} sources)")

        data: dict[str, Any] = {
            "name": name,
            "address": safe_trim(_get(original, "address")) or base.address,
        }
        bonus = 0.0

        phone = _corroborated([safe_trim(r.phone) for r in records if safe_trim(r.phone)])
        if phone:
            data["phone"] = phone[0]
            bonus += PHONE_BONUS
            logger.debug(f"[CROSS_VALIDATE] phone {phone[0]} ({phone[1]}/{len(records)})")

        open_hour = _corroborated([safe_trim(r.open_hour) for r in records if safe_trim(r.open_hour)])
        if open_hour:
            data["open_hour"] = open_hour[0]
            bonus += HOURS_BONUS
        close_hour = _corroborated([safe_trim(r.close_hour) for r in records if safe_trim(r.close_hour)])
        if close_hour:
            data["close_hour"] = close_hour[0]

        price_texts = [text for r in records for text in r.price_texts]
        price = self.price_extractor.consensus(price_texts, records)
        data["price"] = price.final_price
        for field_name in (
            "membership_price",
            "pt_price",
            "gx_price",
            "day_pass_price",
            "minimum_price",
            "price_details",
        ):
            value = getattr(price, field_name)
            if value:
                data[field_name] = value
        if price.matched:
            bonus += PRICE_BONUS
            logger.debug(f"[CROSS_VALIDATE] price {price.final_price} ({price.tier}, {price.match_count} sources)")

        discount = _corroborated([safe_trim(r.discount_info) for r in records if safe_trim(r.discount_info)])
        if discount:
            data["discount_info"] = discount[0]

        facilities = self._corroborated_facilities(records)
        if facilities:
            data["facilities"] = facilities
            bonus += FACILITIES_BONUS

        confidence = min(MAX_CROSS_VALIDATED_CONFIDENCE, max(0.0, base.confidence) + bonus)
        data["confidence"] = round(confidence, 4)
        data["source"] = cross_validated_source(len(records))

        logger.info(
            f"[CROSS_VALIDATE] done: {sanitize_for_log(name)} confidence={confidence:.2f} (bonus={bonus:.2f})"
        )
        return CanonicalRecord(**data)

    @staticmethod
    def _corroborated_facilities(records: Sequence[FacilityRecord]) -> list[str]:
        # 한 소스 안의 중복은 1회로 셈
        frequency: Counter[str] = Counter()
        for record in records:
            frequency.update(list(dict.fromkeys(safe_list(record.facilities))))
        return [facility for facility, count in frequency.items() if count >= MIN_CORROBORATION]

    def fallback_record(
        self,
        original: Any,
        confidence: float = FALLBACK_CONFIDENCE,
        source: str = SOURCE_FALLBACK_ERROR_RECOVERY,
    ) -> CanonicalRecord:
        """원본 정보로 폴백 레코드 생성

        필드별로 독립적으로 정리하며, 특정 필드 처리에 실패하면 해당 필드만 생략합니다.
        """
        data: dict[str, Any] = {}

        def _field(key: str, transform: Callable[[Any], Any]) -> None:
            try:
                value = transform(_get(original, key))
                if value:
                    data[key] = value
            except Exception as e:
                logger.debug(f"[CROSS_VALIDATE] fallback field '{key}' omitted: {e}")

        try:
            for key in (
                "name",
                "address",
                "phone",
                "open_hour",
                "close_hour",
                "price",
                "membership_price",
                "pt_price",
                "gx_price",
                "day_pass_price",
                "price_details",
                "minimum_price",
                "discount_info",
            ):
                _field(key, safe_trim)
            _field("facilities", safe_list)

            data.setdefault("name", UNKNOWN_FACILITY_NAME)
            data.setdefault("address", "")
            data["confidence"] = min(FALLBACK_CONFIDENCE, max(0.0, confidence))
            data["source"] = source
            return CanonicalRecord(**data)
        except Exception as e:
            logger.error(f"[CROSS_VALIDATE] fallback record creation failed: {e}")
            return CanonicalRecord(
                name=UNKNOWN_FACILITY_NAME,
                address="",
                confidence=0.0,
                source=SOURCE_FALLBACK_CRITICAL_ERROR,
            )
