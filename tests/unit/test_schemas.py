"""Pydantic 스키마 테스트."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from facility_crawler.schemas.facility_schema import (
    SOURCE_BATCH_FALLBACK,
    CanonicalRecord,
    FacilityEntity,
    PriceFacts,
    RawSourceResult,
    cross_validated_source,
)


def test_facility_entity_strips_fields():
    """시설명/주소 공백 정리."""
    entity = FacilityEntity(name="  강남 피트니스 ", address=" 서울 강남구 ")

    assert entity.name == "강남 피트니스"
    assert entity.address == "서울 강남구"
    assert entity.key == "강남 피트니스|서울 강남구"


def test_facility_entity_key_prefers_id():
    entity = FacilityEntity(name="강남 피트니스", entity_id="gym-7")
    assert entity.key == "gym-7"


@pytest.mark.parametrize("name", ["", "   "])
def test_facility_entity_rejects_blank_name(name):
    """빈 시설명 거부."""
    with pytest.raises(ValidationError):
        FacilityEntity(name=name)


def test_record_confidence_bounds():
    """신뢰도는 0~1 범위."""
    with pytest.raises(ValidationError):
        RawSourceResult(name="x", confidence=1.5)


def test_record_is_immutable():
    record = RawSourceResult(name="x", confidence=0.5, source="naver")
    with pytest.raises(ValidationError):
        record.phone = "02-123-4567"


def test_price_texts_skip_blank_and_discount():
    record = RawSourceResult(
        name="x",
        membership_price="50,000원",
        pt_price="  ",
        minimum_price="30,000원부터",
        discount_info="20% 할인",
    )

    assert record.exact_prices == ["50,000원"]
    assert record.price_texts == ["50,000원", "30,000원부터"]


def test_canonical_record_fallback_flag():
    fallback = CanonicalRecord(name="x", confidence=0.05, source=SOURCE_BATCH_FALLBACK)
    validated = CanonicalRecord(name="x", confidence=0.9, source=cross_validated_source(3))

    assert fallback.is_fallback
    assert not validated.is_fallback
    assert validated.source == "cross_validated_3_sources"
    assert validated.to_dict()["confidence"] == 0.9


def test_price_facts_has_price():
    assert not PriceFacts(discount_info="10% 할인").has_price
    assert PriceFacts(day_pass_price="10,000원").has_price
