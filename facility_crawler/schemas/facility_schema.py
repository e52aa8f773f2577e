"""Pydantic 스키마 정의 (시설 레코드 / 가격 정보)"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# 가격 정보가 하나도 없을 때 사용하는 표기
PRICE_VISIT_TO_CONFIRM = "방문후 확인"

# CanonicalRecord.source 태그
SOURCE_FALLBACK_ERROR_RECOVERY = "fallback_error_recovery"
SOURCE_FALLBACK_CRITICAL_ERROR = "fallback_critical_error"
SOURCE_MINIMAL_FALLBACK = "minimal_fallback"
SOURCE_BATCH_FALLBACK = "batch_fallback"

# 폴백 레코드 신뢰도 상한
FALLBACK_CONFIDENCE = 0.1
MINIMAL_FALLBACK_CONFIDENCE = 0.05


def cross_validated_source(count: int) -> str:
    """교차 검증 레코드의 source 태그"""
    return f"cross_validated_{count}_sources"


class FacilityEntity(BaseModel):
    """처리 대상 시설 (DB에 이미 저장된 기본 정보)"""
    entity_id: Optional[str] = Field(None, max_length=100, description="외부 식별자")
    name: str = Field(..., min_length=1, max_length=200, description="시설명")
    address: str = Field("", max_length=500, description="주소")
    phone: Optional[str] = Field(None, description="알려진 전화번호")
    open_hour: Optional[str] = Field(None, description="알려진 오픈 시간")
    close_hour: Optional[str] = Field(None, description="알려진 마감 시간")
    price: Optional[str] = Field(None, description="알려진 가격 표기")
    facilities: list[str] = Field(default_factory=list, description="알려진 편의시설")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("시설명은 공백만으로 구성될 수 없습니다")
        return v.strip()

    @field_validator("address")
    @classmethod
    def strip_address(cls, v: str) -> str:
        return (v or "").strip()

    @property
    def key(self) -> str:
        """엔티티별 실행 이력 키"""
        return self.entity_id or f"{self.name}|{self.address}"


class FacilityRecord(BaseModel):
    """한 소스 또는 교차 검증 결과의 공통 형태 (생성 후 불변)"""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="시설명")
    address: str = Field("", description="주소")
    phone: Optional[str] = Field(None, description="전화번호")
    open_hour: Optional[str] = Field(None, description="오픈 시간")
    close_hour: Optional[str] = Field(None, description="마감 시간")
    price: Optional[str] = Field(None, description="대표 가격 표기")
    membership_price: Optional[str] = Field(None, description="회원권 가격")
    pt_price: Optional[str] = Field(None, description="PT 가격")
    gx_price: Optional[str] = Field(None, description="GX(그룹 수업) 가격")
    day_pass_price: Optional[str] = Field(None, description="일일권 가격")
    price_details: Optional[str] = Field(None, description="기타 가격 설명 (범위 등)")
    minimum_price: Optional[str] = Field(None, description="최소 가격 (~부터/이상)")
    discount_info: Optional[str] = Field(None, description="할인 정보")
    facilities: list[str] = Field(default_factory=list, description="편의시설")
    confidence: float = Field(0.0, ge=0.0, le=1.0, description="신뢰도 (0~1)")
    source: str = Field("unknown", description="출처 태그")

    @property
    def exact_prices(self) -> list[str]:
        """정확한 금액 필드 (회원권/PT/GX/일일권)"""
        values = [self.membership_price, self.pt_price, self.gx_price, self.day_pass_price]
        return [v for v in values if v and v.strip()]

    @property
    def price_texts(self) -> list[str]:
        """가격 관련 텍스트 필드 전체 (할인 제외)"""
        values = [
            self.membership_price,
            self.pt_price,
            self.gx_price,
            self.day_pass_price,
            self.price_details,
            self.minimum_price,
        ]
        return [v for v in values if v and v.strip()]


class RawSourceResult(FacilityRecord):
    """소스 어댑터/폴백 전략 하나가 추출한 결과"""


class CanonicalRecord(FacilityRecord):
    """교차 검증을 거친 최종 시설 레코드"""

    @property
    def is_fallback(self) -> bool:
        return self.source in (
            SOURCE_FALLBACK_ERROR_RECOVERY,
            SOURCE_FALLBACK_CRITICAL_ERROR,
            SOURCE_MINIMAL_FALLBACK,
            SOURCE_BATCH_FALLBACK,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump()


class PriceFacts(BaseModel):
    """자유 텍스트에서 추출한 가격/할인 정보"""

    model_config = ConfigDict(frozen=True)

    membership_price: Optional[str] = None
    pt_price: Optional[str] = None
    gx_price: Optional[str] = None
    day_pass_price: Optional[str] = None
    minimum_price: Optional[str] = None
    price_details: Optional[str] = None
    discount_info: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    source: str = Field("", description="마지막으로 매칭된 규칙")

    @property
    def has_price(self) -> bool:
        return any(
            (
                self.membership_price,
                self.pt_price,
                self.gx_price,
                self.day_pass_price,
                self.minimum_price,
                self.price_details,
            )
        )


class PriceConsensus(BaseModel):
    """여러 소스의 가격 정보 합의 결과"""

    model_config = ConfigDict(frozen=True)

    membership_price: Optional[str] = None
    pt_price: Optional[str] = None
    gx_price: Optional[str] = None
    day_pass_price: Optional[str] = None
    minimum_price: Optional[str] = None
    price_details: Optional[str] = None
    final_price: str = PRICE_VISIT_TO_CONFIRM
    match_count: int = Field(0, ge=0)
    tier: str = Field("none", description="exact | minimum | details | none")

    @property
    def matched(self) -> bool:
        return self.match_count >= 2
