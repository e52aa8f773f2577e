"""Processors - 가격 추출 및 교차 검증"""

from .cross_validator import CrossValidator
from .price_extractor import PriceExtractor

__all__ = ["CrossValidator", "PriceExtractor"]
