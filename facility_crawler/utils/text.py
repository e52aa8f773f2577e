"""Text helpers for search result pages.

HTML → 텍스트 변환(selectolax)과 전화번호/운영시간/편의시설/지역 추출,
검색 질의 변형 생성을 담당합니다.
"""

from __future__ import annotations

import re
from typing import Optional

from selectolax.parser import HTMLParser


_PHONE_PATTERNS = (
    re.compile(r"(\d{2,3}-\d{3,4}-\d{4})"),
    re.compile(r"(\d{2,3}\s\d{3,4}\s\d{4})"),
    re.compile(r"(?<!\d)(0\d{9,10})(?!\d)"),
)

_HOURS_RANGE_PATTERNS = (
    re.compile(r"(\d{1,2}:\d{2})\s*[-~]\s*(\d{1,2}:\d{2})"),
    re.compile(r"(\d{1,2}시)\s*[-~]\s*(\d{1,2}시)"),
)
_OPEN_ONLY_PATTERN = re.compile(r"오픈\s*(\d{1,2}:\d{2})")
_ALWAYS_OPEN_PATTERN = re.compile(r"24\s*시간\s*(?:운영|영업|오픈)")

# 편의시설 키워드 → 표준 표기
FACILITY_KEYWORDS: dict[str, str] = {
    "샤워": "샤워실",
    "주차": "주차",
    "락커": "락커",
    "사물함": "락커",
    "사우나": "사우나",
    "수건": "수건",
    "운동복": "운동복",
    "인바디": "인바디",
    "24시간": "24시간",
    "PT룸": "PT룸",
    "GX룸": "GX룸",
    "요가": "요가",
    "필라테스": "필라테스",
    "스피닝": "스피닝",
    "와이파이": "와이파이",
    "wifi": "와이파이",
}

_REGION_PATTERNS = (
    re.compile(r"서울특별시\s+(\w+구)"),
    re.compile(r"서울\s+(\w+구)"),
    re.compile(r"(\w+구)"),
    re.compile(r"(\w+시)"),
    re.compile(r"(\w+동)"),
)

_QUERY_SUFFIXES = ("헬스장", "피트니스", "운동")

_NOISE_TAGS = ("script", "style", "noscript", "iframe", "svg")


def html_to_text(html: str) -> str:
    """HTML 본문을 공백 정규화된 텍스트로 변환"""
    if not html:
        return ""
    tree = HTMLParser(html)
    for tag in _NOISE_TAGS:
        for node in tree.css(tag):
            node.decompose()
    root = tree.body or tree.root
    if root is None:
        return ""
    text = root.text(separator=" ")
    return normalize_whitespace(text)


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def parse_phone(text: str) -> Optional[str]:
    """첫 번째 전화번호를 하이픈 형식으로 반환"""
    if not text:
        return None
    for pattern in _PHONE_PATTERNS:
        match = pattern.search(text)
        if match:
            return format_phone(match.group(1))
    return None


def format_phone(raw: str) -> str:
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) < 9:
        return (raw or "").strip()
    if digits.startswith("02"):
        return f"02-{digits[2:-4]}-{digits[-4:]}"
    return f"{digits[:3]}-{digits[3:-4]}-{digits[-4:]}"


def parse_operating_hours(text: str) -> tuple[Optional[str], Optional[str]]:
    """운영시간 (오픈, 마감) 추출

    Returns:
        (open_hour, close_hour). 찾지 못한 값은 None
    """
    if not text:
        return None, None
    if _ALWAYS_OPEN_PATTERN.search(text):
        return "00:00", "24:00"
    for pattern in _HOURS_RANGE_PATTERNS:
        match = pattern.search(text)
        if match:
            return _normalize_hour(match.group(1)), _normalize_hour(match.group(2))
    match = _OPEN_ONLY_PATTERN.search(text)
    if match:
        return _normalize_hour(match.group(1)), None
    return None, None


def _normalize_hour(value: str) -> str:
    value = value.strip()
    if value.endswith("시"):
        return f"{int(value[:-1]):02d}:00"
    hour, minute = value.split(":", 1)
    return f"{int(hour):02d}:{minute}"


def detect_facilities(text: str) -> list[str]:
    """본문에 언급된 편의시설 (등장 순서와 무관하게 키워드 선언 순서, 중복 제거)"""
    if not text:
        return []
    lowered = text.lower()
    found: list[str] = []
    for keyword, label in FACILITY_KEYWORDS.items():
        if keyword.lower() in lowered and label not in found:
            found.append(label)
    return found


def extract_region(address: str) -> Optional[str]:
    """주소에서 구/시/동 단위 지역명 추출"""
    if not address:
        return None
    for pattern in _REGION_PATTERNS:
        match = pattern.search(address)
        if match:
            return match.group(1)
    return None


def generate_search_queries(name: str, address: str = "") -> list[str]:
    """검색 질의 변형 목록 (중복 제거, 순서 유지)

    예시:
    - ("강남 피트니스", "서울 강남구 역삼동") ->
      ["강남 피트니스 헬스장", "강남 피트니스 피트니스", "강남 피트니스 운동",
       "강남구 강남 피트니스", "강남 피트니스"]
    """
    name = normalize_whitespace(name)
    if not name:
        return []

    queries = [f"{name} {suffix}" for suffix in _QUERY_SUFFIXES]
    region = extract_region(address)
    if region:
        queries.append(f"{region} {name}")
    queries.append(name)
    return list(dict.fromkeys(queries))


def simplify_facility_name(name: str) -> str:
    """지점명/괄호 표기를 제거한 시설명

    예시:
    - "스포애니 (역삼점)" -> "스포애니"
    - "에이블짐 강남2호점" -> "에이블짐"
    """
    cleaned = re.sub(r"[\(\[].*?[\)\]]", " ", name or "")
    cleaned = re.sub(r"\s*\S*\d*호?점$", "", cleaned.strip())
    cleaned = normalize_whitespace(cleaned)
    return cleaned or normalize_whitespace(name)
