"""로깅 설정

- 로거는 "facility_crawler" 하나만 사용 (각 모듈은 `logger`를 import)
- production 환경은 짧은 포맷 + 최소 INFO
- LOG_FILE 지정 시 파일 핸들러 추가
"""
import logging
import sys
from typing import Optional

from facility_crawler.core.config import settings

LOGGER_NAME = "facility_crawler"

_SHORT_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
_DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_SENSITIVE_PATTERNS = ("password", "token", "api_key", "secret")


def _is_production() -> bool:
    return settings.environment.lower() == "production"


def _resolve_level(level: Optional[str]) -> int:
    name = (level or settings.log_level).upper()
    if _is_production() and name == "DEBUG":
        name = "INFO"
    return getattr(logging, name, logging.INFO)


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """패키지 로거 구성

    여러 번 호출해도 핸들러가 중복되지 않으며, 호출할 때마다 레벨/파일 설정을 다시 적용합니다.

    Args:
        level: 로그 레벨 (기본: settings.log_level)
        log_file: 추가로 기록할 파일 경로 (기본: settings.log_file)

    Returns:
        구성된 로거
    """
    log = logging.getLogger(LOGGER_NAME)
    resolved = _resolve_level(level)
    log.setLevel(resolved)
    log.propagate = False

    formatter = logging.Formatter(
        fmt=_SHORT_FORMAT if _is_production() else _DETAILED_FORMAT,
        datefmt=_DATE_FORMAT,
    )

    for handler in list(log.handlers):
        log.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(resolved)
    log.addHandler(console_handler)

    path = log_file or settings.log_file
    if path:
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler.setLevel(resolved)
        log.addHandler(file_handler)

    return log


logger = setup_logging()


def sanitize_for_log(value: str, max_length: int = 100) -> str:
    """로깅용 문자열 정리 (민감 정보 마스킹 + 개행 제거 + 길이 제한)"""
    if not value:
        return "[empty]"

    text = str(value)
    lowered = text.lower()
    if any(pattern in lowered for pattern in _SENSITIVE_PATTERNS):
        return "***"

    text = text.replace("\r", " ").replace("\n", " ")
    return text if len(text) <= max_length else text[:max_length] + "..."
