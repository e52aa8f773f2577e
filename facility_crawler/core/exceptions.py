"""커스텀 예외 정의 (Structured Exception Hierarchy)"""
from typing import Any, Optional


class FacilityCrawlerException(Exception):
    """기본 예외 클래스 - 모든 커스텀 예외의 부모"""
    def __init__(self, message: str, error_code: str = "UNKNOWN_ERROR", details: Optional[dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# 크롤러(소스 어댑터) 관련 예외
class CrawlerException(FacilityCrawlerException):
    """크롤러 관련 예외의 기본 클래스"""
    def __init__(self, message: str, error_code: str = "CRAWLER_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message, error_code or "CRAWLER_ERROR", details)


class BlockedException(CrawlerException):
    """봇 감지/차단/레이트리밋 예외 (403/429 계열)"""
    def __init__(self, source: str, status_code: Optional[int] = None, details: Optional[dict[str, Any]] = None):
        self.source = source
        self.status_code = status_code
        message = f"Request blocked by {source} (status={status_code})"
        super().__init__(message, "BLOCKED", details or {"source": source, "status_code": status_code})


class NetworkTimeoutException(CrawlerException):
    """네트워크 타임아웃 예외"""
    def __init__(self, operation: str, timeout_ms: int, details: Optional[dict[str, Any]] = None):
        message = f"Network timeout during '{operation}' after {timeout_ms}ms"
        super().__init__(message, "NETWORK_TIMEOUT",
                         details or {"operation": operation, "timeout_ms": timeout_ms})


class ParsingException(CrawlerException):
    """HTML/텍스트 파싱 오류"""
    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Failed to parse response: {reason}"
        super().__init__(message, "PARSING_ERROR", details or {"reason": reason})


class SourceUnavailableException(CrawlerException):
    """소스가 비정상 응답(5xx 등)을 반환한 경우"""
    def __init__(self, source: str, status_code: Optional[int] = None, details: Optional[dict[str, Any]] = None):
        message = f"Source '{source}' unavailable (status={status_code})"
        super().__init__(message, "SOURCE_UNAVAILABLE",
                         details or {"source": source, "status_code": status_code})


# 재시도/회로 차단 관련 예외
class CircuitOpenException(FacilityCrawlerException):
    """회로가 열려 있어 호출 없이 즉시 실패"""
    def __init__(self, label: str, remaining_s: float, details: Optional[dict[str, Any]] = None):
        self.label = label
        self.remaining_s = remaining_s
        message = f"Circuit open for '{label}' ({remaining_s:.1f}s remaining)"
        super().__init__(message, "CIRCUIT_OPEN", details or {"label": label, "remaining_s": remaining_s})


class RetryExhaustedException(FacilityCrawlerException):
    """최대 재시도 횟수 소진"""
    def __init__(self, label: str, attempts: int, last_error: Optional[BaseException] = None,
                 details: Optional[dict[str, Any]] = None):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        reason = f"{type(last_error).__name__}: {last_error}" if last_error else "unknown"
        message = f"'{label}' failed after {attempts} attempts ({reason})"
        super().__init__(message, "RETRY_EXHAUSTED",
                         details or {"label": label, "attempts": attempts, "last_error": reason})


class OperationCancelledException(FacilityCrawlerException):
    """협력적 취소 신호 감지"""
    def __init__(self, where: str, details: Optional[dict[str, Any]] = None):
        message = f"Operation cancelled at '{where}'"
        super().__init__(message, "CANCELLED", details or {"where": where})


# 유효성 검증 관련 예외
class ValidationException(FacilityCrawlerException):
    """유효성 검증 예외"""
    def __init__(self, field: str, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Validation failed for '{field}': {reason}"
        super().__init__(message, "VALIDATION_ERROR",
                         details or {"field": field, "reason": reason})


class InvalidResultException(ValidationException):
    """소스가 반환한 결과의 구조가 유효하지 않음 (재시도 무의미)"""
    def __init__(self, source: str, reason: str, details: Optional[dict[str, Any]] = None):
        super().__init__("result", f"{reason} (source: {source})", details)


# 설정 관련 예외
class ConfigurationException(FacilityCrawlerException):
    """설정 오류"""
    def __init__(self, message: str, error_code: str = "CONFIG_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message, error_code or "CONFIG_ERROR", details)


class NoAdaptersConfiguredException(ConfigurationException):
    """등록된 소스 어댑터가 하나도 없음"""
    def __init__(self, details: Optional[dict[str, Any]] = None):
        super().__init__("No source adapters registered", "NO_ADAPTERS", details)
