"""Error Policy - 오류 유형별 재시도/폴백 판단

오류 분류:
- 레이트리밋/차단 (403/429): 재시도 + 별도 쿨다운
- 일시적 네트워크 오류: 백오프 재시도 후 폴백 전략으로 승격
- 구조/검증 오류: 해당 소스에서 더 이상 재시도하지 않음
"""

import asyncio

from facility_crawler.core.exceptions import (
    BlockedException,
    CircuitOpenException,
    InvalidResultException,
    NetworkTimeoutException,
    OperationCancelledException,
    ParsingException,
    RetryExhaustedException,
    SourceUnavailableException,
    ValidationException,
)


RATE_LIMIT_STATUS_CODES = frozenset({403, 429})


class ErrorPolicy:
    """오류 유형에 따른 처리 정책

    Usage:
        policy = ErrorPolicy()

        try:
            result = await adapter.search(name, address)
        except Exception as e:
            if policy.is_rate_limited(e):
                await cooldown()
    """

    @staticmethod
    def root_cause(error: BaseException) -> BaseException:
        """재시도 소진 예외는 마지막 원인 예외로 풀어서 판단"""
        seen = 0
        while isinstance(error, RetryExhaustedException) and error.last_error is not None and seen < 10:
            error = error.last_error
            seen += 1
        return error

    @classmethod
    def is_rate_limited(cls, error: BaseException) -> bool:
        """403/429 계열 차단 여부"""
        error = cls.root_cause(error)
        if isinstance(error, BlockedException):
            return True
        status = getattr(error, "status_code", None)
        return status in RATE_LIMIT_STATUS_CODES

    @classmethod
    def is_structural(cls, error: BaseException) -> bool:
        """구조/검증 오류 여부 (재시도 무의미)"""
        error = cls.root_cause(error)
        return isinstance(error, (InvalidResultException, ValidationException, ParsingException))

    @classmethod
    def is_retryable(cls, error: BaseException) -> bool:
        """재시도 가치가 있는 오류인지

        - 취소/회로 개방/구조 오류: 재시도하지 않음
        - 나머지(네트워크, 타임아웃, 차단, 5xx, 알 수 없는 오류): 재시도
        """
        if isinstance(error, (OperationCancelledException, CircuitOpenException)):
            return False
        if cls.is_structural(error):
            return False
        return True

    @classmethod
    def is_transient(cls, error: BaseException) -> bool:
        """일시적 오류 여부 (통계/로그 용도)"""
        error = cls.root_cause(error)
        return isinstance(
            error,
            (
                NetworkTimeoutException,
                SourceUnavailableException,
                BlockedException,
                asyncio.TimeoutError,
                TimeoutError,
                ConnectionError,
            ),
        )
