"""설정 관리 - 환경 변수 로드 및 검증"""
from typing import Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """크롤링/교차 검증 엔진 설정"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # 배치 처리
    batch_initial_size: int = 10
    batch_min_size: int = 1
    batch_max_size: int = 20
    batch_max_consecutive_failures: int = 3
    batch_delay_min_s: float = 2.0
    batch_delay_max_s: float = 5.0
    batch_low_success_rate_threshold: float = 0.8
    batch_low_success_rate_delay_min_s: float = 5.0
    batch_low_success_rate_delay_max_s: float = 10.0
    batch_individual_delay_min_s: float = 1.0
    batch_individual_delay_max_s: float = 3.0
    # 배치 내 엔티티 동시 처리 수 (1이면 순차)
    batch_max_concurrency: int = 1

    # 재시도 (지수 백오프 + 지터)
    retry_max_retries: int = 5
    retry_base_delay_s: float = 2.0
    retry_max_delay_s: float = 30.0
    retry_backoff_multiplier: float = 2.0
    retry_jitter: bool = True
    retry_min_delay_s: float = 0.1

    # 회로 차단기
    circuit_fail_threshold: int = 5
    circuit_open_seconds: float = 60.0

    # 검색 오케스트레이터
    # NOTE: 0.7 / 0.1 은 근거가 문서화되지 않은 경험값이라 설정으로 노출합니다.
    search_high_confidence_threshold: float = 0.7
    search_accepted_min_confidence: float = 0.1
    search_request_delay_min_s: float = 1.0
    search_request_delay_max_s: float = 3.0
    search_rate_limit_cooldown_s: float = 10.0
    search_enable_parallel: bool = False
    search_max_concurrent: int = 1
    search_timeout_s: float = 30.0

    # 폴백 전략 실행 이력 (엔티티별)
    fallback_history_size: int = 10

    # HTTP 클라이언트 (curl_cffi)
    crawler_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    crawler_http_impersonate: str = "chrome110"
    crawler_http_max_clients: int = 20

    # 로깅
    environment: str = "development"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @field_validator(
        "batch_initial_size",
        "batch_min_size",
        "batch_max_size",
        "batch_max_consecutive_failures",
        "batch_max_concurrency",
        "retry_max_retries",
        "circuit_fail_threshold",
        "search_max_concurrent",
        "fallback_history_size",
        "crawler_http_max_clients",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("size/count settings must be positive")
        return v

    @field_validator(
        "batch_low_success_rate_threshold",
        "search_high_confidence_threshold",
        "search_accepted_min_confidence",
    )
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("threshold settings must be within [0, 1]")
        return v

    @field_validator("retry_backoff_multiplier")
    @classmethod
    def validate_backoff_multiplier(cls, v: float) -> float:
        if v < 1.0:
            raise ValueError("retry_backoff_multiplier must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_windows(self) -> "Settings":
        windows = [
            ("batch_delay", self.batch_delay_min_s, self.batch_delay_max_s),
            (
                "batch_low_success_rate_delay",
                self.batch_low_success_rate_delay_min_s,
                self.batch_low_success_rate_delay_max_s,
            ),
            ("batch_individual_delay", self.batch_individual_delay_min_s, self.batch_individual_delay_max_s),
            ("search_request_delay", self.search_request_delay_min_s, self.search_request_delay_max_s),
            ("retry_delay", self.retry_base_delay_s, self.retry_max_delay_s),
        ]
        for name, low, high in windows:
            if low < 0 or high < low:
                raise ValueError(f"{name} window must satisfy 0 <= min <= max (got {low}, {high})")
        if not self.batch_min_size <= self.batch_initial_size <= self.batch_max_size:
            raise ValueError("batch_initial_size must be within [batch_min_size, batch_max_size]")
        return self


settings = Settings()
