"""Application settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Upstream KYC / credit-bureau provider
    surepass_api_key: str = ""
    surepass_base_url: str = "https://kyc-api.surepass.io"

    # Outbound throttling
    surepass_min_delay_ms: int = 1500  # Minimum gap between two dispatches
    surepass_max_requests_per_window: int = 20
    surepass_rate_limit_window_ms: int = 60000  # Sliding window width

    # Retry policy
    surepass_retry_attempts: int = 3
    surepass_retry_delay_ms: int = 2000  # Base delay for exponential backoff
    surepass_timeout_ms: int = 30000  # Per-attempt HTTP timeout

    # Logging
    log_level: str = "INFO"
    audit_log_file: str = ""  # Empty = stdout only

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def base_url(self) -> str:
        return self.surepass_base_url.rstrip("/")


@lru_cache
def get_settings() -> Settings:
    return Settings()
