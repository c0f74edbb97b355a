import os
from datetime import timedelta
from typing import Any, Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from hubcore.services.cache import CacheConfig
from hubcore.services.circuit_breaker import CircuitBreakerConfig
from hubcore.services.retry import DEFAULT_DO_NOT_RETRY, MAX_RETRIES, RetryPolicy

load_dotenv()


class Settings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # GitHub API Configuration
    github_token: str = Field(default="", alias="GITHUB_TOKEN")
    github_api_url: str = Field(default="https://api.github.com", alias="GITHUB_API_URL")
    user_agent: str = Field(default="hubcore/0.1", alias="GITHUB_USER_AGENT")
    request_timeout: float = Field(default=30.0, gt=0, alias="REQUEST_TIMEOUT")

    # Cache Configuration
    cache_max_age_seconds: int = Field(default=300, gt=0, alias="CACHE_MAX_AGE_SECONDS")
    cache_max_entries: int = Field(default=1000, gt=0, alias="CACHE_MAX_ENTRIES")

    # Retry Configuration
    retry_enabled: bool = Field(default=True, alias="RETRY_ENABLED")
    retry_count: int = Field(default=3, ge=0, le=MAX_RETRIES, alias="RETRY_COUNT")
    retry_base_delay_ms: int = Field(default=1000, ge=0, alias="RETRY_BASE_DELAY_MS")
    retry_do_not_retry: tuple[int, ...] = Field(
        default=DEFAULT_DO_NOT_RETRY, alias="RETRY_DO_NOT_RETRY"
    )

    # Circuit Breaker Configuration
    circuit_breaker_enabled: bool = Field(default=True, alias="CIRCUIT_BREAKER_ENABLED")
    circuit_failure_threshold: int = Field(default=5, ge=1, alias="CIRCUIT_FAILURE_THRESHOLD")
    circuit_recovery_timeout_ms: int = Field(
        default=30000, ge=1000, alias="CIRCUIT_RECOVERY_TIMEOUT_MS"
    )

    # Webhook Configuration
    webhook_secret: str = Field(default="", alias="GITHUB_WEBHOOK_SECRET")
    webhook_strict_signatures: bool = Field(default=True, alias="WEBHOOK_STRICT_SIGNATURES")
    webhook_max_processed: int = Field(
        default=10000, ge=100, le=100000, alias="WEBHOOK_MAX_PROCESSED"
    )
    webhook_host: str = Field(default="0.0.0.0", alias="WEBHOOK_HOST")
    webhook_port: int = Field(default=8080, gt=0, lt=65536, alias="WEBHOOK_PORT")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("retry_do_not_retry", mode="before")
    @classmethod
    def _split_status_list(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(int(part) for part in value.split(",") if part.strip())
        return value

    def cache_config(self) -> CacheConfig:
        return CacheConfig(
            max_age_seconds=self.cache_max_age_seconds,
            max_entries=self.cache_max_entries,
        )

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            enabled=self.circuit_breaker_enabled,
            failure_threshold=self.circuit_failure_threshold,
            recovery_timeout=timedelta(milliseconds=self.circuit_recovery_timeout_ms),
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            enabled=self.retry_enabled,
            retries=self.retry_count,
            base_delay=timedelta(milliseconds=self.retry_base_delay_ms),
            do_not_retry=self.retry_do_not_retry,
            circuit_breaker=self.circuit_breaker_config(),
        )


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build settings from environment variables (after .env is loaded)."""
    source = os.environ if environ is None else environ
    return Settings.model_validate(dict(source))


global_settings = load_settings()
