"""Application Configuration — environment-driven settings via pydantic-settings.

Invariants:
    - All secrets come from environment variables (never hardcoded)
    - get_settings() is cached (lru_cache) — single instance per process
    - DOWNSTREAM_MODE=http without DOWNSTREAM_BASE_URL fails at load time

Design Decisions:
    - pydantic-settings over raw os.environ: validation, type coercion, .env file support
    - Defaults provided for all non-secret settings: works out-of-the-box with docker-compose
    - Downstream mode defaults to "off": the always-succeed integration ("noop")
      must be chosen explicitly
"""

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

from quotedesk.core.domain_types import (
    DELIVERY_TIMEOUT_SECONDS, MAX_RETRIES, RETRY_DELAY_SECONDS, ForwardingMode,
)


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = (
        "postgresql+asyncpg://quotedesk:quotedesk@db:5432/quotedesk"
    )

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_postgres_url(cls, v: str) -> str:
        """Hosting providers hand out postgresql:// but asyncpg needs postgresql+asyncpg://."""
        if isinstance(v, str) and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Downstream (admin) system
    downstream_mode: ForwardingMode = ForwardingMode.OFF
    downstream_base_url: str | None = None
    downstream_path: str = "/api/quotes/submit"
    downstream_api_key: str | None = None
    downstream_timeout_seconds: float = DELIVERY_TIMEOUT_SECONDS

    # Fallback queue + retry scheduler
    retry_delay_seconds: float = RETRY_DELAY_SECONDS
    retry_max_attempts: int = MAX_RETRIES
    queue_storage: str = "file"
    queue_storage_path: str = "data/pending_quotes.json"

    # Email
    resend_api_key: str | None = None
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    email_from: str = "Quote Desk <noreply@example.com>"
    notify_email: str | None = None
    site_url: str = "http://localhost:3000"

    # API
    admin_api_key: str | None = None
    cors_origins: list[str] = ["http://localhost:3000"]

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("queue_storage")
    @classmethod
    def check_queue_storage(cls, v: str) -> str:
        v = v.lower()
        if v not in ("file", "memory"):
            raise ValueError("queue_storage must be 'file' or 'memory'")
        return v

    @model_validator(mode="after")
    def check_downstream(self):
        if self.downstream_mode == ForwardingMode.HTTP and not self.downstream_base_url:
            raise ValueError(
                "downstream_base_url is required when downstream_mode is 'http'",
            )
        return self

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)


@lru_cache
def get_settings() -> Settings:
    return Settings()
