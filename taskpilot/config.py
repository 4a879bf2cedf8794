"""
TaskPilot Configuration

Environment-based configuration for the agent session orchestrator.
"""
import logging
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Orchestrator settings loaded from environment variables."""

    # Service endpoints
    api_base_url: str = "http://localhost:5000/api"
    push_url: Optional[str] = None  # WebSocket push channel; None disables it

    # Extra headers forwarded on every request (auth is handled upstream)
    extra_headers: dict[str, str] = {}

    # Timeouts (seconds)
    connect_timeout: float = 10.0
    request_timeout: float = 60.0
    stream_read_timeout: float = 90.0  # max silence between stream chunks
    stream_total_timeout: float = 300.0  # whole streamed turn

    # A failed send removes its optimistic user message and keeps the text
    # in ``failed_input``.  False keeps the message in the log instead.
    rollback_failed_messages: bool = True

    debug: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="TASKPILOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("request_timeout", "stream_read_timeout", "stream_total_timeout", "connect_timeout")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Apply the package's logging format for host applications and scripts."""
    settings = settings or get_settings()
    level = logging.DEBUG if settings.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # httpx logs every request at INFO; keep it quiet unless debugging.
    logging.getLogger("httpx").setLevel(logging.DEBUG if settings.debug else logging.WARNING)
