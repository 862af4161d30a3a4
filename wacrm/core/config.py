"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # AI provider (groq is OpenAI-compatible, gemini is Google)
    ai_provider: Literal["groq", "gemini"] = "groq"
    groq_api_key: str = ""
    groq_model: str = "llama-3.3-70b-versatile"
    groq_fast_model: str = "llama-3.1-8b-instant"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    ai_request_timeout_seconds: float = 30.0

    # WhatsApp channel service
    whatsapp_service_url: str = "http://whatsapp:3001"
    whatsapp_timeout_seconds: float = 30.0
    whatsapp_media_timeout_seconds: float = 60.0
    whatsapp_webhook_secret: str = ""

    # AI agent auto-response
    ai_agent_enabled: bool = True
    ai_agent_rate_limit_per_minute: int = 30
    ai_agent_debounce_seconds: int = 2
    ai_agent_message_window_seconds: int = 60
    ai_agent_recent_threshold_seconds: int = 300
    ai_agent_human_takeover_minutes: int = 30
    ai_agent_min_message_length: int = 15
    ai_agent_min_keywords: int = 2
    service_hours_timezone: str = "America/Sao_Paulo"

    # Quota defaults (used when a tenant has no plan yet)
    default_monthly_token_limit: int = 10000
    default_daily_token_limit: int = 1000
    default_request_limit_per_minute: int = 10

    # Response cache
    response_cache_ttl_seconds: int = 86400
    response_cache_min_length: int = 5
    response_cache_max_length: int = 150
    response_cache_max_response: int = 500

    # Learning
    faq_direct_threshold: float = 0.75
    faq_hint_threshold: float = 0.6
    memory_confidence_boost: float = 0.05
    learning_queue_size: int = 100

    # Backends
    storage_backend: Literal["memory", "firestore"] = "memory"
    gcp_project_id: str = ""
    firestore_emulator_host: str | None = None
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
