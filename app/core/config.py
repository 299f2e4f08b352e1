# python
# app/core/config.py
"""Configuration settings for the chat relay service.

Uses Pydantic BaseSettings for environment variable management.
"""
import secrets
from enum import Enum

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentEnum(str, Enum):
    development = "development"
    testing = "testing"
    staging = "staging"
    production = "production"


class LogLevelEnum(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormatEnum(str, Enum):
    simple = "simple"
    json = "json"


class Settings(BaseSettings):
    # Pydantic v2 settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===== Application Settings =====
    app_name: str = Field(default="Chat Relay API", description="Application name")
    environment: EnvironmentEnum = Field(
        default=EnvironmentEnum.development, description="Environment type"
    )
    debug: bool = Field(default=False, description="Debug mode")
    version: str = Field(default="1.0.0", description="Application version")

    # ===== Security Settings =====
    secret_key: str = Field(
        default_factory=lambda: secrets.token_urlsafe(32),
        description="Secret key for JWT encoding",
    )
    algorithm: str = Field(default="HS256", description="JWT algorithm")
    access_token_expire_minutes: int = Field(
        default=24 * 60, description="JWT token expiration time"
    )
    admin_username: str = Field(default="admin", description="Admin area username")
    admin_password: str | None = Field(default=None, description="Admin area password")

    # ===== Database Settings =====
    database_url: str = Field(
        default="sqlite+aiosqlite:///./relay.db", description="Database connection URL"
    )
    test_database_url: str | None = Field(default=None, description="Test database URL")

    # ===== Model Backend (Ollama) =====
    ollama_host: str = Field(default="http://localhost:11434", description="Ollama base URL")
    ollama_default_model: str = Field(default="llama2", description="Fallback model name")
    ollama_request_timeout: float = Field(
        default=120.0, description="Upper bound on one generation in seconds"
    )
    system_prompt: str = Field(
        default="You are a helpful assistant.", description="System prompt sent with every chat"
    )

    # ===== Quota Settings =====
    default_max_tokens: int = Field(default=10000, description="Default daily token cap")
    quota_reset_hour: int = Field(default=0, description="Daily quota reset hour (UTC)")
    quota_reset_minute: int = Field(default=0, description="Daily quota reset minute (UTC)")

    # ===== Chat Settings =====
    conversation_title_length: int = Field(
        default=50, description="Characters of the first message used as chat name"
    )

    # ===== Background Tasks (Celery) =====
    celery_broker_url: str = Field(
        default="redis://localhost:6379/1", description="Celery broker URL"
    )
    celery_result_backend: str = Field(
        default="redis://localhost:6379/2", description="Celery result backend"
    )

    # ===== Monitoring & Logging =====
    log_level: LogLevelEnum = Field(default=LogLevelEnum.INFO, description="Logging level")
    log_format: LogFormatEnum = Field(default=LogFormatEnum.simple, description="Log format")

    # ===== WebSocket Configuration =====
    websocket_max_connections: int = Field(
        default=1000, description="Maximum WebSocket connections"
    )

    # ===== CORS Settings =====
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Allowed CORS origins (comma-separated)",
    )

    @property
    def allowed_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    # ===== Server Settings =====
    host: str = Field(default="127.0.0.1", description="Host to bind the server")
    port: int = Field(default=3000, description="Port to bind the server")

    # ===== Computed Properties =====
    @property
    def is_development(self) -> bool:
        return self.environment == EnvironmentEnum.development

    @property
    def is_production(self) -> bool:
        return self.environment == EnvironmentEnum.production

    @property
    def is_testing(self) -> bool:
        return self.environment == EnvironmentEnum.testing

    @property
    def has_admin_access(self) -> bool:
        return bool(self.admin_password)

    # ===== Validation Methods =====
    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v):
        if v and isinstance(v, str):
            lv = v.lower()
            if lv in ["dev", "develop"]:
                return "development"
            if lv in ["prod"]:
                return "production"
            return lv
        return v

    @field_validator("ollama_host")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("ollama_request_timeout")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("Ollama request timeout must be positive")
        return v

    @field_validator("quota_reset_hour")
    @classmethod
    def validate_reset_hour(cls, v):
        if not 0 <= v <= 23:
            raise ValueError("Quota reset hour must be between 0 and 23")
        return v

    @field_validator("quota_reset_minute")
    @classmethod
    def validate_reset_minute(cls, v):
        if not 0 <= v <= 59:
            raise ValueError("Quota reset minute must be between 0 and 59")
        return v

    @model_validator(mode="after")
    def set_computed_fields(self):
        if not self.test_database_url and self.database_url.startswith("sqlite"):
            self.test_database_url = "sqlite+aiosqlite:///./test.db"
        return self


settings = Settings()


class ConfigValidator:
    @staticmethod
    def validate_required_settings():
        errors = []
        if not settings.database_url:
            errors.append("DATABASE_URL is required")
        if settings.is_production and not settings.admin_password:
            errors.append("ADMIN_PASSWORD is required in production")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @staticmethod
    def get_feature_status() -> dict:
        return {
            "admin_enabled": settings.has_admin_access,
            "ollama_host": settings.ollama_host,
            "default_model": settings.ollama_default_model,
            "environment": settings.environment,
        }


def get_config_summary() -> dict:
    return {
        "app_name": settings.app_name,
        "version": settings.version,
        "environment": settings.environment,
        "debug": settings.debug,
        "features": ConfigValidator.get_feature_status(),
        "database_configured": bool(settings.database_url),
        "quota_reset": f"{settings.quota_reset_hour:02d}:{settings.quota_reset_minute:02d} UTC",
    }


__all__ = [
    "settings",
    "Settings",
    "ConfigValidator",
    "get_config_summary",
    "EnvironmentEnum",
    "LogLevelEnum",
    "LogFormatEnum",
]
