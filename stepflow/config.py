from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import AnyHttpUrl, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

SUPPORTED_DATABASE_SCHEMES = ("sqlite://", "postgresql://", "postgresql+psycopg2://")


class Settings(BaseSettings):
    """Stepflow settings. Every field maps to an upper-case environment variable."""

    model_config = SettingsConfigDict(
        env_file=(str(Path(__file__).resolve().parents[1] / ".env"), ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Service
    app_name: str = Field(default="Stepflow Workflow API", alias="APP_NAME")
    app_env: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        alias="APP_ENV",
    )
    app_debug: bool = Field(default=False, alias="APP_DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO", alias="LOG_LEVEL")
    # Comma-separated in the environment.
    cors_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["http://localhost:3000"],
        alias="CORS_ORIGINS",
    )

    # Storage
    database_url: str = Field(default="sqlite:///./stepflow.db", alias="DATABASE_URL")
    db_pool_size: int = Field(default=10, ge=1, le=100, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=20, ge=0, le=200, alias="DB_MAX_OVERFLOW")

    # Text completion
    anthropic_api_key: SecretStr = Field(default=SecretStr(""), alias="ANTHROPIC_API_KEY")
    anthropic_model: str = Field(default="claude-3-5-haiku-latest", alias="ANTHROPIC_MODEL")
    llm_max_tokens: int = Field(default=4096, ge=1, le=64000, alias="LLM_MAX_TOKENS")
    llm_temperature: float = Field(default=0.6, ge=0.0, le=1.0, alias="LLM_TEMPERATURE")

    # Image generation
    pollinations_api_key: SecretStr = Field(default=SecretStr(""), alias="POLLINATIONS_API_KEY")
    image_base_url: AnyHttpUrl = Field(
        default="https://gen.pollinations.ai/image/",
        alias="IMAGE_BASE_URL",
    )
    image_model: str = Field(default="flux", alias="IMAGE_MODEL")
    image_size: int = Field(default=1024, ge=64, le=2048, alias="IMAGE_SIZE")

    # Step execution
    http_timeout_seconds: float = Field(default=30.0, gt=0, le=600, alias="HTTP_TIMEOUT_SECONDS")
    default_delay_seconds: int = Field(default=5, ge=0, alias="DEFAULT_DELAY_SECONDS")

    @field_validator("api_v1_prefix")
    @classmethod
    def normalize_api_prefix(cls, value: str) -> str:
        prefix = "/" + value.strip().strip("/")
        return prefix if prefix != "/" else ""

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_log_level(cls, value: str) -> str:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_cors_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("database_url")
    @classmethod
    def check_database_scheme(cls, value: str) -> str:
        """Only SQLite and PostgreSQL SQLAlchemy URLs are supported."""
        if not value.lower().startswith(SUPPORTED_DATABASE_SCHEMES):
            raise ValueError("DATABASE_URL must be a sqlite:// or postgresql:// URL")
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.lower().startswith("sqlite")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()


settings: Settings = get_settings()
