"""Configuration management using Pydantic settings."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from queryflow.core.types import SendMode


class LogLevel(str, Enum):
    """Log level options."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StreamSettings(BaseSettings):
    """Change stream buffering and mapping settings."""

    model_config = SettingsConfigDict(env_prefix="STREAM_")

    buffer_size: int = Field(
        default=64,
        ge=1,
        description="Capacity of the per-subscription change buffer",
    )
    send_mode: SendMode = Field(
        default=SendMode.BLOCKING,
        description="Behaviour of the listener when the buffer is full",
    )
    strict_mapping: bool = Field(
        default=False,
        description="Fail instead of skipping missing result sets and null rows",
    )

    @field_validator("send_mode", mode="before")
    @classmethod
    def parse_send_mode(cls, v: str | SendMode) -> SendMode:
        """Accept send modes in any case."""
        if isinstance(v, str):
            return SendMode(v.strip().lower())
        return v


class ObservabilitySettings(BaseSettings):
    """Observability settings."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_")

    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_format: Literal["json", "console"] = Field(default="json")
    metrics_enabled: bool = Field(default=True)
    service_name: str = Field(default="queryflow")


class Settings(BaseSettings):
    """Main library settings."""

    model_config = SettingsConfigDict(
        env_prefix="QUERYFLOW_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    stream: StreamSettings = Field(default_factory=StreamSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @classmethod
    def load(cls) -> Settings:
        """Load settings from environment."""
        return cls()


# Global settings instance (lazy loaded)
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def configure_settings(settings: Settings | None) -> None:
    """Configure the global settings instance (``None`` reloads from the environment)."""
    global _settings
    _settings = settings
