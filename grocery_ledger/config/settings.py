"""
Configuration Management for Grocery Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see which knobs exist and ensures
all configuration is validated at startup.
"""

from datetime import timezone, tzinfo
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageSettings(BaseSettings):
    """Storage backend configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORAGE_",
        extra="ignore"
    )

    backend: Literal["memory", "json"] = Field(
        default="memory",
        description="Which storage backend to use"
    )
    data_path: str = Field(
        default="ledger_data.json",
        description="Path of the JSON file used by the 'json' backend"
    )

    # Transaction retry policy
    transaction_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="How many times a contended transaction is attempted"
    )
    retry_wait_min_seconds: float = Field(
        default=0.05,
        ge=0.0,
        description="Minimum backoff between transaction attempts"
    )
    retry_wait_max_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Maximum backoff between transaction attempts"
    )

    @field_validator('data_path')
    @classmethod
    def validate_data_path(cls, v: str) -> str:
        """Warn if the data directory doesn't exist (but don't fail - might be mounted later)."""
        parent = Path(v).expanduser().parent
        if not parent.exists():
            import warnings
            warnings.warn(
                f"Ledger data directory not found at {parent}. "
                "Make sure it exists before using the json backend."
            )
        return v

    @model_validator(mode='after')
    def validate_wait_bounds(self) -> 'StorageSettings':
        """Backoff bounds must be ordered."""
        if self.retry_wait_max_seconds < self.retry_wait_min_seconds:
            raise ValueError("retry_wait_max_seconds cannot be below retry_wait_min_seconds")
        return self


class RealtimeSettings(BaseSettings):
    """Change-subscription configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_REALTIME_",
        extra="ignore"
    )

    queue_size: int = Field(
        default=0,
        ge=0,
        description="Per-subscriber buffer size (0 = unbounded)"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )

    # Remote operations
    operation_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="Timeout applied to every remote operation"
    )

    # Input limits
    max_item_name_length: int = Field(
        default=200,
        ge=1,
        le=1000,
        description="Maximum length of a shopping list item name"
    )
    max_group_name_length: int = Field(
        default=100,
        ge=1,
        le=500,
        description="Maximum length of a group name"
    )

    # Display
    currency_symbol: str = Field(
        default="$",
        description="Symbol used when formatting amounts"
    )
    history_timezone: str = Field(
        default="UTC",
        description="IANA time zone whose calendar months bucket the history"
    )

    @field_validator('history_timezone')
    @classmethod
    def validate_history_timezone(cls, v: str) -> str:
        if v != "UTC":
            try:
                ZoneInfo(v)
            except (ZoneInfoNotFoundError, ValueError) as e:
                raise ValueError(f"Unknown time zone: {v}") from e
        return v

    @property
    def history_tzinfo(self) -> tzinfo:
        if self.history_timezone == "UTC":
            return timezone.utc
        return ZoneInfo(self.history_timezone)


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def storage(self) -> StorageSettings:
        return StorageSettings()

    @property
    def realtime(self) -> RealtimeSettings:
        return RealtimeSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings(settings: Optional[Settings] = None) -> dict[str, bool | str]:
    """
    Validate all settings are properly configured.

    Returns a dict of {section: is_valid}, plus {section}_error for each
    invalid section. Run at startup by create_app_components.
    """
    results: dict[str, bool | str] = {}

    settings = settings or get_settings()

    for name in ("storage", "realtime", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
