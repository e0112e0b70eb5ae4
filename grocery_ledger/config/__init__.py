"""Configuration package."""

from grocery_ledger.config.settings import (
    AppSettings,
    RealtimeSettings,
    Settings,
    StorageSettings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "RealtimeSettings",
    "Settings",
    "StorageSettings",
    "get_settings",
    "validate_all_settings",
]
