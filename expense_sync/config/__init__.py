"""Configuration package."""

from expense_sync.config.settings import (
    GoogleSheetsSettings,
    Settings,
    SyncSettings,
    describe_settings_error,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "GoogleSheetsSettings",
    "Settings",
    "SyncSettings",
    "describe_settings_error",
    "get_settings",
    "validate_all_settings",
]
