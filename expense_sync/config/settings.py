"""
Configuration Management for Expense Sync

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated before any remote call.
Loading has no side effects, so handlers may load it on every request.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration (service account + spreadsheet)."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    service_account_email: str = Field(
        ...,
        min_length=1,
        description="Client email of the Google service account"
    )
    private_key: str = Field(
        ...,
        min_length=1,
        description="PEM private key of the service account (newlines may be escaped)"
    )
    sheet_id: str = Field(
        ...,
        min_length=1,
        description="ID of the spreadsheet that is the system of record"
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Seconds before a single Sheets API request is abandoned"
    )

    # Tab names within the spreadsheet
    categories_sheet_name: str = Field(default="Categories")
    transactions_sheet_name: str = Field(default="Transactions")
    recurring_sheet_name: str = Field(default="Recurring")
    tags_sheet_name: str = Field(default="Tags")
    users_sheet_name: str = Field(default="Users")
    user_settings_sheet_name: str = Field(default="UserSettings")

    @field_validator('private_key')
    @classmethod
    def unescape_private_key(cls, v: str) -> str:
        """Hosting dashboards store the key on one line with literal \\n sequences."""
        return v.replace("\\n", "\n")

    def sheet_names(self) -> dict[str, str]:
        """Map collection name -> tab name."""
        return {
            "categories": self.categories_sheet_name,
            "transactions": self.transactions_sheet_name,
            "recurringTransactions": self.recurring_sheet_name,
            "allAvailableTags": self.tags_sheet_name,
            "users": self.users_sheet_name,
            "userSettings": self.user_settings_sheet_name,
        }


class SyncSettings(BaseSettings):
    """
    Sync engine settings.

    Retry defaults keep the worst case (1 + 2 + 4 + 8 seconds plus jitter)
    well inside typical serverless execution limits.
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    storage_backend: Literal["google", "memory"] = Field(
        default="google",
        description="Which SheetStore implementation the API builds"
    )

    retry_max_attempts: int = Field(
        default=5,
        ge=1,
        le=10,
        description="Total attempts for one remote operation"
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0.0,
        le=10.0,
        description="Delay in seconds before the second attempt"
    )
    retry_max_delay: float = Field(
        default=8.0,
        ge=0.0,
        le=30.0,
        description="Upper bound for a single backoff delay"
    )

    refuse_write_on_parse_errors: bool = Field(
        default=False,
        description="Refuse writes that would overwrite a collection whose server rows failed to parse"
    )

    log_level: str = Field(
        default="INFO",
        description="Minimum log level"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )


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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def sync(self) -> SyncSettings:
        return SyncSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Sub-settings are re-read from the environment on every property access,
    so the cached root never holds stale credentials.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def describe_settings_error(error: ValidationError, env_prefix: str = "") -> str:
    """
    Summarize a settings ValidationError by environment variable name.

    The raw pydantic message echoes input values, which may include the
    private key, so only variable names and reasons are reported.
    """
    problems = []
    for item in error.errors():
        name = env_prefix + "_".join(str(part) for part in item["loc"]).upper()
        if item["type"] == "missing":
            problems.append(f"{name} is not set")
        else:
            problems.append(f"{name}: {item['msg']}")
    return "Invalid configuration: " + "; ".join(problems)


def validate_all_settings() -> dict[str, object]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid} plus an error message
    for every invalid section. Useful for startup and health checks.
    """
    results: dict[str, object] = {}

    settings = get_settings()

    try:
        _ = settings.google_sheets
        results["google_sheets"] = True
    except ValidationError as e:
        results["google_sheets"] = False
        results["google_sheets_error"] = describe_settings_error(e, "GOOGLE_")

    try:
        _ = settings.sync
        results["sync"] = True
    except ValidationError as e:
        results["sync"] = False
        results["sync_error"] = describe_settings_error(e, "SYNC_")

    return results
