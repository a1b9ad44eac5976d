"""Services package."""

from expense_sync.services.retry import is_transient_error, with_retry
from expense_sync.services.storage import (
    ConfigurationError,
    GoogleSheetsClient,
    GoogleSheetsStore,
    Grid,
    InMemorySheetStore,
    SheetStore,
    StorageError,
    TransientStorageError,
)

__all__ = [
    # Retry
    "is_transient_error",
    "with_retry",
    # Storage services
    "ConfigurationError",
    "GoogleSheetsClient",
    "GoogleSheetsStore",
    "Grid",
    "InMemorySheetStore",
    "SheetStore",
    "StorageError",
    "TransientStorageError",
]
