"""
Storage Services Package

Provides the abstract sheet-store interface and its implementations.
Google Sheets is the production backend; the in-memory store backs tests.
"""

from expense_sync.services.storage.interface import (
    ConfigurationError,
    Grid,
    SheetStore,
    StorageError,
    TransientStorageError,
    quote_tab,
    tab_of,
)
from expense_sync.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsStore,
)
from expense_sync.services.storage.memory import InMemorySheetStore

__all__ = [
    # Interface
    "Grid",
    "SheetStore",
    # Exceptions
    "ConfigurationError",
    "StorageError",
    "TransientStorageError",
    # A1 helpers
    "quote_tab",
    "tab_of",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsStore",
    "InMemorySheetStore",
]
