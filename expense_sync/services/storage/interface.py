"""
Abstract Sheet Store Interface

DESIGN DECISION: The remote store is modelled as what it really is: a
spreadsheet reachable only through batched range operations, with no
row-level locking and no transactions. This allows us to:
1. Use Google Sheets in production
2. Use in-memory storage for tests and local development
3. Keep merge and conflict logic decoupled from the storage implementation

The interface is intentionally tiny - just the two batched operations the
sync protocol needs.
"""

from abc import ABC, abstractmethod
from typing import Optional


Grid = list[list[str]]


class SheetStore(ABC):
    """
    Abstract interface for the spreadsheet backing the sync endpoints.

    Ranges use A1 notation with the tab name, e.g. "Categories!A2:Z".
    """

    @abstractmethod
    async def batch_get(self, ranges: list[str]) -> list[Grid]:
        """
        Read several ranges in a single round trip.

        Args:
            ranges: A1 ranges to read

        Returns:
            One grid per requested range, in request order.
            An empty or absent range yields an empty grid.

        Raises:
            TransientStorageError: Network/rate-limit/5xx failure
            StorageError: Any other remote failure
        """
        pass

    @abstractmethod
    async def replace(self, sheets: dict[str, Grid]) -> None:
        """
        Replace the full contents of several tabs.

        For each tab, the previous contents are cleared and the new grid
        (header row included) is written starting at A1. Clearing finishes
        before writing starts. Replacing with the same grids twice leaves
        the same state as doing it once.

        Args:
            sheets: tab name -> rows to write

        Raises:
            TransientStorageError: Network/rate-limit/5xx failure
            StorageError: Any other remote failure
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TransientStorageError(StorageError):
    """Remote failure that may succeed when retried."""
    pass


class ConfigurationError(Exception):
    """Required credentials or identifiers are missing."""
    pass


def quote_tab(tab: str) -> str:
    """Quote a tab name for A1 notation: User Settings -> 'User Settings'."""
    return "'" + tab.replace("'", "''") + "'"


def tab_of(a1_range: str) -> str:
    """Inverse of quote_tab for a full range: 'User Settings'!A2:Z -> User Settings."""
    tab = a1_range.rsplit("!", 1)[0]
    if len(tab) >= 2 and tab[0] == tab[-1] == "'":
        tab = tab[1:-1].replace("''", "'")
    return tab
