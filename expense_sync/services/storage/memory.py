"""
In-Memory Sheet Store

Behaves like the spreadsheet (tabs of string grids, range reads starting at
a row, clear-then-write replaces) without any network. Used by the test
suite and for local development with SYNC_STORAGE_BACKEND=memory.

Failures can be queued per step ("batch_get", "clear", "update") to exercise
retry and partial-persistence paths.
"""

import copy
import re
from collections import defaultdict, deque
from typing import Optional

from expense_sync.services.storage.interface import Grid, SheetStore, tab_of


_RANGE_START = re.compile(r"!\$?[A-Za-z]+\$?(\d+)")


def _split_range(a1_range: str) -> tuple[str, int]:
    """Return (tab, first row index) for a range like 'Tags'!A2:Z."""
    tab = tab_of(a1_range)
    match = _RANGE_START.search(a1_range)
    start_row = int(match.group(1)) if match else 1
    return tab, max(start_row - 1, 0)


class InMemorySheetStore(SheetStore):
    """Dict-of-grids store with injectable failures and a call log."""

    def __init__(self, tabs: Optional[dict[str, Grid]] = None):
        self.tabs: dict[str, Grid] = copy.deepcopy(tabs) if tabs else {}
        self.calls: list[str] = []
        self._failures: dict[str, deque] = defaultdict(deque)

    def fail_next(self, step: str, error: Exception, times: int = 1) -> None:
        """Make the next `times` calls of `step` raise `error`."""
        for _ in range(times):
            self._failures[step].append(error)

    def _maybe_fail(self, step: str) -> None:
        self.calls.append(step)
        if self._failures[step]:
            raise self._failures[step].popleft()

    async def batch_get(self, ranges: list[str]) -> list[Grid]:
        self._maybe_fail("batch_get")
        grids = []
        for a1_range in ranges:
            tab, start = _split_range(a1_range)
            grids.append(copy.deepcopy(self.tabs.get(tab, [])[start:]))
        return grids

    async def replace(self, sheets: dict[str, Grid]) -> None:
        if not sheets:
            return
        self._maybe_fail("clear")
        for tab in sheets:
            self.tabs[tab] = []
        self._maybe_fail("update")
        for tab, grid in sheets.items():
            self.tabs[tab] = [[str(cell) for cell in row] for row in grid]
