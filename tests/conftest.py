"""
Shared fixtures.

No test talks to Google: every store is an InMemorySheetStore and retries
run without sleeping.
"""

import pytest

from expense_sync.config import get_settings
from expense_sync.services.storage import InMemorySheetStore
from expense_sync.validation.layout import (
    CATEGORY_COLUMNS,
    TAG_COLUMNS,
    TRANSACTION_COLUMNS,
)


NOW = "2024-05-01T12:00:00.000Z"

GOOGLE_VARS = (
    "GOOGLE_SERVICE_ACCOUNT_EMAIL",
    "GOOGLE_PRIVATE_KEY",
    "GOOGLE_SHEET_ID",
    "GOOGLE_REQUEST_TIMEOUT",
)


@pytest.fixture(autouse=True)
def fast_settings(monkeypatch):
    """Zero retry delays and no ambient Google credentials."""
    monkeypatch.setenv("SYNC_RETRY_BASE_DELAY", "0")
    monkeypatch.setenv("SYNC_RETRY_MAX_DELAY", "0")
    monkeypatch.delenv("SYNC_STORAGE_BACKEND", raising=False)
    monkeypatch.delenv("SYNC_REFUSE_WRITE_ON_PARSE_ERRORS", raising=False)
    for name in GOOGLE_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def seeded_store():
    """A spreadsheet with one category, two transactions and one tag."""
    return InMemorySheetStore({
        "Categories": [
            list(CATEGORY_COLUMNS),
            ["c1", "Food", "#ff0000", "🍔", "300", "Alltag", NOW, "FALSE", "2", "1"],
        ],
        "Transactions": [
            list(TRANSACTION_COLUMNS),
            ["t1", "12,50", "Lunch", "c1", NOW, "tag1", NOW, "FALSE", "", "3", "u1"],
            ["t2", "40", "Groceries", "c1", NOW, "", NOW, "FALSE", "", "1", "u1"],
        ],
        "Tags": [
            list(TAG_COLUMNS),
            ["tag1", "work", NOW, "FALSE", "1"],
        ],
    })


@pytest.fixture
def empty_store():
    return InMemorySheetStore()
