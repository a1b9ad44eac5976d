"""
Sheet Layouts

The fixed positional column order of every tab. Read and write use the
same layout, so a record always lands in the column it is read from.

Columns added after the original layout (sortIndex, dayOfMonth, endDate,
active) are appended at the end so older sheets still parse: their missing
trailing cells read as empty and take the field default.
"""

from dataclasses import dataclass
from typing import Optional

from expense_sync.config import GoogleSheetsSettings
from expense_sync.models.entities import (
    Category,
    RecurringTransaction,
    SyncRecord,
    Tag,
    Transaction,
    User,
    UserSetting,
)
from expense_sync.services.storage.interface import quote_tab


CATEGORY_COLUMNS = (
    "id", "name", "color", "icon", "budget", "group",
    "lastModified", "isDeleted", "version", "sortIndex",
)
TRANSACTION_COLUMNS = (
    "id", "amount", "description", "categoryId", "date", "tagIds",
    "lastModified", "isDeleted", "recurringId", "version", "createdBy",
)
RECURRING_COLUMNS = (
    "id", "amount", "description", "categoryId", "frequency", "startDate",
    "lastProcessedDate", "lastModified", "isDeleted", "version",
    "dayOfMonth", "endDate", "active",
)
TAG_COLUMNS = ("id", "name", "lastModified", "isDeleted", "version")
USER_COLUMNS = ("id", "name", "color", "lastModified", "isDeleted", "version")
USER_SETTING_COLUMNS = (
    "userId", "settingKey", "settingValue", "lastModified", "isDeleted", "version",
)


@dataclass(frozen=True)
class CollectionLayout:
    """How one collection is named in JSON, stored in the sheet and typed."""

    name: str              # key in read/write payloads
    conflict_name: str     # key in the 409 conflicts object
    model: type[SyncRecord]
    columns: tuple[str, ...]
    default_tab: str

    @property
    def last_column(self) -> str:
        return chr(ord("A") + len(self.columns) - 1)

    def tab(self, settings: Optional[GoogleSheetsSettings] = None) -> str:
        if settings is None:
            return self.default_tab
        return settings.sheet_names().get(self.name, self.default_tab)

    def read_range(self, tab: Optional[str] = None) -> str:
        """Data rows only; the header row is skipped."""
        return f"{quote_tab(tab or self.default_tab)}!A2:{self.last_column}"


CATEGORIES = CollectionLayout(
    "categories", "categories", Category, CATEGORY_COLUMNS, "Categories",
)
TRANSACTIONS = CollectionLayout(
    "transactions", "transactions", Transaction, TRANSACTION_COLUMNS, "Transactions",
)
RECURRING = CollectionLayout(
    "recurringTransactions", "recurring", RecurringTransaction, RECURRING_COLUMNS, "Recurring",
)
TAGS = CollectionLayout(
    "allAvailableTags", "tags", Tag, TAG_COLUMNS, "Tags",
)
USERS = CollectionLayout(
    "users", "users", User, USER_COLUMNS, "Users",
)
USER_SETTINGS = CollectionLayout(
    "userSettings", "userSettings", UserSetting, USER_SETTING_COLUMNS, "UserSettings",
)

# Everything the read endpoint returns, in response order
ALL_LAYOUTS = (CATEGORIES, TRANSACTIONS, RECURRING, TAGS, USERS, USER_SETTINGS)

# Everything the write endpoint accepts
MUTABLE_LAYOUTS = ALL_LAYOUTS

LAYOUTS_BY_NAME = {layout.name: layout for layout in ALL_LAYOUTS}
