"""
Data Models Package

This package contains all Pydantic models used by Expense Sync.
All data flowing between client, API and spreadsheet must conform to these schemas.
"""

from expense_sync.models.entities import (
    Category,
    Entity,
    Frequency,
    RecordKey,
    RecordT,
    RecurringTransaction,
    SettingKey,
    SyncRecord,
    Tag,
    Transaction,
    User,
    UserSetting,
    utc_now_iso,
)
from expense_sync.models.audit import (
    SyncEvent,
    SyncEventBuilder,
    SyncEventType,
    SyncSeverity,
)

__all__ = [
    # Entity models
    "Category",
    "Entity",
    "Frequency",
    "RecordKey",
    "RecordT",
    "RecurringTransaction",
    "SettingKey",
    "SyncRecord",
    "Tag",
    "Transaction",
    "User",
    "UserSetting",
    "utc_now_iso",
    # Audit models
    "SyncEvent",
    "SyncEventBuilder",
    "SyncEventType",
    "SyncSeverity",
]
