"""Validation package: sheet layouts, row normalization and payload checks."""

from expense_sync.validation.layout import (
    ALL_LAYOUTS,
    CATEGORIES,
    LAYOUTS_BY_NAME,
    MUTABLE_LAYOUTS,
    RECURRING,
    TAGS,
    TRANSACTIONS,
    USER_SETTINGS,
    USERS,
    CollectionLayout,
)
from expense_sync.validation.rows import (
    ParsedSheet,
    RowIssue,
    format_cell,
    parse_rows,
    parse_sheet,
    serialize_rows,
)
from expense_sync.validation.payload import (
    PayloadIssue,
    PayloadValidationError,
    WritePayload,
    validate_write_payload,
)

__all__ = [
    # Layouts
    "ALL_LAYOUTS",
    "CATEGORIES",
    "LAYOUTS_BY_NAME",
    "MUTABLE_LAYOUTS",
    "RECURRING",
    "TAGS",
    "TRANSACTIONS",
    "USER_SETTINGS",
    "USERS",
    "CollectionLayout",
    # Rows
    "ParsedSheet",
    "RowIssue",
    "format_cell",
    "parse_rows",
    "parse_sheet",
    "serialize_rows",
    # Payload
    "PayloadIssue",
    "PayloadValidationError",
    "WritePayload",
    "validate_write_payload",
]
