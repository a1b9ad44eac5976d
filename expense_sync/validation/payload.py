"""
Write Payload Validation

Structural validation of the client's working set before anything touches
the spreadsheet.

DESIGN DECISION: Unlike sheet parsing, a bad payload is never degraded.
Every problem is collected with its collection, item index and field, and
the whole request is rejected. A write either applies the client's full
intent or nothing.

Tolerated on purpose:
- items that arrive as JSON-encoded strings (older clients double-encoded)
- null, "" and {} items, which are dropped
- the legacy collection keys "recurring" and "tags"
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from expense_sync.models.entities import RecordKey, SyncRecord, utc_now_iso
from expense_sync.validation.layout import MUTABLE_LAYOUTS


LEGACY_KEYS = {
    "recurringTransactions": "recurring",
    "allAvailableTags": "tags",
}


class PayloadIssue(BaseModel):
    """One problem found in the write payload."""

    collection: Optional[str] = None
    index: Optional[int] = None
    field: str
    message: str


class PayloadValidationError(Exception):
    """The write payload does not match the expected structure."""

    def __init__(self, message: str, issues: list[PayloadIssue]):
        self.issues = issues
        super().__init__(message)

    @property
    def details(self) -> list[dict]:
        return [issue.model_dump() for issue in self.issues]


@dataclass
class WritePayload:
    """Validated client working set, keyed by collection name.

    Only collections the client actually sent are present.
    """

    collections: dict[str, list[SyncRecord]] = field(default_factory=dict)

    def get(self, name: str) -> list[SyncRecord]:
        return self.collections.get(name, [])

    def __contains__(self, name: str) -> bool:
        return name in self.collections


def _decode_item(item: Any) -> Optional[dict]:
    """Return the item as a dict, None to drop it, or raise ValueError."""
    if item is None:
        return None
    if isinstance(item, str):
        if not item.strip():
            return None
        try:
            item = json.loads(item)
        except json.JSONDecodeError as e:
            raise ValueError(f"Item is not valid JSON: {e.msg}")
        if item is None:
            return None
    if not isinstance(item, dict):
        raise ValueError(f"Item must be an object, got {type(item).__name__}")
    return item or None


def _keep_highest_versions(records: list[SyncRecord]) -> list[SyncRecord]:
    """Deduplicate by key, keeping the highest version in first-seen position."""
    by_key: dict[RecordKey, SyncRecord] = {}
    for record in records:
        current = by_key.get(record.key)
        if current is None or record.version > current.version:
            by_key[record.key] = record
    return list(by_key.values())


def validate_write_payload(body: Any, now: Optional[str] = None) -> WritePayload:
    """
    Validate a write request body.

    Args:
        body: Decoded JSON body
        now: Fallback instant for missing/invalid timestamps

    Returns:
        WritePayload with typed records for every collection present

    Raises:
        PayloadValidationError: With one issue per problem found
    """
    if not isinstance(body, dict):
        raise PayloadValidationError(
            "Invalid request body",
            [PayloadIssue(field="<body>", message="Request body must be a JSON object")],
        )

    now = now or utc_now_iso()
    issues: list[PayloadIssue] = []
    payload = WritePayload()

    for layout in MUTABLE_LAYOUTS:
        key = layout.name
        if key not in body and LEGACY_KEYS.get(key) in body:
            key = LEGACY_KEYS[key]
        raw_items = body.get(key)
        if raw_items is None:
            continue
        if not isinstance(raw_items, list):
            issues.append(PayloadIssue(
                collection=layout.name,
                field=key,
                message="Expected a list",
            ))
            continue

        records: list[SyncRecord] = []
        for index, raw_item in enumerate(raw_items):
            try:
                item = _decode_item(raw_item)
            except ValueError as e:
                issues.append(PayloadIssue(
                    collection=layout.name, index=index, field="<item>", message=str(e),
                ))
                continue
            if item is None:
                continue
            try:
                records.append(layout.model.model_validate(item, context={"now": now}))
            except ValidationError as e:
                for error in e.errors():
                    issues.append(PayloadIssue(
                        collection=layout.name,
                        index=index,
                        field=".".join(str(part) for part in error["loc"]) or "<item>",
                        message=error["msg"],
                    ))

        payload.collections[layout.name] = _keep_highest_versions(records)

    if issues:
        raise PayloadValidationError("Invalid data structure received.", issues)
    return payload
