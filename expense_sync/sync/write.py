"""
Write Path

Accepts the client's working set, detects version conflicts against the
current remote state, and otherwise persists the merged result.

DESIGN DECISION: Optimistic concurrency per record. A conflict is a server
record whose version is strictly greater than the client's copy of the same
key. Any conflict aborts the whole write; nothing is persisted and the
server's side of every conflicting record is returned so the client can
resolve it.

Without conflicts the merge is an ordered union: server records keep their
order, a client record replaces the server record with the same key in
place, and client-only records are appended in payload order. The merged
collections are persisted with one retried clear-then-write.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence

from expense_sync.audit import SyncAuditLogger
from expense_sync.models.entities import RecordKey, SyncRecord, utc_now_iso
from expense_sync.services.retry import with_retry
from expense_sync.services.storage import SheetStore, StorageError
from expense_sync.sync.read import fetch_collections
from expense_sync.validation.layout import MUTABLE_LAYOUTS, CollectionLayout
from expense_sync.validation.payload import WritePayload
from expense_sync.validation.rows import ParsedSheet, serialize_rows


class WriteStatus(str, Enum):
    ACKNOWLEDGED = "acknowledged"
    CONFLICT = "conflict"


class WriteRefusedError(StorageError):
    """A write would overwrite a collection whose remote rows failed to parse."""


@dataclass
class WriteOutcome:
    """Result of one write request."""

    status: WriteStatus
    # collection name -> server records that beat the client's version
    conflicts: dict[str, list[SyncRecord]] = field(default_factory=dict)
    written: dict[str, int] = field(default_factory=dict)

    @property
    def has_conflicts(self) -> bool:
        return self.status == WriteStatus.CONFLICT

    def conflicts_body(self) -> dict[str, list[dict]]:
        """The 409 `conflicts` object; every mutable collection is present."""
        return {
            layout.conflict_name: [
                record.model_dump(mode="json", by_alias=True)
                for record in self.conflicts.get(layout.name, [])
            ]
            for layout in MUTABLE_LAYOUTS
        }


def detect_conflicts(
    client: Sequence[SyncRecord],
    server: Sequence[SyncRecord],
) -> list[SyncRecord]:
    """Server records whose version is strictly greater than the client's."""
    server_by_key = {record.key: record for record in server}
    conflicts = []
    for record in client:
        remote = server_by_key.get(record.key)
        if remote is not None and remote.version > record.version:
            conflicts.append(remote)
    return conflicts


def merge_records(
    server: Sequence[SyncRecord],
    client: Sequence[SyncRecord],
) -> list[SyncRecord]:
    """
    Ordered union of server and client records.

    Server order is kept, client records replace same-key server records in
    place, and client-only records are appended in client order.
    """
    merged: dict[RecordKey, SyncRecord] = {record.key: record for record in server}
    for record in client:
        merged[record.key] = record
    return list(merged.values())


def _content(record: SyncRecord) -> dict:
    return record.model_dump(exclude={"last_modified"})


class WriteService:
    """Conflict-checked writes of the client's working set."""

    def __init__(
        self,
        store: SheetStore,
        tabs: Optional[dict[str, str]] = None,
        audit: Optional[SyncAuditLogger] = None,
        refuse_on_parse_errors: bool = False,
    ):
        self._store = store
        self._tabs = tabs or {}
        self._audit = audit or SyncAuditLogger()
        self._refuse_on_parse_errors = refuse_on_parse_errors

    def _tab(self, layout: CollectionLayout) -> str:
        return self._tabs.get(layout.name) or layout.default_tab

    async def write(self, payload: WritePayload, now: Optional[str] = None) -> WriteOutcome:
        """
        Apply a validated payload.

        Args:
            payload: Collections the client sent; absent ones are left untouched
            now: Fallback instant for empty/invalid remote timestamps

        Returns:
            WriteOutcome with status ACKNOWLEDGED, or CONFLICT and the
            conflicting server records

        Raises:
            StorageError: Remote failure that survived the retry budget
            WriteRefusedError: Remote rows failed to parse and overwriting
                them is disabled
        """
        layouts = [layout for layout in MUTABLE_LAYOUTS if layout.name in payload]
        if not layouts:
            return WriteOutcome(status=WriteStatus.ACKNOWLEDGED)

        now = now or utc_now_iso()
        try:
            server = await fetch_collections(
                self._store, layouts, self._tabs, now, self._audit
            )
        except Exception as e:
            self._audit.log_write_failed(str(e))
            raise

        conflicts = {
            layout.name: detect_conflicts(payload.get(layout.name), server[layout.name].records)
            for layout in layouts
        }
        conflicts = {name: records for name, records in conflicts.items() if records}
        if conflicts:
            self._audit.log_conflicts({
                name: [str(record.key) for record in records]
                for name, records in conflicts.items()
            })
            return WriteOutcome(status=WriteStatus.CONFLICT, conflicts=conflicts)

        self._check_degraded(server)

        merged: dict[str, list[SyncRecord]] = {}
        for layout in layouts:
            client = payload.get(layout.name)
            self._report_collisions(layout, client, server[layout.name].records)
            merged[layout.name] = merge_records(server[layout.name].records, client)

        sheets = {
            self._tab(layout): serialize_rows(merged[layout.name], layout.columns)
            for layout in layouts
        }

        async def replace():
            await self._store.replace(sheets)

        try:
            await with_retry(replace, audit=self._audit)
        except Exception as e:
            self._audit.log_write_failed(str(e))
            raise

        written = {name: len(records) for name, records in merged.items()}
        self._audit.log_write_persisted(written)
        return WriteOutcome(status=WriteStatus.ACKNOWLEDGED, written=written)

    def _check_degraded(self, server: dict[str, ParsedSheet]) -> None:
        if not self._refuse_on_parse_errors:
            return
        degraded = sorted(name for name, sheet in server.items() if sheet.degraded)
        if degraded:
            raise WriteRefusedError(
                "Refusing to overwrite collections with unparseable rows: "
                + ", ".join(degraded)
            )

    def _report_collisions(
        self,
        layout: CollectionLayout,
        client: Sequence[SyncRecord],
        server: Sequence[SyncRecord],
    ) -> None:
        """Same key and version but different content: the client copy wins."""
        server_by_key = {record.key: record for record in server}
        for record in client:
            remote = server_by_key.get(record.key)
            if (
                remote is not None
                and remote.version == record.version
                and _content(remote) != _content(record)
            ):
                self._audit.log_version_collision(layout.name, str(record.key), record.version)
