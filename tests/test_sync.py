"""
Tests for the read and write services.

Scenarios follow the protocol end to end against an in-memory sheet:
fresh write, lost-update conflict, clean merge, idempotence and retries.
"""

import asyncio

import pytest

from expense_sync.audit import SyncAuditLogger
from expense_sync.models import SyncEventType
from expense_sync.services.storage import StorageError, TransientStorageError
from expense_sync.sync import (
    ReadService,
    WriteRefusedError,
    WriteService,
    WriteStatus,
    detect_conflicts,
    merge_records,
)
from expense_sync.validation import validate_write_payload
from expense_sync.validation.layout import TRANSACTION_COLUMNS
from expense_sync.models import Tag


NOW = "2024-05-01T12:00:00.000Z"
LATER = "2024-05-02T08:30:00.000Z"


class RecordingAudit(SyncAuditLogger):
    """Audit logger that keeps every event for assertions."""

    def __init__(self):
        super().__init__()
        self.events = []

    def log(self, event):
        self.events.append(event)
        super().log(event)

    def types(self):
        return [event.event_type for event in self.events]


def read(store, audit=None):
    return asyncio.run(ReadService(store, audit=audit).read_snapshot(NOW))


def write(store, body, audit=None, refuse=False):
    payload = validate_write_payload(body, LATER)
    service = WriteService(store, audit=audit, refuse_on_parse_errors=refuse)
    return asyncio.run(service.write(payload, LATER))


def tx(id, version, description="", category="c1", amount=10, **extra):
    return {
        "id": id, "amount": amount, "description": description, "categoryId": category,
        "date": NOW, "lastModified": LATER, "version": version, **extra,
    }


def tag(id, name, version=1):
    return Tag.model_validate({"id": id, "name": name, "version": version, "lastModified": NOW})


class TestReadService:
    """Tests for ReadService.read_snapshot."""

    def test_snapshot(self, seeded_store):
        audit = RecordingAudit()
        snapshot = read(seeded_store, audit)

        assert [c.id for c in snapshot.categories] == ["c1"]
        assert snapshot.categories[0].budget == 300.0
        assert [t.id for t in snapshot.transactions] == ["t1", "t2"]
        assert snapshot.transactions[0].amount == 12.5
        assert [t.name for t in snapshot.all_available_tags] == ["work"]
        assert snapshot.recurring_transactions == []
        assert snapshot.users == []
        assert snapshot.parse_errors == {}
        assert SyncEventType.READ_COMPLETED in audit.types()
        assert seeded_store.calls == ["batch_get"]

    def test_response_shape(self, seeded_store):
        body = read(seeded_store).to_response()
        assert set(body) == {
            "categories", "transactions", "recurringTransactions",
            "allAvailableTags", "users", "userSettings", "parseErrors",
        }
        first = body["transactions"][0]
        assert first["categoryId"] == "c1"
        assert first["tagIds"] == ["tag1"]
        assert first["isDeleted"] is False
        assert "conflicted" not in first

    def test_malformed_collection_degrades_alone(self, seeded_store):
        """Test that a transaction without categoryId empties only transactions."""
        seeded_store.tabs["Transactions"].append(["t3", "5", "broken", ""])
        audit = RecordingAudit()
        snapshot = read(seeded_store, audit)

        assert snapshot.transactions == []
        assert [c.id for c in snapshot.categories] == ["c1"]
        assert len(snapshot.all_available_tags) == 1
        [issue] = snapshot.parse_errors["transactions"]
        assert issue.row == 4
        assert issue.field == "categoryId"
        assert SyncEventType.PARSE_ISSUES in audit.types()

    def test_empty_sheet(self, empty_store):
        snapshot = read(empty_store)
        assert snapshot.counts() == {
            "categories": 0, "transactions": 0, "recurringTransactions": 0,
            "allAvailableTags": 0, "users": 0, "userSettings": 0,
        }

    def test_retries_transient_read(self, seeded_store):
        seeded_store.fail_next("batch_get", TransientStorageError("unavailable", 503), times=2)
        snapshot = read(seeded_store)
        assert len(snapshot.transactions) == 2
        assert seeded_store.calls == ["batch_get"] * 3

    def test_permanent_failure_propagates(self, seeded_store):
        seeded_store.fail_next("batch_get", StorageError("forbidden", 403))
        audit = RecordingAudit()
        with pytest.raises(StorageError):
            read(seeded_store, audit)
        assert SyncEventType.READ_FAILED in audit.types()


class TestConflictAndMerge:
    """Tests for the pure conflict and merge rules."""

    def test_only_strictly_greater_server_version_conflicts(self):
        server = [tag("x1", "a", 3), tag("x2", "b", 2)]
        client = [tag("x1", "a", 2), tag("x2", "changed", 2), tag("x3", "new", 1)]
        assert [r.id for r in detect_conflicts(client, server)] == ["x1"]

    def test_ordered_union(self):
        server = [tag("x1", "a"), tag("x2", "b"), tag("x3", "c")]
        client = [tag("x4", "new"), tag("x2", "B", 2)]
        merged = merge_records(server, client)
        assert [(r.id, r.name) for r in merged] == [
            ("x1", "a"), ("x2", "B"), ("x3", "c"), ("x4", "new"),
        ]


class TestWriteService:
    """Tests for WriteService.write."""

    def test_fresh_write(self, empty_store):
        """Test that the first write creates the tab with a header row."""
        outcome = write(empty_store, {"transactions": [tx("t1", 1, "Coffee", amount=3.5)]})

        assert outcome.status == WriteStatus.ACKNOWLEDGED
        assert outcome.written == {"transactions": 1}
        header, row = empty_store.tabs["Transactions"]
        assert header == list(TRANSACTION_COLUMNS)
        assert row[:4] == ["t1", "3.5", "Coffee", "c1"]
        assert row[TRANSACTION_COLUMNS.index("version")] == "1"

    def test_conflict_aborts_without_writing(self, seeded_store):
        """Test that an older client version gets the server copy back and nothing is written."""
        before = {tab: [list(row) for row in grid] for tab, grid in seeded_store.tabs.items()}
        audit = RecordingAudit()
        outcome = write(seeded_store, {"transactions": [tx("t1", 2, "stale edit")]}, audit)

        assert outcome.status == WriteStatus.CONFLICT
        [remote] = outcome.conflicts["transactions"]
        assert remote.id == "t1"
        assert remote.version == 3
        assert seeded_store.tabs == before
        assert "clear" not in seeded_store.calls
        assert SyncEventType.CONFLICT_DETECTED in audit.types()

        body = outcome.conflicts_body()
        assert set(body) == {"categories", "transactions", "recurring", "tags", "users", "userSettings"}
        assert body["transactions"][0]["version"] == 3
        assert body["tags"] == []

    def test_clean_merge(self, seeded_store):
        """Test that same-key client records replace in place and new ones append."""
        outcome = write(seeded_store, {"transactions": [
            tx("t3", 1, "Cinema"),
            tx("t1", 4, "Lunch (edited)"),
        ]})

        assert outcome.status == WriteStatus.ACKNOWLEDGED
        rows = seeded_store.tabs["Transactions"][1:]
        assert [(row[0], row[2]) for row in rows] == [
            ("t1", "Lunch (edited)"), ("t2", "Groceries"), ("t3", "Cinema"),
        ]
        assert rows[0][TRANSACTION_COLUMNS.index("version")] == "4"

    def test_untouched_collections_not_rewritten(self, seeded_store):
        categories = [list(row) for row in seeded_store.tabs["Categories"]]
        write(seeded_store, {"allAvailableTags": [{"id": "tag2", "name": "home"}]})
        assert seeded_store.tabs["Categories"] == categories
        assert [row[0] for row in seeded_store.tabs["Tags"][1:]] == ["tag1", "tag2"]

    def test_idempotent(self, seeded_store):
        body = {"transactions": [tx("t1", 3, "Lunch"), tx("t9", 1, "Bus")]}
        write(seeded_store, body)
        first = [list(row) for row in seeded_store.tabs["Transactions"]]
        write(seeded_store, body)
        assert seeded_store.tabs["Transactions"] == first

    def test_version_never_goes_backwards(self, seeded_store):
        write(seeded_store, {"transactions": [tx("t1", 5, "v5")]})
        outcome = write(seeded_store, {"transactions": [tx("t1", 4, "v4")]})
        assert outcome.status == WriteStatus.CONFLICT
        assert read(seeded_store).transactions[0].version == 5

    def test_equal_version_collision_logged(self, seeded_store):
        """Test that equal versions with different content are accepted but logged."""
        audit = RecordingAudit()
        outcome = write(seeded_store, {"transactions": [tx("t1", 3, "other content")]}, audit)
        assert outcome.status == WriteStatus.ACKNOWLEDGED
        assert SyncEventType.VERSION_COLLISION in audit.types()
        assert seeded_store.tabs["Transactions"][1][2] == "other content"

    def test_tombstones_are_written(self, seeded_store):
        write(seeded_store, {"transactions": [tx("t2", 2, "Groceries", isDeleted=True)]})
        row = seeded_store.tabs["Transactions"][2]
        assert row[TRANSACTION_COLUMNS.index("isDeleted")] == "TRUE"

    def test_persist_retried_as_one_unit(self, seeded_store):
        """Test that a failed update repeats the whole clear-then-write."""
        seeded_store.fail_next("update", TransientStorageError("unavailable", 503))
        outcome = write(seeded_store, {"transactions": [tx("t3", 1, "Cinema")]})

        assert outcome.status == WriteStatus.ACKNOWLEDGED
        assert seeded_store.calls == ["batch_get", "clear", "update", "clear", "update"]
        assert len(seeded_store.tabs["Transactions"]) == 4

    def test_persist_failure_propagates(self, seeded_store):
        seeded_store.fail_next("clear", StorageError("forbidden", 403))
        audit = RecordingAudit()
        with pytest.raises(StorageError):
            write(seeded_store, {"transactions": [tx("t3", 1)]}, audit)
        assert SyncEventType.WRITE_FAILED in audit.types()

    def test_degraded_collection_overwritten_by_default(self, seeded_store):
        seeded_store.tabs["Transactions"].append(["t3", "5", "broken", ""])
        outcome = write(seeded_store, {"transactions": [tx("t9", 1, "Bus")]})
        assert outcome.status == WriteStatus.ACKNOWLEDGED
        assert [row[0] for row in seeded_store.tabs["Transactions"][1:]] == ["t9"]

    def test_degraded_collection_refused_when_configured(self, seeded_store):
        seeded_store.tabs["Transactions"].append(["t3", "5", "broken", ""])
        with pytest.raises(WriteRefusedError, match="transactions"):
            write(seeded_store, {"transactions": [tx("t9", 1, "Bus")]}, refuse=True)
        assert "clear" not in seeded_store.calls

    def test_empty_payload_touches_nothing(self, seeded_store):
        outcome = write(seeded_store, {})
        assert outcome.status == WriteStatus.ACKNOWLEDGED
        assert seeded_store.calls == []
