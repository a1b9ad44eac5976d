"""
Tests for the client sync orchestrator.

Orchestrators talk to a real app over FastAPI's TestClient, so the whole
protocol (read, write, 409, resolution) is exercised end to end.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from expense_sync.api import create_app
from expense_sync.models import Category, Tag, Transaction
from expense_sync.sync import (
    HttpSyncTransport,
    SyncHttpError,
    SyncOrchestrator,
    SyncStatus,
    SyncTransport,
    UnresolvedConflictsError,
)


LATER = "2024-05-02T08:30:00.000Z"


def clock():
    return LATER


@pytest.fixture
def app(seeded_store):
    return create_app(store_factory=lambda: (seeded_store, {}))


def orchestrator(app):
    return SyncOrchestrator(HttpSyncTransport(TestClient(app)), clock=clock)


def edit(orch, id, description):
    current = orch.get("transactions", id)
    return orch.upsert("transactions", current.model_copy(update={"description": description}))


class BrokenTransport(SyncTransport):
    """Transport whose network is down."""

    def read(self):
        raise httpx.ConnectError("network down")

    def write(self, body):
        raise httpx.ConnectError("network down")


class FaultyTransport(SyncTransport):
    """Transport that fails outside the HTTP error family, e.g. a bad proxy setup."""

    def read(self):
        raise RuntimeError("proxy misconfigured")

    def write(self, body):
        raise RuntimeError("proxy misconfigured")


class MalformedConflictTransport(SyncTransport):
    def read(self):
        return {}

    def write(self, body):
        return 409, {"conflicts": {"transactions": 5}}


class ServerErrorTransport(SyncTransport):
    def read(self):
        raise SyncHttpError(500, "Failed to read from sheet. Details: quota")

    def write(self, body):
        return 500, {"error": "Failed to write to sheet. Details: quota"}


class TestLocalEdits:
    """Versioning of local mutations."""

    def test_new_record_starts_at_one(self, app):
        orch = orchestrator(app)
        tag = orch.upsert("allAvailableTags", Tag(id="x9", name="trip", version=7))
        assert tag.version == 1
        assert tag.last_modified == LATER
        assert orch.dirty_keys("allAvailableTags") == {"x9"}

    def test_edit_bumps_version_by_one(self, app):
        orch = orchestrator(app)
        orch.load()
        assert edit(orch, "t1", "a").version == 4
        assert edit(orch, "t1", "b").version == 5

    def test_soft_delete(self, app):
        orch = orchestrator(app)
        orch.load()
        deleted = orch.soft_delete("transactions", "t2")
        assert deleted.is_deleted is True
        assert deleted.version == 2
        assert [t.id for t in orch.live("transactions")] == ["t1"]
        assert len(orch.records("transactions")) == 2

    def test_soft_delete_unknown_key(self, app):
        with pytest.raises(KeyError):
            orchestrator(app).soft_delete("transactions", "nope")

    def test_unknown_collection(self, app):
        with pytest.raises(KeyError):
            orchestrator(app).live("meals")


class TestLoad:
    """Pulling the remote snapshot."""

    def test_load(self, app):
        orch = orchestrator(app)
        assert orch.load() == SyncStatus.SUCCESS
        assert [c.id for c in orch.live("categories")] == ["c1"]
        assert orch.get("transactions", "t1").amount == 12.5
        assert orch.last_synced == LATER
        assert orch.history == [SyncStatus.SYNCING, SyncStatus.SUCCESS, SyncStatus.IDLE]

    def test_load_keeps_dirty_and_local_only_records(self, app):
        orch = orchestrator(app)
        orch.load()
        edit(orch, "t1", "unsynced")
        orch.upsert("categories", Category(id="c9", name="Local only"))
        orch.load()
        assert orch.get("transactions", "t1").description == "unsynced"
        assert orch.get("categories", "c9") is not None

    def test_load_failure(self):
        orch = SyncOrchestrator(ServerErrorTransport(), clock=clock)
        assert orch.load() == SyncStatus.ERROR
        assert orch.error == "Failed to read from sheet. Details: quota"
        assert orch.status == SyncStatus.IDLE
        assert orch.last_synced is None

    def test_unexpected_load_failure(self):
        orch = SyncOrchestrator(FaultyTransport(), clock=clock)
        assert orch.load() == SyncStatus.ERROR
        assert orch.error == "proxy misconfigured"
        assert orch.history == [SyncStatus.SYNCING, SyncStatus.ERROR, SyncStatus.IDLE]


class TestSync:
    """The write half of the protocol."""

    def test_success_clears_dirty(self, app, seeded_store):
        orch = orchestrator(app)
        orch.load()
        edit(orch, "t1", "Lunch with team")

        assert orch.sync() == SyncStatus.SUCCESS
        assert orch.pending_changes == 0
        assert orch.status == SyncStatus.IDLE
        assert orch.history[-3:] == [SyncStatus.SYNCING, SyncStatus.SUCCESS, SyncStatus.IDLE]
        assert seeded_store.tabs["Transactions"][1][2] == "Lunch with team"

    def test_network_failure_keeps_edits(self, app):
        orch = SyncOrchestrator(BrokenTransport(), clock=clock)
        orch.upsert("transactions", Transaction(id="t1", category_id="c1"))

        assert orch.sync() == SyncStatus.ERROR
        assert orch.error == "network down"
        assert orch.pending_changes == 1
        assert orch.last_synced is None
        assert orch.history == [SyncStatus.SYNCING, SyncStatus.ERROR, SyncStatus.IDLE]

    def test_server_error_message(self):
        orch = SyncOrchestrator(ServerErrorTransport(), clock=clock)
        orch.upsert("allAvailableTags", Tag(id="x1", name="work"))
        assert orch.sync() == SyncStatus.ERROR
        assert orch.error == "Failed to write to sheet. Details: quota"

    def test_unexpected_failure_returns_to_idle(self):
        """Test that any transport failure ends the attempt and keeps the edits."""
        orch = SyncOrchestrator(FaultyTransport(), clock=clock)
        orch.upsert("transactions", Transaction(id="t1", category_id="c1"))

        assert orch.sync() == SyncStatus.ERROR
        assert orch.error == "proxy misconfigured"
        assert orch.status == SyncStatus.IDLE
        assert orch.pending_changes == 1
        assert orch.history == [SyncStatus.SYNCING, SyncStatus.ERROR, SyncStatus.IDLE]

    def test_malformed_conflict_body(self):
        orch = SyncOrchestrator(MalformedConflictTransport(), clock=clock)
        orch.upsert("transactions", Transaction(id="t1", category_id="c1"))
        assert orch.sync() == SyncStatus.ERROR
        assert orch.status == SyncStatus.IDLE


class TestConflicts:
    """Two devices editing the same record."""

    @pytest.fixture
    def devices(self, app):
        """Device A wins a race against device B for transaction t1."""
        a, b = orchestrator(app), orchestrator(app)
        a.load()
        b.load()
        edit(a, "t1", "A first")
        edit(a, "t1", "A second")
        assert a.sync() == SyncStatus.SUCCESS   # server now holds version 5
        edit(b, "t1", "B edit")                 # version 4, based on 3
        return a, b

    def test_conflict_marks_server_copy(self, devices):
        _, b = devices
        assert b.sync() == SyncStatus.CONFLICT
        assert b.status == SyncStatus.RESOLVING

        record = b.get("transactions", "t1")
        assert record.conflicted is True
        assert record.version == 5
        assert record.description == "A second"

        entry = b.conflicts[("transactions", "t1")]
        assert entry.local.description == "B edit"
        assert entry.remote.version == 5

    def test_sync_blocked_until_resolved(self, devices):
        _, b = devices
        b.sync()
        with pytest.raises(UnresolvedConflictsError):
            b.sync()

    def test_keep_local(self, devices, seeded_store):
        """Test that keeping the local edit rebases it on the server version."""
        a, b = devices
        b.sync()
        resolved = b.resolve_conflict("transactions", "t1", keep="local")

        assert resolved.version == 6
        assert resolved.description == "B edit"
        assert resolved.conflicted is False
        assert b.status == SyncStatus.IDLE
        assert b.sync() == SyncStatus.SUCCESS

        a.load()
        assert a.get("transactions", "t1").description == "B edit"
        assert a.get("transactions", "t1").version == 6

    def test_keep_remote(self, devices):
        _, b = devices
        b.sync()
        resolved = b.resolve_conflict("transactions", "t1", keep="remote")

        assert resolved.description == "A second"
        assert resolved.conflicted is False
        assert "t1" not in b.dirty_keys("transactions")
        assert b.sync() == SyncStatus.SUCCESS

    def test_redoing_the_edit_settles_conflict(self, devices):
        _, b = devices
        b.sync()
        redone = edit(b, "t1", "B edit, redone")
        assert redone.version == 6
        assert b.conflicts == {}
        assert b.status == SyncStatus.IDLE

    def test_resolve_unknown(self, devices):
        _, b = devices
        with pytest.raises(KeyError):
            b.resolve_conflict("transactions", "t1")

    def test_resolve_all(self, devices):
        _, b = devices
        b.sync()
        b.resolve_all(keep="remote")
        assert b.conflicts == {}
        assert b.status == SyncStatus.IDLE
