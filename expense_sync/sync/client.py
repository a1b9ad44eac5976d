"""
Client Sync Orchestrator

Holds the local working set, tracks unsynced edits, and drives the
read/write protocol against the sync endpoints.

State machine of one sync:

    Idle -> Syncing -> Success -> Idle
                    -> Conflict -> Resolving -> (resolve_conflict ...) -> Idle
                    -> Error -> Idle

DESIGN DECISION: After a 409 the server's copy of each conflicting record
replaces the local one (flagged `conflicted`) and the rejected local copy
is kept aside. Resubmitting is blocked until every conflict is resolved,
so a version that already lost is never sent again.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Literal, Optional

import httpx
import structlog
from pydantic import ValidationError

from expense_sync.models.entities import RecordKey, SyncRecord, utc_now_iso
from expense_sync.validation.layout import ALL_LAYOUTS, LAYOUTS_BY_NAME, MUTABLE_LAYOUTS


logger = structlog.get_logger(__name__)


class SyncStatus(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    CONFLICT = "conflict"
    RESOLVING = "resolving"
    ERROR = "error"


class SyncHttpError(Exception):
    """The sync endpoint answered with an unexpected status."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(message)


class UnresolvedConflictsError(RuntimeError):
    """sync() was called while conflicts are still waiting for a decision."""


@dataclass
class ConflictEntry:
    collection: str
    local: SyncRecord
    remote: SyncRecord


class SyncTransport(ABC):
    """How the orchestrator reaches the read and write endpoints."""

    @abstractmethod
    def read(self) -> dict:
        """Return the decoded read response; raise on any non-200."""

    @abstractmethod
    def write(self, body: dict) -> tuple[int, dict]:
        """Send a write payload; return (status code, decoded body)."""


def _json_body(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class HttpSyncTransport(SyncTransport):
    """Transport over an httpx.Client (FastAPI's TestClient works too)."""

    def __init__(self, client: httpx.Client, base_url: str = ""):
        self._client = client
        self._base_url = base_url.rstrip("/")

    def read(self) -> dict:
        response = self._client.post(f"{self._base_url}/api/sheets/read")
        body = _json_body(response)
        if response.status_code != 200:
            raise SyncHttpError(
                response.status_code,
                body.get("error") or f"Read failed with status {response.status_code}",
            )
        return body

    def write(self, body: dict) -> tuple[int, dict]:
        response = self._client.post(f"{self._base_url}/api/sheets/write", json=body)
        return response.status_code, _json_body(response)


class SyncOrchestrator:
    """Local working set of every collection plus the sync state machine."""

    def __init__(
        self,
        transport: SyncTransport,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self._transport = transport
        self._clock = clock
        self._collections: dict[str, dict[RecordKey, SyncRecord]] = {
            layout.name: {} for layout in ALL_LAYOUTS
        }
        self._dirty: dict[str, set[RecordKey]] = {layout.name: set() for layout in ALL_LAYOUTS}
        self.conflicts: dict[tuple[str, RecordKey], ConflictEntry] = {}
        self.status = SyncStatus.IDLE
        self.history: list[SyncStatus] = []
        self.error: Optional[str] = None
        self.last_synced: Optional[str] = None

    # Working set

    def _collection(self, name: str) -> dict[RecordKey, SyncRecord]:
        if name not in self._collections:
            raise KeyError(f"Unknown collection: {name}")
        return self._collections[name]

    def records(self, collection: str) -> list[SyncRecord]:
        """Every local record, tombstones included."""
        return list(self._collection(collection).values())

    def live(self, collection: str) -> list[SyncRecord]:
        return [r for r in self._collection(collection).values() if not r.is_deleted]

    def get(self, collection: str, key: RecordKey) -> Optional[SyncRecord]:
        return self._collection(collection).get(key)

    def dirty_keys(self, collection: str) -> set[RecordKey]:
        return set(self._dirty[collection])

    @property
    def pending_changes(self) -> int:
        return sum(len(keys) for keys in self._dirty.values())

    def upsert(self, collection: str, record: SyncRecord) -> SyncRecord:
        """
        Store a local edit.

        A new key starts at version 1; an existing key gets its stored
        version + 1. Editing a conflicted record builds on the server copy
        and settles that conflict.
        """
        records = self._collection(collection)
        existing = records.get(record.key)
        version = existing.version + 1 if existing is not None else 1
        stored = record.model_copy(update={
            "version": version,
            "last_modified": self._clock(),
            "conflicted": False,
        })
        records[stored.key] = stored
        self._dirty[collection].add(stored.key)
        if self.conflicts.pop((collection, stored.key), None) is not None:
            self._settle_if_resolved()
        return stored

    def soft_delete(self, collection: str, key: RecordKey) -> SyncRecord:
        existing = self._collection(collection).get(key)
        if existing is None:
            raise KeyError(f"No {collection} record with key {key!r}")
        return self.upsert(collection, existing.model_copy(update={"is_deleted": True}))

    # Protocol

    def _transition(self, status: SyncStatus) -> None:
        self.status = status
        self.history.append(status)
        logger.debug("sync_status", status=status.value)

    def _fail(self, message: str) -> SyncStatus:
        self.error = message
        self._transition(SyncStatus.ERROR)
        logger.warning("sync_failed", error=message)
        self._transition(SyncStatus.IDLE)
        return SyncStatus.ERROR

    def _decode(self, collection: str, items: list, now: str) -> list[SyncRecord]:
        model = LAYOUTS_BY_NAME[collection].model
        return [model.model_validate(item, context={"now": now}) for item in items or []]

    def load(self) -> SyncStatus:
        """
        Pull the remote snapshot.

        Remote records replace clean local ones; dirty or conflicted local
        records and local-only records are kept.
        """
        self._transition(SyncStatus.SYNCING)
        now = self._clock()
        try:
            body = self._transport.read()
            remote = {
                layout.name: self._decode(layout.name, body.get(layout.name), now)
                for layout in ALL_LAYOUTS
            }
        except (httpx.HTTPError, SyncHttpError, ValidationError) as e:
            return self._fail(str(e))
        except Exception as e:
            logger.exception("load_unexpected_error")
            return self._fail(str(e) or type(e).__name__)

        for name, records in remote.items():
            local = self._collections[name]
            for record in records:
                if record.key in self._dirty[name] or (name, record.key) in self.conflicts:
                    continue
                local[record.key] = record

        if body.get("parseErrors"):
            logger.warning("remote_parse_errors", collections=sorted(body["parseErrors"]))

        self.error = None
        self.last_synced = now
        self._transition(SyncStatus.SUCCESS)
        self._transition(SyncStatus.IDLE)
        return SyncStatus.SUCCESS

    def sync(self) -> SyncStatus:
        """
        Send the whole local working set.

        Raises:
            UnresolvedConflictsError: If a previous conflict is still open
        """
        if self.conflicts:
            raise UnresolvedConflictsError(
                f"{len(self.conflicts)} conflict(s) must be resolved before syncing"
            )

        self._transition(SyncStatus.SYNCING)
        body = {
            layout.name: [
                record.model_dump(mode="json", by_alias=True)
                for record in self._collections[layout.name].values()
            ]
            for layout in MUTABLE_LAYOUTS
        }
        try:
            status_code, response = self._transport.write(body)
        except httpx.HTTPError as e:
            return self._fail(str(e))
        except Exception as e:
            logger.exception("sync_unexpected_error")
            return self._fail(str(e) or type(e).__name__)

        if status_code == 200:
            for keys in self._dirty.values():
                keys.clear()
            self.error = None
            self.last_synced = self._clock()
            self._transition(SyncStatus.SUCCESS)
            self._transition(SyncStatus.IDLE)
            return SyncStatus.SUCCESS

        if status_code == 409:
            conflicts = response.get("conflicts")
            if not isinstance(conflicts, dict):
                return self._fail("Conflict error, but no conflict data received.")
            try:
                self._apply_conflicts(conflicts)
            except ValidationError as e:
                return self._fail(str(e))
            except Exception as e:
                logger.exception("conflict_apply_error")
                return self._fail(str(e) or type(e).__name__)
            self._transition(SyncStatus.CONFLICT)
            self._transition(SyncStatus.RESOLVING)
            return SyncStatus.CONFLICT

        return self._fail(response.get("error") or f"Sync failed with status {status_code}")

    def _apply_conflicts(self, conflicts: dict) -> None:
        now = self._clock()
        for layout in MUTABLE_LAYOUTS:
            items = conflicts.get(layout.conflict_name) or []
            for remote in self._decode(layout.name, items, now):
                local = self._collections[layout.name].get(remote.key)
                if local is None:
                    local = remote
                self.conflicts[(layout.name, remote.key)] = ConflictEntry(
                    collection=layout.name, local=local, remote=remote,
                )
                self._collections[layout.name][remote.key] = remote.model_copy(
                    update={"conflicted": True}
                )
                self._dirty[layout.name].discard(remote.key)
        logger.info("sync_conflicts", count=len(self.conflicts))

    def resolve_conflict(
        self,
        collection: str,
        key: RecordKey,
        keep: Literal["remote", "local"] = "remote",
    ) -> SyncRecord:
        """
        Settle one conflict.

        "remote" accepts the server copy. "local" re-applies the local
        content on top of the server version and marks it dirty.
        """
        entry = self.conflicts.pop((collection, key), None)
        if entry is None:
            raise KeyError(f"No conflict for {collection} record {key!r}")

        if keep == "local":
            record = entry.local.model_copy(update={
                "version": entry.remote.version + 1,
                "last_modified": self._clock(),
                "conflicted": False,
            })
            self._dirty[collection].add(record.key)
        elif keep == "remote":
            record = entry.remote.model_copy(update={"conflicted": False})
        else:
            self.conflicts[(collection, key)] = entry
            raise ValueError(f"keep must be 'remote' or 'local', got {keep!r}")

        self._collections[collection][record.key] = record
        self._settle_if_resolved()
        return record

    def resolve_all(self, keep: Literal["remote", "local"] = "remote") -> None:
        for collection, key in list(self.conflicts):
            self.resolve_conflict(collection, key, keep)

    def _settle_if_resolved(self) -> None:
        if not self.conflicts and self.status == SyncStatus.RESOLVING:
            self._transition(SyncStatus.IDLE)
