"""
Sync Package

Server-side read/write services and the client-side orchestrator.
"""

from expense_sync.sync.read import ReadService, Snapshot, fetch_collections
from expense_sync.sync.write import (
    WriteOutcome,
    WriteRefusedError,
    WriteService,
    WriteStatus,
    detect_conflicts,
    merge_records,
)
from expense_sync.sync.client import (
    ConflictEntry,
    HttpSyncTransport,
    SyncHttpError,
    SyncOrchestrator,
    SyncStatus,
    SyncTransport,
    UnresolvedConflictsError,
)

__all__ = [
    # Server
    "ReadService",
    "Snapshot",
    "fetch_collections",
    "WriteOutcome",
    "WriteRefusedError",
    "WriteService",
    "WriteStatus",
    "detect_conflicts",
    "merge_records",
    # Client
    "ConflictEntry",
    "HttpSyncTransport",
    "SyncHttpError",
    "SyncOrchestrator",
    "SyncStatus",
    "SyncTransport",
    "UnresolvedConflictsError",
]
