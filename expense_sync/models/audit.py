"""
Sync Audit Models

Every read, write, conflict and degrade is described by a SyncEvent.
This provides:
1. Traceability of what a request did to the spreadsheet
2. Debugging information when a collection silently degrades
3. A single place where event shapes are defined

DESIGN DECISION: Events are logged, never persisted to the spreadsheet.
The spreadsheet is the system of record for user data only.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class SyncEventType(str, Enum):
    """Types of events we audit."""
    # Read path
    READ_COMPLETED = "read_completed"
    READ_FAILED = "read_failed"
    PARSE_ISSUES = "parse_issues"

    # Write path
    PAYLOAD_REJECTED = "payload_rejected"
    CONFLICT_DETECTED = "conflict_detected"
    VERSION_COLLISION = "version_collision"
    WRITE_PERSISTED = "write_persisted"
    WRITE_FAILED = "write_failed"

    # Remote store
    RETRY_SCHEDULED = "retry_scheduled"

    # System events
    CONFIGURATION_ERROR = "configuration_error"
    SYSTEM_ERROR = "system_error"


class SyncSeverity(str, Enum):
    """Severity level for sync events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class SyncEvent(BaseModel):
    """
    A single sync audit event.

    Every significant step of a request creates one of these.
    """

    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    event_type: SyncEventType
    severity: SyncSeverity = SyncSeverity.INFO

    # Which collection the event is about, if any
    collection: Optional[str] = None

    correlation_id: Optional[UUID] = Field(
        default=None,
        description="Ties together all events of one HTTP request"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "collection": self.collection,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }


class SyncEventBuilder:
    """
    Helper class to build sync events with common patterns.

    Usage:
        event = SyncEventBuilder.conflict_detected(counts, correlation_id)
    """

    @staticmethod
    def read_completed(
        counts: dict[str, int],
        correlation_id: Optional[UUID],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.READ_COMPLETED,
            correlation_id=correlation_id,
            description="Snapshot read from spreadsheet",
            details={"counts": counts},
        )

    @staticmethod
    def read_failed(
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.READ_FAILED,
            severity=SyncSeverity.ERROR,
            correlation_id=correlation_id,
            description="Snapshot read failed",
            error_message=error_message,
        )

    @staticmethod
    def parse_issues(
        collection: str,
        issues: list[dict],
        correlation_id: Optional[UUID],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.PARSE_ISSUES,
            severity=SyncSeverity.WARNING,
            collection=collection,
            correlation_id=correlation_id,
            description=f"{collection} degraded to empty: {len(issues)} invalid row(s)",
            details={"issues": issues},
        )

    @staticmethod
    def payload_rejected(
        details: list[dict],
        correlation_id: Optional[UUID],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.PAYLOAD_REJECTED,
            severity=SyncSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Write payload rejected with {len(details)} issue(s)",
            details={"issues": details},
        )

    @staticmethod
    def conflict_detected(
        conflicts: dict[str, list[str]],
        correlation_id: Optional[UUID],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.CONFLICT_DETECTED,
            severity=SyncSeverity.WARNING,
            correlation_id=correlation_id,
            description="Write aborted: server holds newer versions",
            details={"conflicting_keys": conflicts},
        )

    @staticmethod
    def version_collision(
        collection: str,
        key: str,
        version: int,
        correlation_id: Optional[UUID],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.VERSION_COLLISION,
            severity=SyncSeverity.WARNING,
            collection=collection,
            correlation_id=correlation_id,
            description=f"Same version {version} with different content for {key}",
            details={"key": key, "version": version},
        )

    @staticmethod
    def write_persisted(
        counts: dict[str, int],
        correlation_id: Optional[UUID],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.WRITE_PERSISTED,
            correlation_id=correlation_id,
            description="Merged state written to spreadsheet",
            details={"counts": counts},
        )

    @staticmethod
    def write_failed(
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.WRITE_FAILED,
            severity=SyncSeverity.ERROR,
            correlation_id=correlation_id,
            description="Write failed",
            error_message=error_message,
        )

    @staticmethod
    def retry_scheduled(
        attempt: int,
        delay_seconds: float,
        error_message: str,
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.RETRY_SCHEDULED,
            severity=SyncSeverity.WARNING,
            description=f"Remote call failed on attempt {attempt}, retrying",
            details={"attempt": attempt, "delay_seconds": round(delay_seconds, 3)},
            error_message=error_message,
        )

    @staticmethod
    def configuration_error(
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.CONFIGURATION_ERROR,
            severity=SyncSeverity.ERROR,
            correlation_id=correlation_id,
            description="Server configuration incomplete",
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID],
    ) -> SyncEvent:
        return SyncEvent(
            event_type=SyncEventType.SYSTEM_ERROR,
            severity=SyncSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Unhandled {error_type}",
            error_message=error_message,
        )
