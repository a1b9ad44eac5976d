"""
Sync Audit Logger

DESIGN DECISION: Every significant step of a read or write request is logged.
This provides:
1. Traceability of what each request did to the spreadsheet
2. Visibility for collections that degraded to empty during parsing
3. Correlation of all events of one request via a correlation id

The audit logger never raises: a logging failure must not break a sync.
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from expense_sync.models.audit import SyncEvent, SyncEventBuilder, SyncSeverity


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog's JSON lines through stdlib logging at `level`."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )


class SyncAuditLogger:
    """
    Central audit logging service for one request.

    Holds the request's correlation id so callers don't have to pass it
    to every method.
    """

    def __init__(self, correlation_id: Optional[UUID] = None):
        self.correlation_id = correlation_id or create_correlation_id()
        self._logger = structlog.get_logger("expense_sync.audit")

    def log(self, event: SyncEvent) -> None:
        """Log an audit event at the level matching its severity."""
        log_dict = event.to_log_dict()
        try:
            if event.severity == SyncSeverity.ERROR:
                self._logger.error("sync_event", **log_dict)
            elif event.severity == SyncSeverity.WARNING:
                self._logger.warning("sync_event", **log_dict)
            elif event.severity == SyncSeverity.DEBUG:
                self._logger.debug("sync_event", **log_dict)
            else:
                self._logger.info("sync_event", **log_dict)
        except Exception as e:
            # Don't raise - audit logging should not break the main flow
            logging.getLogger(__name__).error("audit logging failed: %s", e)

    def log_read_completed(self, counts: dict[str, int]) -> None:
        self.log(SyncEventBuilder.read_completed(counts, self.correlation_id))

    def log_read_failed(self, error_message: str) -> None:
        self.log(SyncEventBuilder.read_failed(error_message, self.correlation_id))

    def log_parse_issues(self, collection: str, issues: list[dict]) -> None:
        """Log rows that made a collection degrade to an empty list."""
        self.log(SyncEventBuilder.parse_issues(collection, issues, self.correlation_id))

    def log_payload_rejected(self, details: list[dict]) -> None:
        self.log(SyncEventBuilder.payload_rejected(details, self.correlation_id))

    def log_conflicts(self, conflicts: dict[str, list[str]]) -> None:
        self.log(SyncEventBuilder.conflict_detected(conflicts, self.correlation_id))

    def log_version_collision(self, collection: str, key: str, version: int) -> None:
        self.log(
            SyncEventBuilder.version_collision(collection, key, version, self.correlation_id)
        )

    def log_write_persisted(self, counts: dict[str, int]) -> None:
        self.log(SyncEventBuilder.write_persisted(counts, self.correlation_id))

    def log_write_failed(self, error_message: str) -> None:
        self.log(SyncEventBuilder.write_failed(error_message, self.correlation_id))

    def log_configuration_error(self, error_message: str) -> None:
        self.log(SyncEventBuilder.configuration_error(error_message, self.correlation_id))

    def log_error(self, error_type: str, error_message: str) -> None:
        self.log(
            SyncEventBuilder.system_error(error_type, error_message, self.correlation_id)
        )


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a request and pass it through all
    subsequent operations.
    """
    return uuid4()
