"""
Read Path

Produces the authoritative snapshot of every collection for client
bootstrap and refresh.

DESIGN DECISION: Read does no merging. It fetches every tab in one batched
call, normalizes each one independently, and returns the result as is. A
collection that fails to parse degrades to an empty list; the failure is
logged and reported in `parseErrors` so it is never invisible.

Read is all-or-nothing at the transport level: if the batched fetch fails
after retries, no partial snapshot is returned.
"""

from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from expense_sync.audit import SyncAuditLogger
from expense_sync.models.entities import (
    Category,
    RecurringTransaction,
    Tag,
    Transaction,
    User,
    UserSetting,
    utc_now_iso,
)
from expense_sync.services.retry import with_retry
from expense_sync.services.storage import SheetStore
from expense_sync.validation.layout import ALL_LAYOUTS, CollectionLayout
from expense_sync.validation.rows import ParsedSheet, RowIssue, parse_sheet


class Snapshot(BaseModel):
    """All collections as stored remotely, plus any parse degrades."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    categories: list[Category] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    recurring_transactions: list[RecurringTransaction] = Field(default_factory=list)
    all_available_tags: list[Tag] = Field(default_factory=list)
    users: list[User] = Field(default_factory=list)
    user_settings: list[UserSetting] = Field(default_factory=list)
    parse_errors: dict[str, list[RowIssue]] = Field(default_factory=dict)

    def to_response(self) -> dict:
        """JSON body of the read endpoint."""
        return self.model_dump(mode="json", by_alias=True)

    def counts(self) -> dict[str, int]:
        return {
            layout.name: len(getattr(self, _attribute(layout)))
            for layout in ALL_LAYOUTS
        }


def _attribute(layout: CollectionLayout) -> str:
    """Snapshot attribute for a layout: allAvailableTags -> all_available_tags"""
    return "".join("_" + c.lower() if c.isupper() else c for c in layout.name)


async def fetch_collections(
    store: SheetStore,
    layouts: Sequence[CollectionLayout],
    tabs: Optional[dict[str, str]],
    now: str,
    audit: SyncAuditLogger,
) -> dict[str, ParsedSheet]:
    """
    Fetch and normalize several collections in one retried batch call.

    Returns:
        collection name -> ParsedSheet (degraded ones carry their issues)
    """
    tabs = tabs or {}
    ranges = [layout.read_range(tabs.get(layout.name)) for layout in layouts]

    async def batch_get():
        return await store.batch_get(ranges)

    grids = await with_retry(batch_get, audit=audit)

    parsed: dict[str, ParsedSheet] = {}
    for index, layout in enumerate(layouts):
        grid = grids[index] if index < len(grids) else []
        sheet = parse_sheet(grid, layout.columns, layout.model, now)
        if sheet.degraded:
            audit.log_parse_issues(
                layout.name, [issue.model_dump() for issue in sheet.issues]
            )
        parsed[layout.name] = sheet
    return parsed


class ReadService:
    """Reads the full snapshot from a sheet store."""

    def __init__(
        self,
        store: SheetStore,
        tabs: Optional[dict[str, str]] = None,
        audit: Optional[SyncAuditLogger] = None,
    ):
        self._store = store
        self._tabs = tabs
        self._audit = audit or SyncAuditLogger()

    async def read_snapshot(self, now: Optional[str] = None) -> Snapshot:
        """
        Fetch all six collections.

        Args:
            now: Fallback instant for empty/invalid timestamps

        Raises:
            StorageError: Remote failure that survived the retry budget
        """
        now = now or utc_now_iso()
        try:
            parsed = await fetch_collections(
                self._store, ALL_LAYOUTS, self._tabs, now, self._audit
            )
        except Exception as e:
            self._audit.log_read_failed(str(e))
            raise

        snapshot = Snapshot(
            **{_attribute(layout): parsed[layout.name].records for layout in ALL_LAYOUTS},
            parse_errors={
                name: sheet.issues for name, sheet in parsed.items() if sheet.degraded
            },
        )
        self._audit.log_read_completed(snapshot.counts())
        return snapshot
