"""
Row Normalization

Turns raw spreadsheet grids into typed records, and typed records back
into grids.

DESIGN DECISION: One generic routine maps a row onto its column names and
hands the resulting dict to the entity model; all per-field rules live in
the model's field types. Adding a column is a model change, not a parser
change.

IMPORTANT: If any row of a collection fails validation, the collection
degrades to an empty list and every failing row/field is reported in
`issues`. Callers decide how loudly to surface that.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, Sequence

from pydantic import BaseModel, ValidationError

from expense_sync.models.entities import RecordT, SyncRecord, utc_now_iso


# Data rows start below the header row
FIRST_DATA_ROW = 2


class RowIssue(BaseModel):
    """One field of one spreadsheet row that failed validation."""

    row: int
    field: str
    message: str


@dataclass
class ParsedSheet(Generic[RecordT]):
    """Records of one collection plus the issues that prevented parsing."""

    records: list[RecordT] = field(default_factory=list)
    issues: list[RowIssue] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.issues)


def _is_blank(row: Sequence[Any]) -> bool:
    return all(cell is None or str(cell).strip() == "" for cell in row)


def _row_to_cells(row: Sequence[Any], columns: Sequence[str]) -> dict[str, Any]:
    """Map cells positionally; missing trailing cells read as ""."""
    cells = {}
    for index, column in enumerate(columns):
        value = row[index] if index < len(row) else ""
        cells[column] = "" if value is None else value
    return cells


def parse_sheet(
    rows: Optional[Sequence[Sequence[Any]]],
    columns: Sequence[str],
    model: type[RecordT],
    now: Optional[str] = None,
    first_row: int = FIRST_DATA_ROW,
) -> ParsedSheet[RecordT]:
    """
    Parse a header-stripped grid into records.

    Args:
        rows: Data rows, each a list of cell values
        columns: Column names in positional order
        model: Entity model to validate each row against
        now: Fallback instant for empty/invalid timestamps (shared by the batch)
        first_row: Spreadsheet row number of rows[0], for issue reports

    Returns:
        ParsedSheet with records in input order, or no records and the
        list of issues if any row failed.
    """
    now = now or utc_now_iso()
    records: list[RecordT] = []
    issues: list[RowIssue] = []

    for offset, row in enumerate(rows or []):
        if _is_blank(row):
            continue
        cells = _row_to_cells(row, columns)
        try:
            records.append(model.model_validate(cells, context={"now": now}))
        except ValidationError as e:
            for error in e.errors():
                issues.append(RowIssue(
                    row=first_row + offset,
                    field=".".join(str(part) for part in error["loc"]) or "<row>",
                    message=error["msg"],
                ))

    if issues:
        return ParsedSheet(records=[], issues=issues)
    return ParsedSheet(records=records)


def parse_rows(
    rows: Optional[Sequence[Sequence[Any]]],
    columns: Sequence[str],
    model: type[RecordT],
    now: Optional[str] = None,
) -> list[RecordT]:
    """parse_sheet without the issue report."""
    return parse_sheet(rows, columns, model, now).records


def format_number(value: float) -> str:
    """12.5 -> "12.5", 100.0 -> "100"; parses back to the same float."""
    if value.is_integer():
        return str(int(value))
    return repr(value)


def format_cell(value: Any) -> str:
    """Render one model value as sheet text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, float):
        return format_number(value)
    if isinstance(value, (list, tuple)):
        return ",".join(format_cell(item) for item in value)
    return str(value)


def serialize_record(record: SyncRecord, columns: Sequence[str]) -> list[str]:
    data = record.model_dump(by_alias=True)
    return [format_cell(data.get(column)) for column in columns]


def serialize_rows(
    records: Sequence[SyncRecord],
    columns: Sequence[str],
    include_header: bool = True,
) -> list[list[str]]:
    """
    Convert records to a grid in the given column order.

    Money as decimal-point text, booleans as TRUE/FALSE, lists comma-joined,
    absent values as empty cells.
    """
    grid = [list(columns)] if include_header else []
    grid.extend(serialize_record(record, columns) for record in records)
    return grid
