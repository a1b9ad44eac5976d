"""
Google Sheets Storage Implementation

DESIGN DECISION: The household's Google Sheet is the system of record because:
1. Users can view and fix their data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions: a clear followed by a failed update leaves a tab empty.
  Callers retry the whole replace; it is a full overwrite, so that is safe.
- No row-level locking: two concurrent writers race between read and write.
  The version check narrows that window but cannot close it.

All reads and writes are batched (one round trip per operation) to stay
well inside the Sheets API quota.
"""

import asyncio
import threading
from typing import Optional

import gspread
import requests
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.service_account import Credentials

from expense_sync.config import GoogleSheetsSettings
from expense_sync.services.storage.interface import (
    ConfigurationError,
    Grid,
    SheetStore,
    StorageError,
    TransientStorageError,
    quote_tab,
    tab_of,
)


SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
TOKEN_URI = "https://oauth2.googleapis.com/token"

# Sheets API answers with these when it is overloaded or rate limiting
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# New tabs get this many rows/cols; the API grows them on write
NEW_SHEET_ROWS = 1000
NEW_SHEET_COLS = 26


def _status_code(error: gspread.exceptions.APIError) -> Optional[int]:
    code = getattr(error, "code", None)
    if isinstance(code, int):
        return code
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


def _translate_error(error: Exception, action: str) -> StorageError:
    """Map gspread/transport failures onto the storage error hierarchy."""
    if isinstance(error, StorageError):
        return error
    message = f"Failed to {action}: {error}"
    if isinstance(error, gspread.exceptions.APIError):
        status = _status_code(error)
        if status in RETRYABLE_STATUS_CODES:
            return TransientStorageError(message, status)
        return StorageError(message, status)
    if isinstance(error, (requests.exceptions.ConnectionError, requests.exceptions.Timeout, TransportError)):
        return TransientStorageError(message)
    if isinstance(error, RefreshError):
        return StorageError(f"Google rejected the service account credentials: {error}", 401)
    return StorageError(message)


def _is_missing_range(error: Exception) -> bool:
    """Sheets answers 400 "Unable to parse range" when a tab does not exist."""
    return (
        isinstance(error, gspread.exceptions.APIError)
        and _status_code(error) == 400
        and "Unable to parse range" in str(error)
    )


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles service-account authentication from configured email and key.
    The opened spreadsheet handle is kept, so a client reused across
    requests pays for the metadata lookup only once.
    """

    def __init__(self, settings: GoogleSheetsSettings):
        self._settings = settings
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._lock = threading.Lock()

    def connect(self) -> gspread.Client:
        """Build an authorized gspread client (no network call yet)."""
        with self._lock:
            if self._client is None:
                try:
                    credentials = Credentials.from_service_account_info(
                        {
                            "type": "service_account",
                            "client_email": self._settings.service_account_email,
                            "private_key": self._settings.private_key,
                            "token_uri": TOKEN_URI,
                        },
                        scopes=SCOPES,
                    )
                except (ValueError, KeyError) as e:
                    raise ConfigurationError(f"Invalid Google service account credentials: {e}")
                client = gspread.authorize(credentials)
                # gspread waits forever by default
                client.set_timeout(self._settings.request_timeout)
                self._client = client
            return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        client = self.connect()
        with self._lock:
            if self._spreadsheet is None:
                try:
                    self._spreadsheet = client.open_by_key(self._settings.sheet_id)
                except gspread.SpreadsheetNotFound:
                    raise StorageError(f"Spreadsheet not found: {self._settings.sheet_id}", 404)
            return self._spreadsheet

    def existing_tabs(self) -> set[str]:
        return {worksheet.title for worksheet in self.get_spreadsheet().worksheets()}

    def ensure_tabs(self, tabs: list[str]) -> None:
        """Create any missing worksheet so range writes cannot fail on it."""
        spreadsheet = self.get_spreadsheet()
        existing = self.existing_tabs()
        for tab in tabs:
            if tab not in existing:
                spreadsheet.add_worksheet(title=tab, rows=NEW_SHEET_ROWS, cols=NEW_SHEET_COLS)


class GoogleSheetsStore(SheetStore):
    """
    Google Sheets implementation of the sheet store.

    Values are written RAW so that "12.5", "TRUE" and ISO timestamps are
    stored as typed and read back as the same text, regardless of the
    spreadsheet's locale.

    gspread is blocking, so every remote call runs in a worker thread and
    the event loop keeps serving other requests meanwhile.
    """

    def __init__(self, settings: GoogleSheetsSettings, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient(settings)

    @property
    def client(self) -> GoogleSheetsClient:
        return self._client

    async def batch_get(self, ranges: list[str]) -> list[Grid]:
        """Read all ranges in one values.batchGet call."""
        try:
            return await asyncio.to_thread(self._batch_get, ranges)
        except ConfigurationError:
            raise
        except Exception as e:
            raise _translate_error(e, "read from spreadsheet")

    def _batch_get(self, ranges: list[str]) -> list[Grid]:
        spreadsheet = self._client.get_spreadsheet()
        present = list(ranges)
        try:
            response = spreadsheet.values_batch_get(present)
        except gspread.exceptions.APIError as e:
            if not _is_missing_range(e):
                raise
            # A tab was never written; drop the missing ranges and ask again
            existing = self._client.existing_tabs()
            present = [r for r in ranges if tab_of(r) in existing]
            if not present:
                return [[] for _ in ranges]
            response = spreadsheet.values_batch_get(present)

        fetched: dict[str, Grid] = {}
        # The API answers in request order
        for requested, value_range in zip(present, response.get("valueRanges", [])):
            fetched[requested] = value_range.get("values", [])
        return [fetched.get(r, []) for r in ranges]

    async def replace(self, sheets: dict[str, Grid]) -> None:
        """Clear every target tab, then write all new grids."""
        if not sheets:
            return
        try:
            await asyncio.to_thread(self._replace, sheets)
        except ConfigurationError:
            raise
        except Exception as e:
            raise _translate_error(e, "write to spreadsheet")

    def _replace(self, sheets: dict[str, Grid]) -> None:
        self._client.ensure_tabs(list(sheets))
        spreadsheet = self._client.get_spreadsheet()
        spreadsheet.values_batch_clear(
            body={"ranges": [f"{quote_tab(tab)}!A1:Z" for tab in sheets]}
        )
        spreadsheet.values_batch_update(
            body={
                "valueInputOption": "RAW",
                "data": [
                    {"range": f"{quote_tab(tab)}!A1", "values": grid}
                    for tab, grid in sheets.items()
                ],
            }
        )
