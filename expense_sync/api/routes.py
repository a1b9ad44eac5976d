"""
HTTP Endpoints

POST /api/sheets/read   full snapshot of every collection
POST /api/sheets/write  conflict-checked write of the client's working set
GET  /api/health        configuration check

Every error body carries a human-readable `error` string. Configuration
and payload problems are answered before any remote call is made.
"""

import json
from typing import Callable, Optional

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from expense_sync import __version__
from expense_sync.audit import SyncAuditLogger
from expense_sync.config import (
    GoogleSheetsSettings,
    describe_settings_error,
    get_settings,
    validate_all_settings,
)
from expense_sync.models.entities import utc_now_iso
from expense_sync.services.storage import (
    ConfigurationError,
    GoogleSheetsClient,
    GoogleSheetsStore,
    InMemorySheetStore,
    SheetStore,
    StorageError,
)
from expense_sync.sync import ReadService, WriteService
from expense_sync.validation import PayloadValidationError, validate_write_payload


logger = structlog.get_logger(__name__)

# Returns the store and the collection -> tab mapping for one request
StoreFactory = Callable[[], tuple[SheetStore, dict[str, str]]]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

CONFLICT_MESSAGE = "Conflict: newer versions exist on the server."
WRITE_OK_MESSAGE = "Data successfully written to sheet."


def google_store_factory() -> StoreFactory:
    """
    Build Google Sheets stores from the environment, or fail fast.

    Settings are re-read per request; the authorized client and its open
    spreadsheet are reused for as long as the credentials stay the same.
    """
    cache: dict[tuple, GoogleSheetsClient] = {}

    def factory() -> tuple[SheetStore, dict[str, str]]:
        try:
            sheets = GoogleSheetsSettings()
        except ValidationError as e:
            raise ConfigurationError(describe_settings_error(e, "GOOGLE_"))
        key = (sheets.service_account_email, sheets.private_key, sheets.sheet_id, sheets.request_timeout)
        client = cache.get(key)
        if client is None:
            cache.clear()
            client = cache[key] = GoogleSheetsClient(sheets)
        return GoogleSheetsStore(sheets, client=client), sheets.sheet_names()

    return factory


def default_store_factory() -> StoreFactory:
    """
    Pick the backend named by SYNC_STORAGE_BACKEND.

    The memory backend keeps one store for the life of the app so local
    development sees its own writes.
    """
    if get_settings().sync.storage_backend == "memory":
        store = InMemorySheetStore()
        return lambda: (store, {})
    return google_store_factory()


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


async def _read_json(request: Request):
    raw = await request.body()
    if not raw.strip():
        return {}
    return json.loads(raw)


def create_app(store_factory: Optional[StoreFactory] = None) -> FastAPI:
    """
    Create the sync API.

    Args:
        store_factory: Supplies the store per request; defaults to the
            backend configured in the environment.
    """
    app = FastAPI(title="Expense Sync", version=__version__)
    app.state.store_factory = store_factory or default_store_factory()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # 405 keeps its Allow header
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.options("/api/sheets/read", include_in_schema=False)
    @app.options("/api/sheets/write", include_in_schema=False)
    async def preflight() -> Response:
        return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)

    @app.get("/api/health")
    async def health() -> dict:
        checks = validate_all_settings()
        healthy = all(value for key, value in checks.items() if not key.endswith("_error"))
        return {
            "status": "ok" if healthy else "degraded",
            "version": __version__,
            "checks": {key: value for key, value in checks.items() if not key.endswith("_error")},
        }

    @app.post("/api/sheets/read")
    async def read_sheets(request: Request):
        audit = SyncAuditLogger()
        try:
            store, tabs = request.app.state.store_factory()
            snapshot = await ReadService(store, tabs, audit).read_snapshot()
        except ConfigurationError as e:
            audit.log_configuration_error(str(e))
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
        except StorageError as e:
            return _error(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                f"Failed to read from sheet. Details: {e}",
            )
        except Exception as e:
            audit.log_error(type(e).__name__, str(e))
            logger.exception("read_unexpected_error")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Internal server error: {e}")
        return snapshot.to_response()

    @app.post("/api/sheets/write")
    async def write_sheets(request: Request):
        audit = SyncAuditLogger()
        now = utc_now_iso()

        try:
            body = await _read_json(request)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            details = [{"collection": None, "index": None, "field": "<body>", "message": str(e)}]
            audit.log_payload_rejected(details)
            return _error(status.HTTP_400_BAD_REQUEST, "Request body is not valid JSON.", details=details)

        try:
            payload = validate_write_payload(body, now)
        except PayloadValidationError as e:
            audit.log_payload_rejected(e.details)
            return _error(status.HTTP_400_BAD_REQUEST, str(e), details=e.details)

        try:
            store, tabs = request.app.state.store_factory()
            service = WriteService(
                store,
                tabs,
                audit,
                refuse_on_parse_errors=get_settings().sync.refuse_write_on_parse_errors,
            )
            outcome = await service.write(payload, now)
        except ConfigurationError as e:
            audit.log_configuration_error(str(e))
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(e))
        except StorageError as e:
            return _error(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                f"Failed to write to sheet. Details: {e}",
            )
        except Exception as e:
            audit.log_error(type(e).__name__, str(e))
            logger.exception("write_unexpected_error")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, f"Internal server error: {e}")

        if outcome.has_conflicts:
            return _error(
                status.HTTP_409_CONFLICT,
                CONFLICT_MESSAGE,
                conflicts=outcome.conflicts_body(),
            )
        return {"message": WRITE_OK_MESSAGE}

    return app
