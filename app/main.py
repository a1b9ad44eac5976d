"""
ASGI entry point for Expense Sync

Run locally with:

    uvicorn app.main:app --reload

Set SYNC_STORAGE_BACKEND=memory to develop without a spreadsheet.
"""

from expense_sync.api import create_app
from expense_sync.audit import configure_logging
from expense_sync.config import get_settings


configure_logging(get_settings().sync.log_level)

app = create_app()
