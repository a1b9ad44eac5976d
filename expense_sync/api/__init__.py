"""HTTP API package."""

from expense_sync.api.routes import (
    CORS_HEADERS,
    StoreFactory,
    create_app,
    default_store_factory,
    google_store_factory,
)

__all__ = [
    "CORS_HEADERS",
    "StoreFactory",
    "create_app",
    "default_store_factory",
    "google_store_factory",
]
