# src/acctstore/api/app.py
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI

from acctstore.api.errors import storage_error_handler
from acctstore.api.request_log import RequestLogMiddleware
from acctstore.api.routes_accounts import router as accounts_router
from acctstore.config import StoreConfig, load_store_config
from acctstore.errors import StorageError


def create_app(config: Optional[StoreConfig] = None) -> FastAPI:
    """Create the read-only accounts API.

    config defaults to load_store_config() (file + ACCTSTORE_* env).
    """
    cfg = config or load_store_config()

    # Disable docs in production.
    if cfg.mode == "prod":
        app = FastAPI(title="acctstore", docs_url=None, redoc_url=None, openapi_url=None)
    else:
        app = FastAPI(title="acctstore")

    app.state.cfg = cfg

    app.add_middleware(RequestLogMiddleware)
    app.add_exception_handler(StorageError, storage_error_handler)

    app.include_router(accounts_router, prefix="/v1", tags=["accounts"])
    return app
