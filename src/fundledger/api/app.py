from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from fundledger.api.errors import ApiError, api_error_handler
from fundledger.api.routes_public import public_router
from fundledger.api.security import RequestSizeLimitMiddleware
from fundledger.api.structured_logging import RequestLogMiddleware, configure_structured_logging
from fundledger.runtime.executor_boot import build_executor as _build_executor
from fundledger.runtime.ledger_logging import log_event

log = logging.getLogger("fundledger.api")


def build_executor():
    # Module-level hook so tests can swap the executor factory.
    return _build_executor()


def create_app(*, boot_runtime: bool = True) -> FastAPI:
    """Build the ledger HTTP app.

    With ``boot_runtime`` the ledger config is loaded and the executor (and
    its SQLite file) is opened right away; without it the app has no
    executor and every ledger route answers 500 ``not_ready``.

    There is no module-level app because opening the ledger needs config:
      uvicorn fundledger.api.app:create_app --factory
    """
    mode = (os.environ.get("FUNDLEDGER_MODE") or "prod").strip().lower()
    configure_structured_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ex = app.state.executor
        log_event(log, "api_started", mode=mode, executor_attached=ex is not None,
                  chain_id=getattr(ex, "chain_id", None))
        yield
        log_event(log, "api_stopped", mode=mode)

    docs = {} if mode != "prod" else {"docs_url": None, "redoc_url": None, "openapi_url": None}
    app = FastAPI(title="FundLedger API", version="0.1.0", lifespan=lifespan, **docs)
    app.state.executor = build_executor() if boot_runtime else None

    app.add_exception_handler(ApiError, api_error_handler)

    # Starlette runs the last-added middleware first: request logging wraps
    # the size limiter so 413s are logged too.
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RequestLogMiddleware)

    app.include_router(public_router)
    return app
