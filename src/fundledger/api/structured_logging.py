from __future__ import annotations

import logging
import os
import time
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from fundledger.runtime.ledger_logging import log_event

_CONFIGURED_ATTR = "_fundledger_configured"
_LOGGED_HEADERS = ("user-agent", "content-type", "content-length", "x-forwarded-for")


def _env_on(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def configure_structured_logging(level_name: Optional[str] = None) -> None:
    """Route the root logger to stdout, one JSON document per line.

    The level comes from ``level_name`` or FUNDLEDGER_LOG_LEVEL (INFO when
    unset or unknown). Repeated calls only adjust the level.
    """
    name = (level_name or os.environ.get("FUNDLEDGER_LOG_LEVEL") or "INFO").strip().upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    if getattr(root, _CONFIGURED_ATTR, False):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.handlers = [handler]
    setattr(root, _CONFIGURED_ATTR, True)


class RequestLogMiddleware(BaseHTTPMiddleware):
    """One ``http_request`` event per request, tagged with a request id.

    FUNDLEDGER_LOG_REQUESTS=0 silences it. FUNDLEDGER_LOG_REQUEST_HEADERS=1
    adds a few client headers to each event.
    """

    def __init__(self, app) -> None:
        super().__init__(app)
        self.enabled = _env_on("FUNDLEDGER_LOG_REQUESTS", True)
        self.with_headers = _env_on("FUNDLEDGER_LOG_REQUEST_HEADERS", False)
        self.logger = logging.getLogger("fundledger.http")

    async def dispatch(self, request: Request, call_next):
        if not self.enabled:
            return await call_next(request)

        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
        request.state.request_id = request_id
        t0 = time.monotonic()
        fields = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path or "",
            "client": request.client.host if request.client else "",
        }
        if self.with_headers:
            fields["headers"] = {k: request.headers[k] for k in _LOGGED_HEADERS if k in request.headers}

        try:
            response = await call_next(request)
        except Exception as exc:
            log_event(self.logger, "http_request", status=500, error=str(exc),
                      duration_ms=int((time.monotonic() - t0) * 1000), **fields)
            raise

        response.headers.setdefault("x-request-id", request_id)
        log_event(self.logger, "http_request", status=response.status_code,
                  duration_ms=int((time.monotonic() - t0) * 1000), **fields)
        return response
