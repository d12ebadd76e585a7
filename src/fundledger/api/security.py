from __future__ import annotations

import os
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from fundledger.api.errors import ApiError

DEFAULT_MAX_REQUEST_BYTES = 64 * 1024

# Paths that never carry a body worth bounding.
_UNBOUNDED_PREFIXES: Tuple[str, ...] = ("/docs", "/redoc", "/openapi.json", "/v1/health", "/v1/metrics")
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def _flag(name: str) -> bool:
    return (os.environ.get(name) or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def max_request_bytes_from_env() -> int:
    raw = (os.environ.get("FUNDLEDGER_MAX_REQUEST_BYTES") or "").strip()
    if not raw:
        return DEFAULT_MAX_REQUEST_BYTES
    try:
        n = int(raw)
    except ValueError:
        return DEFAULT_MAX_REQUEST_BYTES
    return n if n > 0 else DEFAULT_MAX_REQUEST_BYTES


def _reject(limit: int, seen: int) -> JSONResponse:
    err = ApiError(413, "tx_too_large", "Request body too large", {"max_bytes": limit, "bytes": seen})
    return JSONResponse(status_code=err.status_code, content=err.to_json())


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Bounds request bodies before they reach tx admission.

    The declared Content-Length is checked first. Bodies of POST/PUT/PATCH
    requests are then read and measured, which also catches chunked uploads
    that declare no length.

    FUNDLEDGER_MAX_REQUEST_BYTES sets the bound (default 64 KiB);
    FUNDLEDGER_SIZE_LIMIT_DISABLE=1 turns the middleware into a pass-through.
    """

    def __init__(self, app, *, max_bytes: Optional[int] = None) -> None:
        super().__init__(app)
        self.disabled = _flag("FUNDLEDGER_SIZE_LIMIT_DISABLE")
        self.max_bytes = int(max_bytes) if max_bytes is not None else max_request_bytes_from_env()

    def _bounded(self, request: Request) -> bool:
        if self.disabled:
            return False
        path = request.url.path or ""
        return not any(path.startswith(p) for p in _UNBOUNDED_PREFIXES)

    async def dispatch(self, request: Request, call_next):
        if not self._bounded(request):
            return await call_next(request)

        declared = request.headers.get("content-length")
        if declared and declared.strip().isdigit() and int(declared) > self.max_bytes:
            return _reject(self.max_bytes, int(declared))

        if (request.method or "").upper() in _BODY_METHODS:
            body = await request.body()
            if len(body) > self.max_bytes:
                return _reject(self.max_bytes, len(body))

        return await call_next(request)
