from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

Json = Dict[str, Any]


@dataclass(slots=True)
class ApiError(Exception):
    """An HTTP-facing failure rendered as ``{"ok": false, "error": {...}}``."""

    status_code: int
    code: str
    message: str
    details: Json = field(default_factory=dict)

    @classmethod
    def bad_request(cls, code: str, message: str, details: Optional[Json] = None) -> "ApiError":
        return cls(400, code, message, dict(details or {}))

    @classmethod
    def not_found(cls, code: str, message: str, details: Optional[Json] = None) -> "ApiError":
        return cls(404, code, message, dict(details or {}))

    @classmethod
    def conflict(cls, code: str, message: str, details: Optional[Json] = None) -> "ApiError":
        return cls(409, code, message, dict(details or {}))

    @classmethod
    def internal(cls, code: str, message: str, details: Optional[Json] = None) -> "ApiError":
        return cls(500, code, message, dict(details or {}))

    @classmethod
    def from_rejected_receipt(cls, receipt: Json) -> "ApiError":
        """Map a failed executor receipt onto an HTTP error.

        Admission rejects are the caller's fault (400). Ledger rejects mean
        the tx was well formed but conflicts with current state (409); the
        numeric ledger code and the persisted tx id travel in the details.
        """
        err = receipt.get("error") if isinstance(receipt.get("error"), dict) else {}
        code = str(err.get("code") or "rejected")
        reason = str(err.get("reason") or "tx rejected")
        if receipt.get("stage") == "admission":
            return cls.bad_request(code, reason, err.get("details"))
        return cls.conflict(
            code,
            reason,
            {
                "tx_id": receipt.get("tx_id"),
                "numeric": err.get("numeric"),
                "reason": err.get("reason"),
                "details": err.get("details") or {},
            },
        )

    def to_json(self) -> Json:
        return {"ok": False, "error": {"code": self.code, "message": self.message, "details": self.details}}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_json())
