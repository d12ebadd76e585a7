from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class ApplyError(Exception):
    """Canonical error type for domain apply and dispatch failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


# Wire contract: numeric codes are stable across releases.
ERROR_CODES: Dict[str, int] = {
    "NotOwner": 100,
    "CampaignNotFound": 101,
    "AlreadyClaimed": 102,
    "GoalNotMet": 103,
    "CampaignExpired": 104,
    "InvalidMetadataRef": 105,
    "InvalidAmount": 106,
    "Unauthorized": 107,
    "TransferFailed": 108,
    "AlreadyRefunded": 109,
    "RefundNotAvailable": 110,
    "TokenMismatch": 111,
}


@dataclass
class LedgerError(ApplyError):
    """Campaign ledger rejection carrying one of ERROR_CODES."""

    @property
    def numeric(self) -> int:
        return int(ERROR_CODES.get(self.code, 0))

    def to_json(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "numeric": self.numeric,
            "reason": self.reason,
            "details": self.details if self.details is not None else {},
        }


def error_numeric(code: str) -> int:
    return int(ERROR_CODES.get(str(code), 0))


__all__ = ["ApplyError", "LedgerError", "ERROR_CODES", "error_numeric"]
