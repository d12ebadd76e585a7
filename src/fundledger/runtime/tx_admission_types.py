from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

Json = Dict[str, Any]


@dataclass(frozen=True)
class TxReject:
    code: str
    reason: str
    details: Optional[Json] = None


@dataclass(frozen=True)
class TxVerdict:
    """Outcome of tx admission.

    Unpacks as ``(ok, reject)`` where ``reject`` is None for admitted txs.
    """

    ok: bool
    code: str = "ok"
    reason: str = "admitted"
    details: Json = field(default_factory=dict)

    def __iter__(self) -> Iterator[Any]:
        yield self.ok
        yield None if self.ok else TxReject(self.code, self.reason, self.details)

    @classmethod
    def admit(cls) -> "TxVerdict":
        return cls(True)

    @classmethod
    def reject(cls, code: str, reason: str, details: Optional[Json] = None) -> "TxVerdict":
        return cls(False, code, reason, dict(details or {}))

    def as_error(self) -> Json:
        return {"code": self.code, "reason": self.reason, "details": dict(self.details)}


@dataclass(frozen=True)
class TxEnvelope:
    """A signed ledger tx: who (signer), which (nonce), what (tx_type, payload)."""

    tx_type: str
    signer: str
    nonce: int
    payload: Json
    sig: str = ""

    @staticmethod
    def from_json(j: Any) -> "TxEnvelope":
        if isinstance(j, TxEnvelope):
            return j
        d = j if isinstance(j, dict) else dict(j)
        return TxEnvelope(
            tx_type=str(d.get("tx_type") or "").strip().upper(),
            signer=str(d.get("signer") or ""),
            nonce=int(d.get("nonce") or 0),
            payload=dict(d.get("payload") or {}),
            sig=str(d.get("sig") or ""),
        )

    def to_json(self) -> Json:
        return {"tx_type": self.tx_type, "signer": self.signer, "nonce": self.nonce, "payload": self.payload, "sig": self.sig}
