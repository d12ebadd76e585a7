# src/fundledger/runtime/apply/fees.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fundledger.runtime.apply_context import ApplyContext
from fundledger.runtime.errors import ApplyError, LedgerError
from fundledger.runtime.token_transfer import TransferError
from fundledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]

BPS_DENOMINATOR = 10_000


def calculate_fee(amount: int, fee_rate_bps: int) -> int:
    """floor(amount * fee_rate_bps / 10000). Pure; used by claim and the query surface."""
    a = int(amount)
    r = int(fee_rate_bps)
    if a < 0:
        raise ValueError("amount must be >= 0")
    if r < 0 or r > BPS_DENOMINATOR:
        raise ValueError("fee_rate_bps must be within 0..10000")
    return (a * r) // BPS_DENOMINATOR


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int, float)) else ""


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _apply_fees_withdraw(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    payload = _as_dict(env.payload)
    admin = _as_str(_as_dict(state.get("params")).get("admin"))
    signer = _as_str(env.signer)
    if not admin or signer != admin:
        raise LedgerError("Unauthorized", "admin_only", {"caller": signer})

    token = _as_str(payload.get("token"))
    if not token:
        raise ApplyError("invalid_payload", "missing_token", {"tx_type": env.tx_type})

    pools = state.get("fee_pools")
    if not isinstance(pools, dict):
        pools = {}
        state["fee_pools"] = pools
    pool = int(pools.get(token, 0))
    if pool <= 0:
        raise LedgerError("InvalidAmount", "fee_pool_empty", {"token": token, "fee_pool": pool})

    try:
        ctx.transfer(token=token, amount=pool, sender=ctx.custody_account, recipient=admin)
    except TransferError as e:
        details: Json = {"token": token, "amount": pool, "sender": ctx.custody_account, "recipient": admin}
        details.update(e.details or {})
        raise LedgerError("TransferFailed", e.reason, details) from e

    del pools[token]
    state["fee_pool"] = int(state.get("fee_pool") or 0) - pool
    state["fees_withdrawn_total"] = int(state.get("fees_withdrawn_total") or 0) + pool

    return {
        "applied": "FEES_WITHDRAW",
        "withdrawn": pool,
        "events": [{"event": "fees-withdrawn", "admin": admin, "token": token, "amount": pool}],
    }


FEES_TX_TYPES = {"FEES_WITHDRAW"}


def apply_fees(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in FEES_TX_TYPES:
        return None
    return _apply_fees_withdraw(state, env, ctx)


__all__ = ["BPS_DENOMINATOR", "FEES_TX_TYPES", "apply_fees", "calculate_fee"]
