from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Request

from fundledger.api.errors import ApiError
from fundledger.api.routes_public_parts.common import _executor

router = APIRouter()

Json = Dict[str, Any]


@router.post("/tx/submit")
async def tx_submit(request: Request) -> Json:
    """Submit a signed tx envelope.

    Admission rejects come back as 400 and leave no trace. Ledger rejects
    (NotOwner, GoalNotMet, ...) come back as 409; the failed receipt is
    persisted and the signer's nonce is consumed.

    Returns the receipt on success:
      { ok, tx_id, height, tx_type, signer, campaign_id, code, result, events }
    """
    ex = _executor(request)

    try:
        body = await request.json()
    except Exception:
        raise ApiError.bad_request("bad_shape", "Body must be JSON", {})
    if not isinstance(body, dict):
        raise ApiError.bad_request("bad_shape", "Body must be a tx envelope object", {})

    receipt = ex.submit_tx(body)
    if not isinstance(receipt, dict):
        raise ApiError.internal("submit_failed", "executor returned no receipt", {})

    if receipt.get("ok"):
        return receipt
    raise ApiError.from_rejected_receipt(receipt)


@router.get("/tx/{tx_id}")
def tx_receipt(request: Request, tx_id: str) -> Json:
    r = _executor(request).get_receipt(str(tx_id or "").strip())
    if r is None:
        raise ApiError.not_found("tx_not_found", "no receipt for tx_id", {"tx_id": tx_id})
    return {"ok": True, "receipt": r}


@router.get("/accounts/{signer}/nonce")
def account_nonce(request: Request, signer: str) -> Json:
    ex = _executor(request)
    nxt = int(ex.next_nonce(signer))
    return {"ok": True, "signer": signer, "nonce": nxt - 1, "next_nonce": nxt}
