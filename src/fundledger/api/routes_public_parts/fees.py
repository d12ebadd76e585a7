from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from fundledger.api.errors import ApiError
from fundledger.api.routes_public_parts.common import _executor

router = APIRouter()

Json = Dict[str, Any]


@router.get("/fees")
def fees(request: Request) -> Json:
    ex = _executor(request)
    stats = ex.campaign_stats()
    return {
        "ok": True,
        "fee_rate_bps": int(ex.fee_rate_bps()),
        "fee_pool": int(ex.get_total_fees()),
        "fee_pools": ex.get_fee_pools(),
        "fees_accrued_total": int(stats.get("fees_accrued_total", 0)),
        "fees_withdrawn_total": int(stats.get("fees_withdrawn_total", 0)),
    }


@router.get("/fees/calculate")
def fees_calculate(request: Request, amount: Optional[str] = None) -> Json:
    try:
        a = int(str(amount).strip())
    except Exception:
        raise ApiError.bad_request("bad_amount", "amount must be an integer", {"amount": amount})
    if a < 0:
        raise ApiError.bad_request("bad_amount", "amount must be >= 0", {"amount": a})

    ex = _executor(request)
    fee = int(ex.calculate_fee(a))
    return {"ok": True, "amount": a, "fee_rate_bps": int(ex.fee_rate_bps()), "fee": fee, "payout": a - fee}
