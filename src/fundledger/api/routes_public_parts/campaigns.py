from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Request

from fundledger.api.errors import ApiError
from fundledger.api.routes_public_parts.common import (
    _campaign_id_param,
    _executor,
    _int_param,
    _require_campaign,
)
from fundledger.runtime.queries import CAMPAIGN_STATUSES, MAX_LIST_LIMIT

router = APIRouter()

Json = Dict[str, Any]


@router.get("/campaigns")
def campaigns_list(
    request: Request,
    start_id: Optional[str] = None,
    limit: Optional[str] = None,
    owner: Optional[str] = None,
    status: Optional[str] = None,
) -> Json:
    """Page through campaigns in id order.

    Query params:
      start_id (default 1), limit (default 20, max 100),
      owner (exact match), status (funding|goal_met|expired_unfunded|claimed)
    """
    ex = _executor(request)
    s = _int_param(start_id, 1)
    n = max(1, min(_int_param(limit, 20), MAX_LIST_LIMIT))
    st = (status or "").strip().lower() or None
    if st is not None and st not in CAMPAIGN_STATUSES:
        raise ApiError.bad_request("bad_status", "unknown status filter", {"status": status, "allowed": list(CAMPAIGN_STATUSES)})

    items = ex.list_campaigns(start_id=s, limit=n, owner=(owner or None), status=st)
    next_start = int(items[-1]["campaign_id"]) + 1 if len(items) == n else None
    return {"ok": True, "count": len(items), "items": items, "next_start_id": next_start}


# Declared before /campaigns/{campaign_id} so "stats" is not parsed as an id.
@router.get("/campaigns/stats")
def campaigns_stats(request: Request) -> Json:
    return {"ok": True, "stats": _executor(request).campaign_stats()}


@router.get("/campaigns/{campaign_id}")
def campaign_get(request: Request, campaign_id: str) -> Json:
    cid = _campaign_id_param(campaign_id)
    return {"ok": True, "campaign": _require_campaign(request, cid)}


@router.get("/campaigns/{campaign_id}/status")
def campaign_status(request: Request, campaign_id: str) -> Json:
    cid = _campaign_id_param(campaign_id)
    s = _executor(request).campaign_status(cid)
    if s is None:
        raise ApiError.not_found("CampaignNotFound", "campaign not found", {"campaign_id": cid})
    return {"ok": True, **s}


@router.get("/campaigns/{campaign_id}/donations/{donor}")
def campaign_donation(request: Request, campaign_id: str, donor: str) -> Json:
    """Unknown campaign or donor reads as the zero record."""
    cid = _campaign_id_param(campaign_id)
    d = _executor(request).get_donation(cid, donor)
    return {"ok": True, "campaign_id": cid, "donor": donor, "donation": d}


@router.get("/campaigns/{campaign_id}/backers")
def campaign_backers(request: Request, campaign_id: str) -> Json:
    cid = _campaign_id_param(campaign_id)
    return {"ok": True, "campaign_id": cid, "backers": _executor(request).get_backer_count(cid)}


@router.get("/campaigns/{campaign_id}/refund-stats")
def campaign_refund_stats(request: Request, campaign_id: str) -> Json:
    cid = _campaign_id_param(campaign_id)
    return {"ok": True, "campaign_id": cid, "refund_stats": _executor(request).get_refund_stats(cid)}


@router.get("/campaigns/{campaign_id}/events")
def campaign_events(request: Request, campaign_id: str, limit: Optional[str] = None) -> Json:
    cid = _campaign_id_param(campaign_id)
    _require_campaign(request, cid)
    n = max(1, min(_int_param(limit, 500), 500))
    items = _executor(request).list_campaign_events(cid, limit=n)
    return {"ok": True, "campaign_id": cid, "count": len(items), "items": items}


@router.get("/campaigns/{campaign_id}/can-claim")
def campaign_can_claim(request: Request, campaign_id: str) -> Json:
    cid = _campaign_id_param(campaign_id)
    return {"ok": True, "campaign_id": cid, "can_claim": bool(_executor(request).can_claim(cid))}


@router.get("/campaigns/{campaign_id}/can-refund/{donor}")
def campaign_can_refund(request: Request, campaign_id: str, donor: str) -> Json:
    cid = _campaign_id_param(campaign_id)
    return {"ok": True, "campaign_id": cid, "donor": donor, "can_refund": bool(_executor(request).can_refund(cid, donor))}
