from __future__ import annotations

from typing import Any, Dict

from fastapi import Request

from fundledger.api.errors import ApiError

Json = Dict[str, Any]


def _executor(request: Request):
    ex = getattr(request.app.state, "executor", None)
    if ex is None:
        raise ApiError.internal("not_ready", "ledger executor is not running", {})
    return ex


def _int_param(v: Any, default: int) -> int:
    # Lenient: a blank or garbled query value falls back to the default.
    s = str(v).strip() if v is not None else ""
    if s.lstrip("-").isdigit():
        return int(s)
    return int(default)


def _campaign_not_found(campaign_id: Any) -> ApiError:
    return ApiError.not_found("CampaignNotFound", "campaign not found", {"campaign_id": campaign_id})


def _campaign_id_param(raw: Any) -> int:
    """Campaign ids are assigned from 1; any other path value names no campaign."""
    s = str(raw).strip()
    if not s.isdigit() or int(s) < 1:
        raise _campaign_not_found(s)
    return int(s)


def _require_campaign(request: Request, campaign_id: int) -> Json:
    c = _executor(request).get_campaign(campaign_id)
    if c is None:
        raise _campaign_not_found(campaign_id)
    return c
