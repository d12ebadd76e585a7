# src/fundledger/runtime/queries.py
from __future__ import annotations

"""Read-only views over ledger state.

Nothing here mutates state or raises for unknown ids: lookups return None or
an empty default, counts return zero, predicates return False.
"""

from typing import Any, Dict, List, Optional

from fundledger.runtime.apply.fees import calculate_fee

Json = Dict[str, Any]

STATUS_FUNDING = "funding"
STATUS_GOAL_MET = "goal_met"
STATUS_EXPIRED_UNFUNDED = "expired_unfunded"
STATUS_CLAIMED = "claimed"
CAMPAIGN_STATUSES = (STATUS_FUNDING, STATUS_GOAL_MET, STATUS_EXPIRED_UNFUNDED, STATUS_CLAIMED)

MAX_LIST_LIMIT = 100


def _key(campaign_id: Any) -> str:
    if isinstance(campaign_id, bool):
        return ""
    try:
        i = int(campaign_id)
    except (TypeError, ValueError):
        return ""
    return str(i) if i > 0 else ""


def _root(state: Json, name: str) -> Json:
    v = state.get(name)
    return v if isinstance(v, dict) else {}


def _campaign(state: Json, campaign_id: Any) -> Optional[Json]:
    k = _key(campaign_id)
    if not k:
        return None
    c = _root(state, "campaigns").get(k)
    return c if isinstance(c, dict) else None


def get_campaign(state: Json, campaign_id: Any) -> Optional[Json]:
    c = _campaign(state, campaign_id)
    if c is None:
        return None
    out = dict(c)
    out["campaign_id"] = int(_key(campaign_id))
    return out


def get_donation(state: Json, campaign_id: Any, donor: str) -> Json:
    recs = _root(state, "donations").get(_key(campaign_id))
    rec = recs.get(str(donor)) if isinstance(recs, dict) else None
    if not isinstance(rec, dict):
        return {"amount": 0, "refunded": False}
    return {"amount": int(rec.get("amount", 0)), "refunded": bool(rec.get("refunded", False))}


def get_backer_count(state: Json, campaign_id: Any) -> int:
    return int(_root(state, "backers").get(_key(campaign_id), 0) or 0)


def get_refund_stats(state: Json, campaign_id: Any) -> Json:
    rs = _root(state, "refund_stats").get(_key(campaign_id))
    if not isinstance(rs, dict):
        return {"total_refunded": 0, "refund_count": 0}
    return {"total_refunded": int(rs.get("total_refunded", 0)), "refund_count": int(rs.get("refund_count", 0))}


def get_campaign_count(state: Json) -> int:
    return int(state.get("campaign_seq") or 0)


def get_total_fees(state: Json) -> int:
    """Currently withdrawable fee pool."""
    return int(state.get("fee_pool") or 0)


def get_fee_pools(state: Json) -> Dict[str, int]:
    """Withdrawable fees per token; the values sum to get_total_fees."""
    return {str(k): int(v) for k, v in sorted(_root(state, "fee_pools").items()) if int(v) > 0}


def fee_rate_bps(state: Json) -> int:
    return int(_root(state, "params").get("fee_rate_bps", 0) or 0)


def calculate_fee_at_rate(state: Json, amount: int) -> int:
    return calculate_fee(int(amount), fee_rate_bps(state))


def is_goal_met(state: Json, campaign_id: Any) -> bool:
    c = _campaign(state, campaign_id)
    if c is None:
        return False
    return int(c.get("raised", 0)) >= int(c.get("goal", 0))


def is_expired(state: Json, campaign_id: Any, height: int) -> bool:
    c = _campaign(state, campaign_id)
    if c is None:
        return False
    return int(height) > int(c.get("deadline", 0))


def can_claim(state: Json, campaign_id: Any) -> bool:
    """Goal met and not yet claimed. Ownership is not part of this predicate."""
    c = _campaign(state, campaign_id)
    if c is None:
        return False
    return is_goal_met(state, campaign_id) and not bool(c.get("claimed", False))


def can_refund(state: Json, campaign_id: Any, caller: str, height: int) -> bool:
    if _campaign(state, campaign_id) is None:
        return False
    if not is_expired(state, campaign_id, height) or is_goal_met(state, campaign_id):
        return False
    return not get_donation(state, campaign_id, caller)["refunded"]


def campaign_status(state: Json, campaign_id: Any, height: int) -> Optional[Json]:
    c = _campaign(state, campaign_id)
    if c is None:
        return None

    if bool(c.get("claimed", False)):
        status = STATUS_CLAIMED
    elif is_goal_met(state, campaign_id):
        status = STATUS_GOAL_MET
    elif is_expired(state, campaign_id, height):
        status = STATUS_EXPIRED_UNFUNDED
    else:
        status = STATUS_FUNDING

    goal = int(c.get("goal", 0))
    raised = int(c.get("raised", 0))
    return {
        "campaign_id": int(_key(campaign_id)),
        "status": status,
        "height": int(height),
        "blocks_left": max(0, int(c.get("deadline", 0)) - int(height)),
        "progress_bps": (raised * 10_000) // goal if goal > 0 else 0,
    }


def list_campaigns(
    state: Json,
    height: int,
    *,
    start_id: int = 1,
    limit: int = 20,
    owner: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Json]:
    """Campaigns in ascending id order starting at start_id, optionally filtered.

    The scan stops after `limit` matches.
    """
    limit = max(1, min(int(limit), MAX_LIST_LIMIT))
    start = max(1, int(start_id))
    out: List[Json] = []
    for i in range(start, get_campaign_count(state) + 1):
        c = get_campaign(state, i)
        if c is None:
            continue
        if owner is not None and str(c.get("owner") or "") != owner:
            continue
        st = campaign_status(state, i, height) or {}
        if status is not None and st.get("status") != status:
            continue
        c["backers"] = get_backer_count(state, i)
        c["status"] = st.get("status")
        c["blocks_left"] = st.get("blocks_left")
        out.append(c)
        if len(out) >= limit:
            break
    return out


def campaign_stats(state: Json) -> Json:
    campaigns = _root(state, "campaigns")
    total_raised = 0
    total_backers = 0
    funded = 0
    claimed = 0
    for k, c in campaigns.items():
        if not isinstance(c, dict):
            continue
        raised = int(c.get("raised", 0))
        total_raised += raised
        total_backers += get_backer_count(state, k)
        if raised >= int(c.get("goal", 0)):
            funded += 1
        if bool(c.get("claimed", False)):
            claimed += 1
    return {
        "total_campaigns": get_campaign_count(state),
        "total_raised": total_raised,
        "total_backers": total_backers,
        "funded_campaigns": funded,
        "claimed_campaigns": claimed,
        "fee_pool": get_total_fees(state),
        "fees_accrued_total": int(state.get("fees_accrued_total") or 0),
        "fees_withdrawn_total": int(state.get("fees_withdrawn_total") or 0),
    }
