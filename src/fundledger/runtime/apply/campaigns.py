# src/fundledger/runtime/apply/campaigns.py
from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from fundledger.runtime.apply.fees import calculate_fee
from fundledger.runtime.apply_context import ApplyContext
from fundledger.runtime.errors import ApplyError, LedgerError
from fundledger.runtime.state_invariants import escrowed_amount
from fundledger.runtime.token_transfer import TransferError
from fundledger.runtime.tx_admission_types import TxEnvelope
from fundledger.util.ipfs_cid import validate_metadata_ref

Json = Dict[str, Any]

DEFAULT_METADATA_REF_MAX_LEN = 64


def _as_str(v: Any) -> str:
    return str(v).strip() if isinstance(v, (str, int, float)) else ""


def _as_dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def _as_amount(v: Any) -> int:
    """Strict integer read for amounts. Anything that is not a plain int maps to -1."""
    if isinstance(v, bool) or not isinstance(v, int):
        return -1
    return int(v)


def _ensure_campaign_roots(state: Json) -> Tuple[Json, Json, Json, Json]:
    roots = []
    for key in ("campaigns", "donations", "backers", "refund_stats"):
        r = state.get(key)
        if not isinstance(r, dict):
            r = {}
            state[key] = r
        roots.append(r)
    return roots[0], roots[1], roots[2], roots[3]


def _params(state: Json) -> Json:
    return _as_dict(state.get("params"))


def _campaign_key(payload: Json) -> str:
    cid = payload.get("campaign_id")
    if isinstance(cid, bool) or not isinstance(cid, int) or cid <= 0:
        return ""
    return str(cid)


def _require_campaign(state: Json, payload: Json) -> Tuple[str, Json]:
    campaigns, _, _, _ = _ensure_campaign_roots(state)
    key = _campaign_key(payload)
    c = campaigns.get(key) if key else None
    if not isinstance(c, dict):
        raise LedgerError("CampaignNotFound", "campaign_not_found", {"campaign_id": payload.get("campaign_id")})
    return key, c


def _require_owner(c: Json, env: TxEnvelope, key: str) -> None:
    if _as_str(env.signer) != str(c.get("owner") or ""):
        raise LedgerError("NotOwner", "caller_not_owner", {"campaign_id": int(key), "caller": env.signer})


def _require_token(payload: Json, env: TxEnvelope) -> str:
    token = _as_str(payload.get("token"))
    if not token:
        raise ApplyError("invalid_payload", "missing_token", {"tx_type": env.tx_type})
    return token


def _require_campaign_token(c: Json, key: str, token: str) -> None:
    bound = _as_str(c.get("token"))
    if bound and token != bound:
        raise LedgerError(
            "TokenMismatch",
            "token_mismatch",
            {"campaign_id": int(key), "token": token, "campaign_token": bound},
        )


def _add_fee(state: Json, token: str, fee: int) -> None:
    pools = state.get("fee_pools")
    if not isinstance(pools, dict):
        pools = {}
        state["fee_pools"] = pools
    pools[token] = int(pools.get(token, 0)) + fee
    state["fee_pool"] = int(state.get("fee_pool") or 0) + fee
    state["fees_accrued_total"] = int(state.get("fees_accrued_total") or 0) + fee


def _check_metadata_ref(state: Json, ref: Any) -> str:
    params = _params(state)
    max_len = int(params.get("metadata_ref_max_len") or DEFAULT_METADATA_REF_MAX_LEN)
    v = validate_metadata_ref(ref, max_len=max_len, strict_cid=bool(params.get("strict_metadata_cid", False)))
    if not v.ok:
        raise LedgerError("InvalidMetadataRef", v.reason, {"max_len": max_len})
    return v.cid


def _transfer(ctx: ApplyContext, *, token: str, amount: int, sender: str, recipient: str) -> None:
    try:
        ctx.transfer(token=token, amount=amount, sender=sender, recipient=recipient)
    except TransferError as e:
        details: Json = {"token": token, "amount": amount, "sender": sender, "recipient": recipient}
        details.update(e.details or {})
        raise LedgerError("TransferFailed", e.reason, details) from e


def _apply_campaign_create(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    payload = _as_dict(env.payload)
    goal = _as_amount(payload.get("goal"))
    duration = _as_amount(payload.get("duration"))
    if goal <= 0:
        raise LedgerError("InvalidAmount", "goal_must_be_positive", {"goal": payload.get("goal")})
    if duration <= 0:
        raise LedgerError("InvalidAmount", "duration_must_be_positive", {"duration": payload.get("duration")})

    ref = _check_metadata_ref(state, payload.get("metadata_ref"))
    token = _as_str(payload.get("token")) or None

    campaigns, _, backers, _ = _ensure_campaign_roots(state)
    cid = int(state.get("campaign_seq") or 0) + 1
    key = str(cid)
    if key in campaigns:
        # Sequence and table disagree; refuse rather than overwrite.
        raise ApplyError("state_corrupt", "campaign_id_reused", {"campaign_id": cid})

    h = int(ctx.height)
    campaigns[key] = {
        "owner": _as_str(env.signer),
        "metadata_ref": ref,
        "goal": goal,
        "raised": 0,
        "deadline": h + duration,
        "claimed": False,
        "created_at": h,
        "refund_enabled": True,
        "token": token,
    }
    backers[key] = 0
    state["campaign_seq"] = cid

    return {
        "applied": "CAMPAIGN_CREATE",
        "campaign_id": cid,
        "events": [
            {
                "event": "campaign-created",
                "campaign_id": cid,
                "owner": _as_str(env.signer),
                "goal": goal,
                "deadline": h + duration,
            }
        ],
    }


def _apply_campaign_donate(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    payload = _as_dict(env.payload)
    key, c = _require_campaign(state, payload)

    if int(ctx.height) > int(c.get("deadline", 0)):
        raise LedgerError(
            "CampaignExpired",
            "campaign_expired",
            {"campaign_id": int(key), "deadline": int(c.get("deadline", 0)), "height": int(ctx.height)},
        )

    amount = _as_amount(payload.get("amount"))
    if amount <= 0:
        raise LedgerError("InvalidAmount", "amount_must_be_positive", {"amount": payload.get("amount")})

    token = _require_token(payload, env)
    _require_campaign_token(c, key, token)
    donor = _as_str(env.signer)

    _transfer(ctx, token=token, amount=amount, sender=donor, recipient=ctx.custody_account)
    c["token"] = token

    _, donations, backers, _ = _ensure_campaign_roots(state)
    recs = donations.get(key)
    if not isinstance(recs, dict):
        recs = {}
        donations[key] = recs

    rec = recs.get(donor)
    if not isinstance(rec, dict):
        recs[donor] = {"amount": amount, "refunded": False}
        backers[key] = int(backers.get(key, 0)) + 1
    else:
        rec["amount"] = int(rec.get("amount", 0)) + amount

    c["raised"] = int(c.get("raised", 0)) + amount

    return {
        "applied": "CAMPAIGN_DONATE",
        "campaign_id": int(key),
        "ok": True,
        "events": [
            {
                "event": "donation-received",
                "campaign_id": int(key),
                "donor": donor,
                "amount": amount,
                "new_total": int(c["raised"]),
            }
        ],
    }


def _apply_campaign_claim(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    payload = _as_dict(env.payload)
    key, c = _require_campaign(state, payload)
    _require_owner(c, env, key)

    raised = int(c.get("raised", 0))
    goal = int(c.get("goal", 0))
    if raised < goal:
        raise LedgerError("GoalNotMet", "goal_not_met", {"campaign_id": int(key), "raised": raised, "goal": goal})
    if bool(c.get("claimed", False)):
        raise LedgerError("AlreadyClaimed", "already_claimed", {"campaign_id": int(key)})

    token = _require_token(payload, env)
    _require_campaign_token(c, key, token)

    # Registered deposits were paid out by the bridge, not held in custody.
    _, donations, _, _ = _ensure_campaign_roots(state)
    escrowed = escrowed_amount(donations.get(key))
    rate = int(_params(state).get("fee_rate_bps", 0))
    fee = calculate_fee(escrowed, rate)
    payout = escrowed - fee

    # The fee never leaves custody; it is earmarked in fee_pools[token].
    if payout > 0:
        _transfer(ctx, token=token, amount=payout, sender=ctx.custody_account, recipient=_as_str(env.signer))

    c["claimed"] = True
    if fee > 0:
        _add_fee(state, token, fee)

    return {
        "applied": "CAMPAIGN_CLAIM",
        "campaign_id": int(key),
        "payout": payout,
        "fee": fee,
        "events": [
            {
                "event": "funds-claimed",
                "campaign_id": int(key),
                "owner": _as_str(env.signer),
                "payout": payout,
                "fee": fee,
            }
        ],
    }


def _apply_campaign_refund(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    payload = _as_dict(env.payload)
    key, c = _require_campaign(state, payload)

    expired = int(ctx.height) > int(c.get("deadline", 0))
    raised = int(c.get("raised", 0))
    goal = int(c.get("goal", 0))
    if not (expired and raised < goal):
        raise LedgerError(
            "RefundNotAvailable",
            "refund_not_available",
            {"campaign_id": int(key), "expired": expired, "raised": raised, "goal": goal},
        )

    donor = _as_str(env.signer)
    _, donations, _, refund_stats = _ensure_campaign_roots(state)
    rec = _as_dict(_as_dict(donations.get(key)).get(donor))
    if bool(rec.get("refunded", False)):
        raise LedgerError("AlreadyRefunded", "already_refunded", {"campaign_id": int(key), "donor": donor})

    amount = int(rec.get("amount", 0)) if rec else 0
    paid = amount - int(rec.get("registered", 0)) if rec else 0
    if amount <= 0 or paid <= 0:
        raise LedgerError("InvalidAmount", "nothing_to_refund", {"campaign_id": int(key), "donor": donor})

    token = _require_token(payload, env)
    _require_campaign_token(c, key, token)
    _transfer(ctx, token=token, amount=paid, sender=ctx.custody_account, recipient=donor)

    rec["refunded"] = True
    c["raised"] = raised - amount

    rs = refund_stats.get(key)
    if not isinstance(rs, dict):
        rs = {"total_refunded": 0, "refund_count": 0}
        refund_stats[key] = rs
    rs["total_refunded"] = int(rs.get("total_refunded", 0)) + paid
    rs["refund_count"] = int(rs.get("refund_count", 0)) + 1

    return {
        "applied": "CAMPAIGN_REFUND",
        "campaign_id": int(key),
        "refunded": paid,
        "events": [
            {
                "event": "refund-issued",
                "campaign_id": int(key),
                "donor": donor,
                "amount": paid,
                "new_total": int(c["raised"]),
            }
        ],
    }


def _apply_campaign_metadata_update(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    payload = _as_dict(env.payload)
    key, c = _require_campaign(state, payload)
    _require_owner(c, env, key)

    ref = _check_metadata_ref(state, payload.get("metadata_ref"))
    c["metadata_ref"] = ref

    return {
        "applied": "CAMPAIGN_METADATA_UPDATE",
        "campaign_id": int(key),
        "ok": True,
        "events": [{"event": "metadata-updated", "campaign_id": int(key), "metadata_ref": ref}],
    }


def _apply_campaign_deposit_register(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Json:
    """Owner-attested credit of a deposit that arrived through a bridge.

    No value moves: the funds never reached custody, so the record only
    counts toward raised and backers. The registered share of a donation is
    excluded from claim payouts and from refunds.
    """
    payload = _as_dict(env.payload)
    key, c = _require_campaign(state, payload)
    _require_owner(c, env, key)

    amount = _as_amount(payload.get("amount"))
    if amount <= 0:
        raise LedgerError("InvalidAmount", "amount_must_be_positive", {"amount": payload.get("amount")})

    if int(ctx.height) > int(c.get("deadline", 0)):
        raise LedgerError(
            "CampaignExpired",
            "campaign_expired",
            {"campaign_id": int(key), "deadline": int(c.get("deadline", 0)), "height": int(ctx.height)},
        )

    donor = _as_str(payload.get("donor"))
    if not donor:
        raise ApplyError("invalid_payload", "missing_donor", {"tx_type": env.tx_type})

    _, donations, backers, _ = _ensure_campaign_roots(state)
    recs = donations.get(key)
    if not isinstance(recs, dict):
        recs = {}
        donations[key] = recs

    rec = recs.get(donor)
    if not isinstance(rec, dict):
        recs[donor] = {"amount": amount, "refunded": False, "registered": amount}
        backers[key] = int(backers.get(key, 0)) + 1
    else:
        rec["amount"] = int(rec.get("amount", 0)) + amount
        rec["registered"] = int(rec.get("registered", 0)) + amount

    c["raised"] = int(c.get("raised", 0)) + amount

    return {
        "applied": "CAMPAIGN_DEPOSIT_REGISTER",
        "campaign_id": int(key),
        "ok": True,
        "events": [
            {
                "event": "deposit-registered",
                "campaign_id": int(key),
                "donor": donor,
                "amount": amount,
                "new_total": int(c["raised"]),
            }
        ],
    }


CAMPAIGN_TX_TYPES = {
    "CAMPAIGN_CREATE",
    "CAMPAIGN_DONATE",
    "CAMPAIGN_CLAIM",
    "CAMPAIGN_REFUND",
    "CAMPAIGN_METADATA_UPDATE",
    "CAMPAIGN_DEPOSIT_REGISTER",
}


def apply_campaigns(state: Json, env: TxEnvelope, ctx: ApplyContext) -> Optional[Json]:
    t = _as_str(env.tx_type).upper()
    if t not in CAMPAIGN_TX_TYPES:
        return None

    if t == "CAMPAIGN_CREATE":
        return _apply_campaign_create(state, env, ctx)
    if t == "CAMPAIGN_DONATE":
        return _apply_campaign_donate(state, env, ctx)
    if t == "CAMPAIGN_CLAIM":
        return _apply_campaign_claim(state, env, ctx)
    if t == "CAMPAIGN_REFUND":
        return _apply_campaign_refund(state, env, ctx)
    if t == "CAMPAIGN_METADATA_UPDATE":
        return _apply_campaign_metadata_update(state, env, ctx)
    if t == "CAMPAIGN_DEPOSIT_REGISTER":
        return _apply_campaign_deposit_register(state, env, ctx)

    return None


__all__ = ["CAMPAIGN_TX_TYPES", "apply_campaigns"]
