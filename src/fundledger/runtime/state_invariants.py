# src/fundledger/runtime/state_invariants.py
from __future__ import annotations

"""State invariants / normalization helpers.

Ledger state is a nested JSON-like dict that is mutated deterministically by
the apply_* modules. This module is the single place that:

  - validates the state is dict-like
  - ensures the core top-level containers exist (so domain modules can rely on them)
  - audits bookkeeping consistency (check_ledger_invariants)
  - audits that custody holds what the ledger owes (check_custody_coverage)

Campaign ids are stored as decimal string keys so the state survives a JSON
round trip unchanged.
"""

from collections.abc import MutableMapping
from typing import Any, Callable, Dict, List

Json = Dict[str, Any]

_DICT_ROOTS = ("accounts", "params", "campaigns", "donations", "backers", "refund_stats", "fee_pools")
_INT_ROOTS = ("campaign_seq", "fee_pool", "fees_accrued_total", "fees_withdrawn_total")


def ensure_state(st: Any) -> Json:
    """Ensure `st` is a dict and contains core keys.

    Returns the (possibly mutated) dict.

    Raises:
        TypeError: if st (or one of its core containers) has the wrong type
    """
    if not isinstance(st, MutableMapping):
        raise TypeError(f"state must be MutableMapping, got {type(st)}")

    for key in _DICT_ROOTS:
        v = st.get(key)
        if v is None:
            st[key] = {}
        elif not isinstance(v, dict):
            # Fail closed: do not attempt to coerce arbitrary types.
            raise TypeError(f"state[{key!r}] must be dict, got {type(v)}")

    for key in _INT_ROOTS:
        v = st.get(key)
        if v is None:
            st[key] = 0
        elif isinstance(v, bool) or not isinstance(v, int):
            raise TypeError(f"state[{key!r}] must be int, got {type(v)}")

    return st  # type: ignore[return-value]


def _dict(v: Any) -> Json:
    return v if isinstance(v, dict) else {}


def escrowed_amount(recs: Any) -> int:
    """Value custody holds for a campaign's live donations.

    Registered deposits are counted in raised but never reached custody.
    """
    total = 0
    for rec in _dict(recs).values():
        if isinstance(rec, dict) and not bool(rec.get("refunded", False)):
            total += max(0, int(rec.get("amount", 0)) - int(rec.get("registered", 0)))
    return total


def custody_requirements(st: Json) -> Dict[str, int]:
    """Per-token amount the custody account must hold.

    Escrow of every unclaimed campaign in its bound token, plus the fee pool
    of each token.
    """
    need: Dict[str, int] = {}
    donations = _dict(st.get("donations"))
    for cid, c in _dict(st.get("campaigns")).items():
        if not isinstance(c, dict) or bool(c.get("claimed")):
            continue
        esc = escrowed_amount(donations.get(cid))
        if esc > 0:
            token = str(c.get("token") or "")
            need[token] = need.get(token, 0) + esc
    for token, amount in _dict(st.get("fee_pools")).items():
        if int(amount) > 0:
            need[str(token)] = need.get(str(token), 0) + int(amount)
    return need


def check_custody_coverage(st: Json, balance_of: Callable[[str, str], int]) -> List[str]:
    """Compare custody balances (via the token service's balance_of) with what is owed."""
    custody = str(_dict(st.get("params")).get("custody_account") or "")
    out: List[str] = []
    for token, need in sorted(custody_requirements(st).items()):
        if not token:
            out.append(f"escrow of {need} held for campaigns with no bound token")
            continue
        have = int(balance_of(token, custody))
        if have < need:
            out.append(f"custody holds {have} {token}, ledger owes {need}")
    return out


def check_ledger_invariants(st: Json) -> List[str]:
    """Return a list of human-readable violations (empty when consistent)."""
    out: List[str] = []
    campaigns = st.get("campaigns") if isinstance(st.get("campaigns"), dict) else {}
    donations = st.get("donations") if isinstance(st.get("donations"), dict) else {}
    backers = st.get("backers") if isinstance(st.get("backers"), dict) else {}
    refund_stats = st.get("refund_stats") if isinstance(st.get("refund_stats"), dict) else {}

    seq = int(st.get("campaign_seq") or 0)
    if seq != len(campaigns):
        out.append(f"campaign_seq {seq} != campaign count {len(campaigns)}")
    for i in range(1, seq + 1):
        if str(i) not in campaigns:
            out.append(f"campaign {i} missing below campaign_seq {seq}")

    for cid, c in campaigns.items():
        if not isinstance(c, dict):
            out.append(f"campaign {cid} is not an object")
            continue

        recs = donations.get(cid) if isinstance(donations.get(cid), dict) else {}
        for donor, d in recs.items():
            reg = int(d.get("registered", 0))
            if reg < 0 or reg > int(d.get("amount", 0)):
                out.append(f"campaign {cid}: donor {donor} registered {reg} outside 0..amount")
        live = sum(int(d.get("amount", 0)) for d in recs.values() if not d.get("refunded"))
        refunded = [d for d in recs.values() if d.get("refunded")]

        raised = int(c.get("raised", 0))
        goal = int(c.get("goal", 0))
        if raised != live:
            out.append(f"campaign {cid}: raised {raised} != live donations {live}")
        if raised < 0:
            out.append(f"campaign {cid}: negative raised {raised}")
        if goal <= 0:
            out.append(f"campaign {cid}: non-positive goal {goal}")
        if int(c.get("deadline", 0)) < int(c.get("created_at", 0)):
            out.append(f"campaign {cid}: deadline before created_at")
        if bool(c.get("claimed")) and refunded:
            out.append(f"campaign {cid}: claimed campaign has refunded donations")

        b = int(backers.get(cid, 0))
        if b != len(recs):
            out.append(f"campaign {cid}: backers {b} != donation records {len(recs)}")

        rs = refund_stats.get(cid) if isinstance(refund_stats.get(cid), dict) else {}
        total_refunded = sum(int(d.get("amount", 0)) - int(d.get("registered", 0)) for d in refunded)
        if int(rs.get("total_refunded", 0)) != total_refunded:
            out.append(
                f"campaign {cid}: refund_stats.total_refunded {rs.get('total_refunded', 0)} != {total_refunded}"
            )
        if int(rs.get("refund_count", 0)) != len(refunded):
            out.append(f"campaign {cid}: refund_stats.refund_count {rs.get('refund_count', 0)} != {len(refunded)}")

    for cid in donations:
        if cid not in campaigns:
            out.append(f"donations recorded for unknown campaign {cid}")

    pool = int(st.get("fee_pool") or 0)
    accrued = int(st.get("fees_accrued_total") or 0)
    withdrawn = int(st.get("fees_withdrawn_total") or 0)
    if pool < 0:
        out.append(f"negative fee_pool {pool}")
    if accrued != pool + withdrawn:
        out.append(f"fees_accrued_total {accrued} != fee_pool {pool} + fees_withdrawn_total {withdrawn}")

    pools = _dict(st.get("fee_pools"))
    if any(int(v) < 0 for v in pools.values()):
        out.append("negative per-token fee pool")
    if sum(int(v) for v in pools.values()) != pool:
        out.append(f"fee_pools sum {sum(int(v) for v in pools.values())} != fee_pool {pool}")

    return out


__all__ = [
    "ensure_state",
    "check_ledger_invariants",
    "check_custody_coverage",
    "custody_requirements",
    "escrowed_amount",
]
