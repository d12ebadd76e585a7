# src/fundledger/runtime/domain_apply.py
# ---------------------------------------------------------------------------
# Public, stable import path for applying tx envelopes.
# ---------------------------------------------------------------------------

from __future__ import annotations

import copy
from typing import Any, Dict

from fundledger.runtime.apply_context import ApplyContext
from fundledger.runtime.domain_dispatch import apply_tx
from fundledger.runtime.errors import ApplyError
from fundledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]


def _consume_nonce(state: Json, env: TxEnvelope) -> None:
    """Record env.nonce as the signer's last used nonce.

    Only touches state["accounts"][signer]; never any ledger record.
    """
    signer = str(env.signer or "").strip()
    if not signer:
        return

    accounts = state.get("accounts")
    if not isinstance(accounts, dict):
        accounts = {}
        state["accounts"] = accounts

    acct = accounts.get(signer)
    if not isinstance(acct, dict):
        acct = {}
        accounts[signer] = acct

    acct["nonce"] = max(int(acct.get("nonce", 0)), int(env.nonce))


def apply_tx_atomic(
    state: Json,
    env: Any,
    ctx: ApplyContext,
    *,
    consume_nonce: bool = True,
) -> Json:
    """Apply a tx with fail-atomic semantics.

    On success:
      - state is updated as if apply_tx() ran directly, plus the nonce bump.

    On ApplyError:
      - no ledger record changes; the nonce is still consumed when
        consume_nonce is set, so the same signed envelope cannot be replayed
        later once conditions change.

    Appliers only stage transfers on ctx (checked against the token service,
    nothing moved yet). On ApplyError the staged list is dropped; on success
    the caller settles ctx.staged together with the ledger commit.
    """

    env_norm = TxEnvelope.from_json(env)

    # Apply on a deep copy to guarantee atomicity.
    snapshot = copy.deepcopy(state)

    staged_before = len(ctx.staged)
    try:
        meta = apply_tx(snapshot, env_norm, ctx)
    except ApplyError:
        del ctx.staged[staged_before:]
        if consume_nonce:
            _consume_nonce(state, env_norm)
        raise

    if consume_nonce:
        _consume_nonce(snapshot, env_norm)

    # Commit by replacing contents in-place so callers holding references
    # to `state` see the updated view.
    state.clear()
    state.update(snapshot)
    return meta


__all__ = ["ApplyError", "apply_tx", "apply_tx_atomic", "Json"]
