# src/fundledger/runtime/domain_dispatch.py

from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from fundledger.runtime.apply.campaigns import CAMPAIGN_TX_TYPES, apply_campaigns
from fundledger.runtime.apply.fees import FEES_TX_TYPES, apply_fees
from fundledger.runtime.apply_context import ApplyContext
from fundledger.runtime.errors import ApplyError
from fundledger.runtime.state_invariants import ensure_state
from fundledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]
ApplyFn = Callable[[Json, TxEnvelope, ApplyContext], Optional[Json]]

SUPPORTED_TX_TYPES = frozenset(CAMPAIGN_TX_TYPES | FEES_TX_TYPES)


def _tx_type(env: TxEnvelope) -> str:
    return str(env.tx_type or "").strip().upper()


_APPLIERS: tuple[ApplyFn, ...] = (
    apply_campaigns,
    apply_fees,
)


def apply_tx(state: Json, env: Any, ctx: ApplyContext) -> Json:
    """Dispatch a TxEnvelope to the first domain applier that claims it.

    Mutates `state` in place. Callers that need fail-atomic behaviour go
    through domain_apply.apply_tx_atomic.
    """

    ensure_state(state)

    # Tests and some tools pass raw dict envelopes. Normalize to TxEnvelope so
    # domain appliers can rely on attribute access.
    env_norm = TxEnvelope.from_json(env)

    t = _tx_type(env_norm)
    if not t:
        raise ApplyError("invalid_tx", "missing_tx_type", {"tx_type": t})
    if not str(env_norm.signer or "").strip():
        raise ApplyError("invalid_tx", "missing_signer", {"tx_type": t})

    for fn in _APPLIERS:
        try:
            out = fn(state, env_norm, ctx)
        except ApplyError:
            raise
        except Exception as e:
            raise ApplyError(
                "domain_error",
                type(e).__name__,
                {"tx_type": t, "domain": fn.__name__, "error": str(e)},
            ) from e

        if out is not None:
            return out

    raise ApplyError("tx_unimplemented", "tx_type_not_implemented", {"tx_type": t})


__all__ = ["SUPPORTED_TX_TYPES", "apply_tx"]
