from __future__ import annotations

import json
import os
from typing import Any, Dict, Optional, Tuple

from fundledger.crypto.sig import verify_tx_envelope_sig
from fundledger.runtime.tx_admission_types import TxEnvelope, TxVerdict
from fundledger.runtime.tx_schema import known_tx_types, validate_payload

Json = Dict[str, Any]

_ENVELOPE_KEYS = {"tx_type", "signer", "nonce", "payload", "sig"}
_MAX_SIGNER_LEN = 128


def _env_int(name: str, default: int) -> int:
    v = os.getenv(name)
    if v is None:
        return int(default)
    try:
        return int(str(v).strip())
    except Exception:
        return int(default)


def _json_size_bytes(obj: Any) -> int:
    """Compute JSON byte size. If not serializable, return -1 (unknown)."""
    try:
        return len(json.dumps(obj, separators=(",", ":"), ensure_ascii=False, sort_keys=True).encode("utf-8"))
    except (TypeError, ValueError):
        return -1


def _validate_payload_limits(payload: Any) -> Optional[TxVerdict]:
    """Generic payload validation (shape + size caps)."""
    if payload is None:
        return TxVerdict.reject("invalid_payload", "payload_required", {"expected": "object"})
    if not isinstance(payload, dict):
        return TxVerdict.reject("invalid_payload", "payload_must_be_object", {"type": str(type(payload))})

    max_payload_bytes = _env_int("FUNDLEDGER_MAX_TX_PAYLOAD_BYTES", 8 * 1024)
    max_payload_keys = _env_int("FUNDLEDGER_MAX_TX_PAYLOAD_KEYS", 16)
    max_depth = _env_int("FUNDLEDGER_MAX_TX_NESTING", 4)

    if len(payload) > int(max_payload_keys):
        return TxVerdict.reject(
            "invalid_payload",
            "payload_too_many_keys",
            {"keys": len(payload), "max_keys": int(max_payload_keys)},
        )

    payload_bytes = _json_size_bytes(payload)
    if payload_bytes < 0:
        return TxVerdict.reject("invalid_payload", "payload_not_json", {})
    if payload_bytes > int(max_payload_bytes):
        return TxVerdict.reject(
            "tx_too_large",
            "payload_exceeds_size_limit",
            {"bytes": int(payload_bytes), "max_bytes": int(max_payload_bytes)},
        )

    def walk(v: Any, depth: int) -> Optional[Tuple[str, Dict[str, Any]]]:
        if depth > int(max_depth):
            return "payload_too_deep", {"max_depth": int(max_depth)}
        if isinstance(v, list):
            for it in v:
                err = walk(it, depth + 1)
                if err:
                    return err
        if isinstance(v, dict):
            for kk, vv in v.items():
                if not isinstance(kk, str):
                    return "invalid_key_type", {"key_type": str(type(kk))}
                err = walk(vv, depth + 1)
                if err:
                    return err
        return None

    err = walk(payload, 0)
    if err:
        reason, details = err
        return TxVerdict.reject("invalid_payload", reason, details)

    return None


def _account_nonce(state: Json, signer: str) -> int:
    accounts = state.get("accounts")
    if not isinstance(accounts, dict):
        return 0
    acct = accounts.get(signer)
    if not isinstance(acct, dict):
        return 0
    try:
        return int(acct.get("nonce", 0))
    except (TypeError, ValueError):
        return 0


def admit_tx(
    tx: Any,
    state: Json,
    *,
    chain_id: str,
    require_sig: bool = True,
    accepted_token: str = "",
) -> TxVerdict:
    """Decide whether an envelope may be applied. Never mutates state.

    Checks, in order: envelope shape, size, tx type, signer, nonce shape,
    payload limits + schema, accepted token, nonce sequence, signature.
    """
    if not isinstance(tx, dict):
        return TxVerdict.reject("bad_shape", "envelope_must_be_object", {"type": str(type(tx))})

    extra = sorted(k for k in tx.keys() if k not in _ENVELOPE_KEYS)
    if extra:
        return TxVerdict.reject("bad_shape", "unknown_envelope_keys", {"keys": [str(k) for k in extra]})

    max_tx_bytes = _env_int("FUNDLEDGER_MAX_TX_BYTES", 16 * 1024)
    size = _json_size_bytes(tx)
    if size < 0:
        return TxVerdict.reject("bad_shape", "envelope_not_json", {})
    if size > max_tx_bytes:
        return TxVerdict.reject("tx_too_large", "envelope_exceeds_size_limit", {"bytes": size, "max_bytes": max_tx_bytes})

    tx_type = tx.get("tx_type")
    if not isinstance(tx_type, str) or not tx_type.strip():
        return TxVerdict.reject("bad_shape", "missing_tx_type", {})
    t = tx_type.strip().upper()
    if t not in known_tx_types():
        return TxVerdict.reject("unknown_tx", "unknown_tx_type", {"tx_type": tx_type})

    signer = tx.get("signer")
    if not isinstance(signer, str) or not signer.strip() or signer != signer.strip():
        return TxVerdict.reject("bad_shape", "bad_signer", {})
    if len(signer) > _MAX_SIGNER_LEN:
        return TxVerdict.reject("bad_shape", "signer_too_long", {"max_len": _MAX_SIGNER_LEN})

    nonce = tx.get("nonce")
    if isinstance(nonce, bool) or not isinstance(nonce, int) or nonce <= 0:
        return TxVerdict.reject("bad_nonce", "nonce_must_be_positive_int", {"nonce": nonce})

    payload = tx.get("payload")
    lim = _validate_payload_limits(payload)
    if lim is not None:
        return lim

    ok, code, reason, details = validate_payload(tx_type=t, payload=payload)
    if not ok:
        return TxVerdict.reject("invalid_payload", reason, {"schema_code": code, **(details or {})})

    token = str(payload.get("token") or "")
    if accepted_token and "token" in payload and token != accepted_token:
        return TxVerdict.reject("invalid_payload", "token_not_accepted", {"token": token, "accepted": accepted_token})

    expected = _account_nonce(state, signer) + 1
    if nonce != expected:
        return TxVerdict.reject("bad_nonce", "unexpected_nonce", {"expected": expected, "got": nonce})

    sig = tx.get("sig")
    if sig is not None and not isinstance(sig, str):
        return TxVerdict.reject("bad_shape", "sig_must_be_string", {})
    sig_s = str(sig or "").strip()

    # Unsigned envelopes are a dev-only posture; a present signature is always checked.
    if require_sig or sig_s:
        env = TxEnvelope.from_json(tx)
        good = verify_tx_envelope_sig(
            chain_id=chain_id,
            tx_type=env.tx_type,
            signer=env.signer,
            nonce=env.nonce,
            payload=env.payload,
            sig=sig_s,
        )
        if not good:
            return TxVerdict.reject("bad_sig", "invalid_signature", {"signer": signer})

    return TxVerdict.admit()


__all__ = ["admit_tx", "TxEnvelope", "TxVerdict"]
