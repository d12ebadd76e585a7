from __future__ import annotations

import base64
import binascii
import json
import re
from typing import Any, Dict, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat

Json = Dict[str, Any]

# Ledger accounts are raw Ed25519 public keys in lowercase hex; the signer of
# a tx is its own verification key.
_ACCOUNT_RE = re.compile(r"^[0-9a-f]{64}$")

SIG_DOMAIN = "fundledger/tx-sig/v1"


def is_pubkey_hex(s: str) -> bool:
    return bool(_ACCOUNT_RE.match(str(s or "").strip()))


def _key_bytes(s: str) -> bytes:
    """Decode hex, falling back to base64 or base64url."""
    s = (s or "").strip()
    if not s:
        raise ValueError("empty key material")
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    try:
        return base64.urlsafe_b64decode(s.replace("+", "-").replace("/", "_") + "=" * (-len(s) % 4))
    except (binascii.Error, ValueError) as e:
        raise ValueError("key material is neither hex nor base64") from e


def _raw_public(key: Ed25519PublicKey) -> bytes:
    return key.public_bytes(Encoding.Raw, PublicFormat.Raw)


def canonical_tx_message(*, chain_id: str, tx_type: str, signer: str, nonce: int, payload: Json) -> bytes:
    """The exact bytes an envelope signature covers.

    Binding the chain id means a tx signed for one deployment never verifies
    on another.
    """
    body = {
        "domain": SIG_DOMAIN,
        "chain_id": str(chain_id),
        "tx_type": str(tx_type).strip().upper(),
        "signer": str(signer),
        "nonce": int(nonce),
        "payload": payload if isinstance(payload, dict) else {},
    }
    return json.dumps(body, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _load_private(privkey: str) -> Ed25519PrivateKey:
    raw = _key_bytes(privkey)
    # Accept the 64-byte seed||pubkey form some tools export.
    if len(raw) == 64:
        raw = raw[:32]
    if len(raw) != 32:
        raise ValueError("ed25519 private key must be a 32-byte seed")
    return Ed25519PrivateKey.from_private_bytes(raw)


def generate_ed25519_keypair() -> Tuple[str, str]:
    """New random account: ``(pubkey_hex, seed_hex)``."""
    sk = Ed25519PrivateKey.generate()
    seed = sk.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    return _raw_public(sk.public_key()).hex(), seed.hex()


def pubkey_from_privkey(privkey: str) -> str:
    return _raw_public(_load_private(privkey).public_key()).hex()


def sign_ed25519(*, message: bytes, privkey: str, encoding: str = "hex") -> str:
    sig = _load_private(privkey).sign(message)
    if encoding == "hex":
        return sig.hex()
    if encoding in ("b64", "base64"):
        return base64.b64encode(sig).decode("ascii")
    raise ValueError(f"unsupported signature encoding: {encoding}")


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        Ed25519PublicKey.from_public_bytes(_key_bytes(pubkey)).verify(_key_bytes(sig), message)
    except (InvalidSignature, ValueError):
        return False
    return True


def sign_tx_envelope_dict(*, tx: Json, privkey: str, chain_id: str, encoding: str = "hex") -> Json:
    """Return a signed copy of ``tx``.

    A blank ``signer`` is filled in with the account of ``privkey``; the
    nonce and payload are normalized to the form that gets signed.
    """
    signer = str(tx.get("signer") or "").strip() or pubkey_from_privkey(privkey)
    payload = tx.get("payload") if isinstance(tx.get("payload"), dict) else {}
    out = dict(tx, signer=signer, nonce=int(tx.get("nonce") or 0), payload=payload)
    out["tx_type"] = str(tx.get("tx_type") or "")
    msg = canonical_tx_message(
        chain_id=chain_id, tx_type=out["tx_type"], signer=signer, nonce=out["nonce"], payload=payload
    )
    out["sig"] = sign_ed25519(message=msg, privkey=privkey, encoding=encoding)
    return out


def verify_tx_envelope_sig(*, chain_id: str, tx_type: str, signer: str, nonce: int, payload: Json, sig: str) -> bool:
    if not is_pubkey_hex(signer) or not str(sig or "").strip():
        return False
    msg = canonical_tx_message(chain_id=chain_id, tx_type=tx_type, signer=signer, nonce=nonce, payload=payload)
    return verify_ed25519_signature(message=msg, sig=sig, pubkey=signer)
