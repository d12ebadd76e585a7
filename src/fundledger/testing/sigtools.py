from __future__ import annotations

import hashlib
from functools import lru_cache
from typing import Any, Dict

from fundledger.crypto.sig import pubkey_from_privkey, sign_tx_envelope_dict

Json = Dict[str, Any]

# Test keys only: the seed is a public function of the label.
_SEED_PREFIX = "fundledger-test-ed25519:"


def seed_hex_for(label: str) -> str:
    return hashlib.sha256((_SEED_PREFIX + (label or "")).encode("utf-8")).hexdigest()


@lru_cache(maxsize=None)
def account_for(label: str) -> str:
    """Ledger account (pubkey hex) of the labelled test key."""
    return pubkey_from_privkey(seed_hex_for(label))


def sign_tx_dict(tx: Json, *, label: str, chain_id: str) -> Json:
    """Sign ``tx`` as the labelled test account, overwriting its signer."""
    if not isinstance(tx, dict):
        raise TypeError("tx must be a dict")
    return sign_tx_envelope_dict(tx=dict(tx, signer=account_for(label)), privkey=seed_hex_for(label), chain_id=chain_id)
