from __future__ import annotations

import hashlib
import json
from typing import Any, Dict

from fundledger.runtime.tx_admission_types import TxEnvelope

Json = Dict[str, Any]

TX_ID_DOMAIN = "fundledger/tx-id/v1"


def compute_tx_id(*, chain_id: str, tx_type: str, signer: str, nonce: int, payload: Json) -> str:
    """Hex sha256 identifying a tx on one chain.

    The signature is not part of the preimage, so re-encoding a signature
    never yields a new id. The chain id is, so a replay on another
    deployment does.
    """
    preimage = {
        "domain": TX_ID_DOMAIN,
        "chain_id": str(chain_id),
        "tx_type": str(tx_type).strip().upper(),
        "signer": str(signer),
        "nonce": int(nonce),
        "payload": payload if isinstance(payload, dict) else {},
    }
    blob = json.dumps(preimage, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def compute_tx_id_from_envelope(chain_id: str, env: TxEnvelope) -> str:
    return compute_tx_id(chain_id=chain_id, tx_type=env.tx_type, signer=env.signer, nonce=env.nonce, payload=env.payload)
