from __future__ import annotations

import os
import time
from typing import Any, Dict

from fastapi import APIRouter, Request

from fundledger.api.routes_public_parts.common import _executor

router = APIRouter()

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _env_str(name: str, default: str) -> str:
    v = str(os.environ.get(name, "") or "").strip()
    return v if v else str(default)


@router.get("/health")
def health(request: Request) -> Json:
    # health must never crash; best-effort only
    ex = getattr(request.app.state, "executor", None)
    height = None
    if ex is not None:
        try:
            height = int(ex.height())
        except Exception:
            height = None
    return {
        "ok": True,
        "service": "fundledger",
        "version": "v1",
        "ts_ms": _now_ms(),
        "chain_id": getattr(ex, "chain_id", None) or _env_str("FUNDLEDGER_CHAIN_ID", "") or None,
        "node_id": getattr(ex, "node_id", None) or _env_str("FUNDLEDGER_NODE_ID", "") or None,
        "executor_attached": ex is not None,
        "height": height,
    }


@router.get("/status")
def status(request: Request) -> Json:
    """Ledger status summary: height, counts and the invariant check."""
    ex = _executor(request)
    meta = ex.meta()
    return {
        "ok": bool(meta.ok),
        "chain_id": ex.chain_id,
        "node_id": ex.node_id,
        "mode": ex.cfg.mode,
        "height": int(meta.height),
        "campaign_count": int(meta.campaign_count),
        "receipts": int(meta.receipts),
        "fee_rate_bps": int(ex.fee_rate_bps()),
        "invariants_error": meta.error or None,
    }
