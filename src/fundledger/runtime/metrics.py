from __future__ import annotations

import os
import threading
import time
from typing import Dict, List

# Process-local counters and gauges for the ledger node. Values are ints:
# token amounts are integral and so are tx counts.

_lock = threading.Lock()
_counters: Dict[str, int] = {}
_gauges: Dict[str, int] = {}
_started_ms = int(time.time() * 1000)

_HELP: Dict[str, str] = {
    "tx_applied_total": "Txs applied successfully.",
    "tx_apply_rejected_total": "Txs admitted but rejected by the ledger (nonce consumed).",
    "tx_admission_rejected_total": "Txs refused at admission.",
    "tx_transfers_reversed_total": "Settled token transfers reversed after a failed ledger commit.",
    "campaign_count": "Campaigns created so far.",
    "fee_pool": "Platform fees held in custody and not yet withdrawn.",
    "ledger_height": "Current block height of the ledger clock.",
}


def metrics_enabled() -> bool:
    return (os.environ.get("FUNDLEDGER_METRICS_ENABLED") or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def inc_counter(name: str, value: int = 1) -> None:
    if not name:
        return
    with _lock:
        _counters[name] = _counters.get(name, 0) + int(value)


def set_gauge(name: str, value: int) -> None:
    if not name:
        return
    with _lock:
        _gauges[name] = int(value)


def snapshot() -> dict:
    now = int(time.time() * 1000)
    with _lock:
        return {
            "ts_ms": now,
            "uptime_ms": now - _started_ms,
            "counters": dict(_counters),
            "gauges": dict(_gauges),
        }


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()


def _series(lines: List[str], full: str, kind: str, help_text: str, value: int) -> None:
    if help_text:
        lines.append(f"# HELP {full} {help_text}")
    lines.append(f"# TYPE {full} {kind}")
    lines.append(f"{full} {value}")


def format_prometheus(prefix: str = "fundledger_") -> str:
    """Render the current snapshot in the Prometheus text format."""
    snap = snapshot()
    lines: List[str] = []
    _series(lines, f"{prefix}uptime_ms", "gauge", "Milliseconds since process start.", snap["uptime_ms"])
    for name, value in sorted(snap["counters"].items()):
        _series(lines, f"{prefix}{name}", "counter", _HELP.get(name, ""), value)
    for name, value in sorted(snap["gauges"].items()):
        _series(lines, f"{prefix}{name}", "gauge", _HELP.get(name, ""), value)
    return "\n".join(lines) + "\n"
