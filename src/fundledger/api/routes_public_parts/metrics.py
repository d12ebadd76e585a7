from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse

from fundledger.runtime.metrics import format_prometheus, metrics_enabled, set_gauge

router = APIRouter()

PROMETHEUS_CONTENT_TYPE = "text/plain; version=0.0.4"


@router.get("/metrics")
def metrics(request: Request) -> PlainTextResponse:
    # Opt-in via FUNDLEDGER_METRICS_ENABLED; hidden otherwise.
    if not metrics_enabled():
        return PlainTextResponse("not_found\n", status_code=404)
    ex = getattr(request.app.state, "executor", None)
    if ex is not None:
        set_gauge("ledger_height", int(ex.height()))
    return PlainTextResponse(format_prometheus(), media_type=PROMETHEUS_CONTENT_TYPE)
