from __future__ import annotations

from fastapi import APIRouter

from fundledger.api.routes_public_parts.campaigns import router as campaigns_router
from fundledger.api.routes_public_parts.fees import router as fees_router
from fundledger.api.routes_public_parts.health import router as health_router
from fundledger.api.routes_public_parts.metrics import router as metrics_router
from fundledger.api.routes_public_parts.tx import router as tx_router

public_router = APIRouter()

# Versioned API surface
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(tx_router, prefix="/v1", tags=["tx"])
public_router.include_router(campaigns_router, prefix="/v1", tags=["campaigns"])
public_router.include_router(fees_router, prefix="/v1", tags=["fees"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])
