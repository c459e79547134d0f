"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness checks
that the configured record store is reachable.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.itemsync.config import get_settings

router = APIRouter(prefix="/api/v1", tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Basic liveness check, reporting the active reconciliation policy."""
    settings = get_settings()
    resolver = getattr(request.app.state, "upsert_resolver", None)
    policy_version = resolver.policy.version if resolver is not None else settings.RECONCILIATION_POLICY_VERSION
    return {
        "status": "ok",
        "environment": settings.ENVIRONMENT.value,
        "policy_version": policy_version,
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: verifies the record store responds.

    Returns 200 when it does, 503 otherwise.
    """
    checks: dict = {"store": "ok"}
    store = getattr(request.app.state, "store", None)
    if store is None:
        checks["store"] = "not_initialized"
    else:
        try:
            if not await store.health_check():
                checks["store"] = "error"
        except Exception as e:
            checks["store"] = "error"
            checks["store_error"] = str(e)

    healthy = checks["store"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )
