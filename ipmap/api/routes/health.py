from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ipmap.core.dependencies import get_snapshot_cache
from ipmap.services.snapshot_cache import TieredCacheStore

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> dict:
    """Liveness probe.

    Returns:
        dict: A dictionary with a single "status" key set to "ok".
    """

    return {"status": "ok"}


@router.get("/health/ready")
def readiness_check(cache: TieredCacheStore = Depends(get_snapshot_cache)) -> JSONResponse:
    """Readiness probe: 200 once a snapshot can be served, 503 before that."""

    snapshot, tier = cache.lookup()
    if snapshot is None:
        return JSONResponse(status_code=503, content={"status": "initializing"})
    return JSONResponse(
        status_code=200,
        content={"status": "ready", "tier": tier, "sync_token": snapshot.source_version_token},
    )
