from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from ipmap.core.dependencies import get_snapshot_cache, get_sync_controller
from ipmap.core.rate_limit import POLICY_API, get_rate_limiters, rate_limited
from ipmap.schemas.operations import StatusResponse, TriggerResponse
from ipmap.services.snapshot_cache import TieredCacheStore
from ipmap.services.sync_controller import SyncController

router = APIRouter(tags=["Operations"])


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.post(
    "/sync",
    response_model=TriggerResponse,
    dependencies=[Depends(rate_limited(POLICY_API))],
)
async def trigger_sync(
    controller: SyncController = Depends(get_sync_controller),
) -> TriggerResponse:
    """Run a sync now.

    Returns immediately with success when another sync is already running.
    A failed upstream fetch is still a successful trigger: the previous
    snapshot keeps serving and the reason is reported in the message.
    """
    result = await controller.trigger()
    return TriggerResponse(success=result.success, message=result.message, timestamp=_now_iso())


@router.get(
    "/status",
    response_model=StatusResponse,
    dependencies=[Depends(rate_limited(POLICY_API))],
)
def get_status(
    cache: TieredCacheStore = Depends(get_snapshot_cache),
    controller: SyncController = Depends(get_sync_controller),
) -> StatusResponse:
    """Diagnostic view of the cache, the synchronizer and the rate limiters."""
    return StatusResponse(
        cache=cache.info().as_dict(),
        sync=controller.status().as_dict(),
        rate_limits={name: limiter.stats() for name, limiter in get_rate_limiters().items()},
        timestamp=_now_iso(),
    )
