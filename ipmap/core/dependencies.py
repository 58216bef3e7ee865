"""Process-wide service instances exposed as FastAPI dependencies.

Instances are built lazily on first access and live until the process exits.
Sync endpoints run in the threadpool, so construction is serialized by a lock.
"""

from __future__ import annotations

import threading

from ipmap.adapters.storage.file_store import FileSnapshotStore
from ipmap.adapters.upstream.aws_ip_ranges import AWSIPRangesClient
from ipmap.core.config import settings
from ipmap.services.snapshot_cache import TieredCacheStore
from ipmap.services.sync_controller import SyncController, build_scheduling_strategy

_cache: TieredCacheStore | None = None
_controller: SyncController | None = None
# Re-entrant: the controller builds the cache while holding it.
_lock = threading.RLock()


def get_snapshot_cache() -> TieredCacheStore:
    global _cache

    if _cache is None:
        with _lock:
            if _cache is None:
                _cache = TieredCacheStore(
                    FileSnapshotStore(settings.cache.file_path),
                    max_age_seconds=settings.cache.max_age_seconds,
                )
    return _cache


def get_sync_controller() -> SyncController:
    global _controller

    if _controller is None:
        with _lock:
            if _controller is None:
                client = AWSIPRangesClient(
                    settings.sync.source_url,
                    timeout_seconds=settings.sync.timeout_seconds,
                    user_agent=settings.sync.user_agent,
                )
                _controller = SyncController(
                    get_snapshot_cache(),
                    client,
                    force_refresh_seconds=settings.sync.force_refresh_seconds,
                    interval_seconds=settings.sync.interval_seconds,
                    strategy=build_scheduling_strategy(settings.sync.mode),
                )
    return _controller
