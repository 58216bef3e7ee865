"""Tests for the application lifespan (background jobs start and stop)."""

import asyncio

import pytest
from fastapi import FastAPI

from conftest import BlockingUpstreamClient, make_document
from ipmap.adapters.storage.file_store import FileSnapshotStore
from ipmap.core import app_factory
from ipmap.services.snapshot_cache import TieredCacheStore
from ipmap.services.sync_controller import OneShotOnInvoke, SyncController, SyncState


def _pending(name: str) -> list[asyncio.Task]:
    return [task for task in asyncio.all_tasks() if task.get_name() == name and not task.done()]


@pytest.mark.asyncio
async def test_shutdown_cancels_one_shot_sync(tmp_path, monkeypatch):
    client = BlockingUpstreamClient(make_document("v1"))
    cache = TieredCacheStore(FileSnapshotStore(tmp_path / "aws-ip-ranges.json"))
    controller = SyncController(cache, client, strategy=OneShotOnInvoke())

    monkeypatch.setattr(app_factory.settings.sync, "enabled", True)
    monkeypatch.setattr(app_factory, "get_sync_controller", lambda: controller)

    async with app_factory.lifespan(FastAPI()):
        await asyncio.wait_for(client.started.wait(), timeout=1)
        assert controller.status().scheduled is True
        assert len(_pending("ip-ranges-sync-once")) == 1

    assert _pending("ip-ranges-sync-once") == []
    assert _pending("rate-limit-sweep") == []
    assert controller.status().scheduled is False
    assert controller.state is SyncState.IDLE
    assert cache.get() is None


@pytest.mark.asyncio
async def test_sync_disabled_starts_nothing(monkeypatch):
    def fail():
        raise AssertionError("controller must not be built when sync is disabled")

    monkeypatch.setattr(app_factory.settings.sync, "enabled", False)
    monkeypatch.setattr(app_factory, "get_sync_controller", fail)

    async with app_factory.lifespan(FastAPI()):
        assert _pending("ip-ranges-sync-once") == []
        assert _pending("ip-ranges-sync") == []
