"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any ``ipmap`` import so the global
settings never start the synchronizer or write a cache file into the repo.
"""

import asyncio
import os
import tempfile

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("SYNC_ENABLED", "false")
os.environ.setdefault("CACHE_DIR", tempfile.mkdtemp(prefix="ipmap-test-cache-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

from typing import Any

import pytest

from ipmap.core.errors import UpstreamFetchError
from ipmap.core.rate_limit import reset_rate_limiters
from ipmap.models.snapshot import VersionedSnapshot


class FakeClock:
    """Deterministic clock used to test expiration logic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


class FakeUpstreamClient:
    """Stands in for AWSIPRangesClient; returns a queued document or raises."""

    def __init__(self, document: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.document = document
        self.error = error
        self.calls = 0

    async def fetch(self) -> dict[str, Any]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.document


class BlockingUpstreamClient(FakeUpstreamClient):
    """Upstream whose fetch parks until the test releases it."""

    def __init__(self, document: dict[str, Any]) -> None:
        super().__init__(document)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch(self) -> dict[str, Any]:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.document


def make_document(sync_token: str = "1700000000", create_date: str = "2024-01-01-00-00-00") -> dict[str, Any]:
    return {
        "syncToken": sync_token,
        "createDate": create_date,
        "prefixes": [
            {
                "ip_prefix": "3.5.140.0/22",
                "region": "ap-northeast-2",
                "service": "AMAZON",
                "network_border_group": "ap-northeast-2",
            },
            {
                "ip_prefix": "13.34.37.64/27",
                "region": "ap-southeast-4",
                "service": "EC2",
                "network_border_group": "ap-southeast-4",
            },
            {
                "ip_prefix": "52.95.110.0/24",
                "region": "us-east-1",
                "service": "S3",
                "network_border_group": "us-east-1",
            },
        ],
        "ipv6_prefixes": [
            {
                "ipv6_prefix": "2600:1f14:fff:f800::/56",
                "region": "us-west-2",
                "service": "ROUTE53_HEALTHCHECKS",
                "network_border_group": "us-west-2",
            },
            {
                "ipv6_prefix": "2a05:d07a:a000::/40",
                "region": "eu-south-1",
                "service": "S3",
                "network_border_group": "eu-south-1",
            },
        ],
    }


def make_snapshot(sync_token: str = "1700000000", *, captured_at: float = 1_000.0, **kwargs: Any) -> VersionedSnapshot:
    return VersionedSnapshot.capture(make_document(sync_token, **kwargs), now=captured_at)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def document() -> dict[str, Any]:
    return make_document()


@pytest.fixture
def upstream_failure() -> UpstreamFetchError:
    return UpstreamFetchError(code="upstream_timeout", message="Upstream did not answer within 30.0s")


@pytest.fixture(autouse=True)
def _fresh_rate_limiters():
    """Rate limit counters are process-wide; isolate them per test."""
    reset_rate_limiters()
    yield
    reset_rate_limiters()
