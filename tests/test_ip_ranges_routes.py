"""Tests for the IP ranges, operations and health endpoints.

Configuration:
- conftest.py sets APP_ENV=testing and SYNC_ENABLED=false before app imports
- The cache and the synchronizer are replaced through dependency_overrides,
  so no test touches the network or the shared cache directory

The default TestClient User-Agent ("testclient") with no Origin counts as a
first-party caller; tests that exercise the counters send a curl User-Agent.
"""

import time
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from conftest import FakeUpstreamClient, make_document
from ipmap.core.config import settings
from ipmap.core.dependencies import get_snapshot_cache, get_sync_controller
from ipmap.main import app
from ipmap.models.snapshot import VersionedSnapshot
from ipmap.services.snapshot_cache import TieredCacheStore
from ipmap.services.sync_controller import SyncController

EXTERNAL = {"User-Agent": "curl/8.4.0", "X-Forwarded-For": "198.51.100.7"}


@pytest.fixture
def cache() -> TieredCacheStore:
    return TieredCacheStore(None)


@pytest.fixture
def upstream() -> FakeUpstreamClient:
    return FakeUpstreamClient(make_document("v2", create_date="2024-03-03-03-03-03"))


@pytest.fixture
def controller(cache: TieredCacheStore, upstream: FakeUpstreamClient) -> SyncController:
    return SyncController(cache, upstream)


@pytest.fixture
def client(cache: TieredCacheStore, controller: SyncController) -> Iterator[TestClient]:
    app.dependency_overrides[get_snapshot_cache] = lambda: cache
    app.dependency_overrides[get_sync_controller] = lambda: controller
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def ready_cache(cache: TieredCacheStore) -> TieredCacheStore:
    cache.set(VersionedSnapshot.capture(make_document("v1"), now=time.time()))
    return cache


class TestNotReady:
    def test_raw_document_returns_503_with_retry_after(self, client: TestClient) -> None:
        resp = client.get("/v1/ip-ranges", headers=EXTERNAL)

        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == str(settings.app.not_ready_retry_after_seconds)
        assert "no-store" in resp.headers["Cache-Control"]
        assert resp.headers["X-RateLimit-Limit"] == "50"
        body = resp.json()
        assert body["error"]["code"] == "data_not_ready"
        assert body["error"]["details"]["retry_after"] == settings.app.not_ready_retry_after_seconds
        assert body["error"]["request_id"]

    @pytest.mark.parametrize("path", ["/v1/ip-ranges/search", "/v1/ip-ranges/export", "/v1/ip-ranges/metadata"])
    def test_derived_endpoints_return_503(self, client: TestClient, path: str) -> None:
        resp = client.get(path)

        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "30"

    def test_readiness_probe(self, client: TestClient) -> None:
        resp = client.get("/health/ready")

        assert resp.status_code == 503
        assert resp.json() == {"status": "initializing"}


@pytest.mark.usefixtures("ready_cache")
class TestRawDocument:
    def test_returns_document_unchanged(self, client: TestClient) -> None:
        resp = client.get("/v1/ip-ranges", headers=EXTERNAL)

        assert resp.status_code == 200
        assert resp.json() == make_document("v1")
        assert resp.headers["X-Sync-Token"] == "v1"
        assert resp.headers["X-Last-Updated"] == "2024-01-01-00-00-00"
        assert resp.headers["X-Cache-Status"] == "HIT"
        assert resp.headers["X-Cache-Tier"] == "memory"
        assert resp.headers["Cache-Control"].startswith("public")

    def test_counted_request_carries_rate_limit_headers(self, client: TestClient) -> None:
        first = client.get("/v1/ip-ranges", headers=EXTERNAL)
        second = client.get("/v1/ip-ranges", headers=EXTERNAL)

        assert first.headers["X-RateLimit-Limit"] == "50"
        assert first.headers["X-RateLimit-Remaining"] == "49"
        assert first.headers["X-RateLimit-Window"] == "3600"
        assert int(first.headers["X-RateLimit-Reset"]) > time.time()
        assert second.headers["X-RateLimit-Remaining"] == "48"
        assert "Retry-After" not in second.headers

    def test_first_party_request_is_not_counted(self, client: TestClient) -> None:
        resp = client.get("/v1/ip-ranges", headers={"X-Internal-Request": "true", "User-Agent": "curl/8.4.0"})

        assert resp.status_code == 200
        assert "X-RateLimit-Limit" not in resp.headers

    def test_readiness_probe(self, client: TestClient) -> None:
        resp = client.get("/health/ready")

        assert resp.status_code == 200
        assert resp.json() == {"status": "ready", "tier": "memory", "sync_token": "v1"}


@pytest.mark.usefixtures("ready_cache")
class TestSearchAndExport:
    def test_search_filters_and_sorts(self, client: TestClient) -> None:
        resp = client.get(
            "/v1/ip-ranges/search",
            params={"services": "S3", "sortField": "region", "sortDirection": "asc"},
            headers=EXTERNAL,
        )

        assert resp.status_code == 200
        body = resp.json()
        assert [p["region"] for p in body["data"]] == ["eu-south-1", "us-east-1"]
        assert body["pagination"]["total"] == 2
        assert body["filters"]["services"] == ["S3"]
        assert body["sorting"] == {"field": "region", "direction": "asc"}
        assert resp.headers["X-RateLimit-Limit"] == "10"
        assert resp.headers["X-RateLimit-Window"] == "60"

    def test_search_paginates(self, client: TestClient) -> None:
        resp = client.get("/v1/ip-ranges/search", params={"page": 2, "limit": 2})

        pagination = resp.json()["pagination"]
        assert pagination == {
            "page": 2,
            "limit": 2,
            "total": 5,
            "totalPages": 3,
            "hasNext": True,
            "hasPrev": True,
        }

    def test_search_rejects_unknown_sort_field(self, client: TestClient) -> None:
        resp = client.get("/v1/ip-ranges/search", params={"sortField": "nonsense"})

        assert resp.status_code == 422

    def test_search_budget_is_enforced(self, client: TestClient) -> None:
        for _ in range(10):
            assert client.get("/v1/ip-ranges/search", headers=EXTERNAL).status_code == 200

        denied = client.get("/v1/ip-ranges/search", headers=EXTERNAL)

        assert denied.status_code == 429
        assert denied.headers["X-RateLimit-Remaining"] == "0"
        assert 0 < int(denied.headers["Retry-After"]) <= 60
        error = denied.json()["error"]
        assert error["code"] == "rate_limit_exceeded"
        assert error["details"]["limit"] == 10
        assert error["details"]["window_seconds"] == 60

        other_client = {**EXTERNAL, "X-Forwarded-For": "203.0.113.9"}
        assert client.get("/v1/ip-ranges/search", headers=other_client).status_code == 200

    def test_search_budget_is_separate_from_raw_document(self, client: TestClient) -> None:
        for _ in range(10):
            client.get("/v1/ip-ranges/search", headers=EXTERNAL)

        resp = client.get("/v1/ip-ranges", headers=EXTERNAL)

        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Remaining"] == "49"

    def test_export_returns_all_matches(self, client: TestClient) -> None:
        resp = client.get("/v1/ip-ranges/export", params={"includeIPv6": "false"}, headers=EXTERNAL)

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 3
        assert {p["type"] for p in body["data"]} == {"ipv4"}
        assert body["timestamp"]
        assert "no-store" in resp.headers["Cache-Control"]
        assert resp.headers["X-RateLimit-Limit"] == "5"

    def test_metadata(self, client: TestClient) -> None:
        resp = client.get("/v1/ip-ranges/metadata")

        assert resp.status_code == 200
        assert resp.json() == {
            "regions": ["ap-northeast-2", "ap-southeast-4", "eu-south-1", "us-east-1", "us-west-2"],
            "services": ["AMAZON", "EC2", "ROUTE53_HEALTHCHECKS", "S3"],
            "ipv4Count": 3,
            "ipv6Count": 2,
            "totalPrefixes": 5,
            "lastUpdated": "2024-01-01-00-00-00",
            "syncToken": "v1",
        }


class TestOperations:
    def test_trigger_fills_empty_cache(self, client: TestClient, upstream: FakeUpstreamClient) -> None:
        resp = client.post("/v1/sync")

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Sync completed: no cache"
        assert body["timestamp"]
        assert upstream.calls == 1

        data = client.get("/v1/ip-ranges")
        assert data.status_code == 200
        assert data.headers["X-Sync-Token"] == "v2"

    def test_trigger_with_failing_upstream_still_succeeds(
        self, client: TestClient, upstream: FakeUpstreamClient, upstream_failure
    ) -> None:
        upstream.error = upstream_failure

        resp = client.post("/v1/sync")

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["message"].startswith("Sync completed: fetch failed:")
        assert client.get("/v1/ip-ranges").status_code == 503

    def test_status_reports_cache_sync_and_limiters(self, client: TestClient) -> None:
        client.post("/v1/sync")
        client.get("/v1/ip-ranges", headers=EXTERNAL)

        resp = client.get("/v1/status")

        assert resp.status_code == 200
        body = resp.json()
        assert body["cache"]["present"] is True
        assert body["cache"]["tier"] == "memory"
        assert body["cache"]["source_version_token"] == "v2"
        assert body["sync"]["state"] == "idle"
        assert body["sync"]["last_outcome"]["status"] == "updated"
        assert set(body["rate_limits"]) == {"api", "search", "export"}
        assert body["rate_limits"]["api"]["allowed"] == 1
        assert "198.51.100.7" not in resp.text


def test_health(client: TestClient) -> None:
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_openapi_documents_shared_error_responses(client: TestClient) -> None:
    schema = client.get("/openapi.json").json()

    assert "RateLimitExceeded" in schema["components"]["responses"]
    search = schema["paths"]["/v1/ip-ranges/search"]["get"]["responses"]
    assert search["429"] == {"$ref": "#/components/responses/RateLimitExceeded"}
    assert search["503"] == {"$ref": "#/components/responses/ServiceUnavailable"}
    assert "429" not in schema["paths"]["/health"]["get"]["responses"]
