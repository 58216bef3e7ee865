"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from ipmap.core.errors import (
    AppError,
    CacheStorageError,
    DataNotReadyError,
    RateLimitExceededError,
    UpstreamFetchError,
    ValidationAppError,
)
from ipmap.core.exception_handlers import setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers, raise_server_exceptions=False)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    @pytest.mark.parametrize(
        "error_cls,status_code",
        [
            (ValidationAppError, 400),
            (UpstreamFetchError, 502),
            (CacheStorageError, 500),
            (AppError, 400),
        ],
    )
    def test_status_mapping(
        self, client: TestClient, app_with_handlers: FastAPI, error_cls: type[AppError], status_code: int
    ):
        @app_with_handlers.get("/boom")
        async def test_endpoint():
            raise error_cls(code="some_code", message="Something failed")

        response = client.get("/boom")

        assert response.status_code == status_code
        data = response.json()
        assert data["error"]["code"] == "some_code"
        assert data["error"]["message"] == "Something failed"
        assert "request_id" in data["error"]
        assert "details" not in data["error"]

    def test_details_are_included(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/test-details")
        async def test_endpoint():
            raise UpstreamFetchError(
                code="upstream_bad_status",
                message="Upstream responded with status: 500",
                details={"http_status": 500, "url": "https://example.test"},
            )

        response = client.get("/test-details")

        assert response.status_code == 502
        assert response.json()["error"]["details"] == {"http_status": 500, "url": "https://example.test"}

    def test_not_ready_sets_retry_after_and_no_store(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/not-ready")
        async def test_endpoint():
            raise DataNotReadyError(code="data_not_ready", message="Initializing", details={"retry_after": 30})

        response = client.get("/not-ready")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        assert "no-store" in response.headers["Cache-Control"]

    def test_rate_limit_error_keeps_rate_limit_headers(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/limited")
        async def test_endpoint(request: Request):
            request.state.rate_limit_headers = {"X-RateLimit-Limit": "10", "X-RateLimit-Remaining": "0"}
            raise RateLimitExceededError(
                code="rate_limit_exceeded",
                message="Too many search requests. Please slow down.",
                details={"retry_after": 42, "limit": 10, "window_seconds": 60},
            )

        response = client.get("/limited")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "42"
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert response.json()["error"]["details"]["retry_after"] == 42


class TestGeneralExceptionHandler:
    """Test the fallback handler for unexpected errors."""

    def test_unexpected_error_returns_generic_500(self, client: TestClient, app_with_handlers: FastAPI):
        @app_with_handlers.get("/crash")
        async def test_endpoint():
            raise RuntimeError("database password is hunter2")

        response = client.get("/crash")

        assert response.status_code == 500
        data = response.json()
        assert data["error"]["code"] == "internal_server_error"
        assert "hunter2" not in response.text
