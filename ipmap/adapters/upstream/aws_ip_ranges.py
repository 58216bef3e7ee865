"""HTTP client for the published AWS IP ranges document."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from ipmap.core.errors import UpstreamFetchError
from ipmap.schemas.ip_ranges import AWSIPRanges

logger = logging.getLogger(__name__)


class AWSIPRangesClient:
    """Fetches and validates the upstream document.

    Every failure (transport, timeout, non-2xx status, non-JSON body, missing
    fields) is raised as UpstreamFetchError so callers handle a single type.
    """

    def __init__(
        self,
        source_url: str,
        *,
        timeout_seconds: float = 30.0,
        user_agent: str = "IPMap/1.0 (Background Sync)",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            source_url: URL of the upstream JSON document.
            timeout_seconds: Bound applied to connect, read and write.
            user_agent: User-Agent header sent upstream.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.source_url = source_url
        self.timeout_seconds = timeout_seconds
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._transport = transport

    async def fetch(self) -> dict[str, Any]:
        """Download the document and check its required fields.

        Returns:
            dict[str, Any]: The document exactly as published.

        Raises:
            UpstreamFetchError: If the document cannot be fetched or is invalid.
        """
        start = time.perf_counter()
        try:
            # httpx bounds each connect/read/write step; this bounds the whole download.
            response = await asyncio.wait_for(self._get(), timeout=self.timeout_seconds)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise UpstreamFetchError(
                code="upstream_timeout",
                message=f"Upstream did not answer within {self.timeout_seconds}s",
                details={"url": self.source_url},
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamFetchError(
                code="upstream_unreachable",
                message=f"Upstream request failed: {exc}",
                details={"url": self.source_url},
            ) from exc

        if response.status_code >= 400:
            raise UpstreamFetchError(
                code="upstream_bad_status",
                message=f"Upstream responded with status: {response.status_code} {response.reason_phrase}",
                details={"url": self.source_url, "http_status": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamFetchError(
                code="upstream_invalid_json",
                message="Upstream response is not valid JSON",
                details={"url": self.source_url},
            ) from exc

        if not isinstance(payload, dict):
            raise UpstreamFetchError(
                code="upstream_invalid_document",
                message="Invalid AWS IP ranges response structure",
                details={"url": self.source_url},
            )

        try:
            document = AWSIPRanges.model_validate(payload)
        except ValidationError as exc:
            raise UpstreamFetchError(
                code="upstream_invalid_document",
                message=f"Invalid AWS IP ranges response structure ({exc.error_count()} errors)",
                details={"url": self.source_url},
            ) from exc

        logger.info(
            "upstream.fetched",
            extra={
                "prefix_count": len(document.prefixes) + len(document.ipv6_prefixes),
                "sync_token": document.syncToken,
                "create_date": document.createDate,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
        return payload

    async def _get(self) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            headers=self._headers,
            transport=self._transport,
        ) as client:
            return await client.get(self.source_url)
