from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Query, Response

from ipmap.core.config import parse_csv, settings
from ipmap.core.dependencies import get_snapshot_cache
from ipmap.core.errors import DataNotReadyError
from ipmap.core.rate_limit import POLICY_API, POLICY_EXPORT, POLICY_SEARCH, rate_limited
from ipmap.models.snapshot import VersionedSnapshot
from ipmap.schemas.ip_ranges import (
    ExportResponse,
    PrefixFilters,
    PrefixSorting,
    RangesMetadataResponse,
    SearchResponse,
    SortDirection,
    SortField,
)
from ipmap.services.prefix_query import (
    MAX_PAGE_SIZE,
    combine_prefixes,
    filter_prefixes,
    paginate,
    sort_prefixes,
    unique_values,
)
from ipmap.services.snapshot_cache import TieredCacheStore

router = APIRouter(tags=["IP Ranges"])

NO_STORE = "no-cache, no-store, must-revalidate"


def _require_snapshot(cache: TieredCacheStore) -> tuple[VersionedSnapshot, str | None]:
    """Return the cached snapshot and its tier, or signal that the first sync has not landed yet.

    Raises:
        DataNotReadyError: If no tier holds a fresh snapshot.
    """
    snapshot, tier = cache.lookup()
    if snapshot is None:
        raise DataNotReadyError(
            code="data_not_ready",
            message="Background sync is initializing. Please try again in a few moments.",
            details={"retry_after": settings.app.not_ready_retry_after_seconds},
        )
    return snapshot, tier


def _filters(
    regions: str | None = Query(None, description="Comma-separated regions to include."),
    services: str | None = Query(None, description="Comma-separated services to include."),
    search_term: str = Query("", alias="searchTerm", description="Free-text match on any field."),
    include_ipv4: bool = Query(True, alias="includeIPv4"),
    include_ipv6: bool = Query(True, alias="includeIPv6"),
) -> PrefixFilters:
    return PrefixFilters(
        regions=parse_csv(regions),
        services=parse_csv(services),
        searchTerm=search_term,
        includeIPv4=include_ipv4,
        includeIPv6=include_ipv6,
    )


def _sorting(
    sort_field: SortField = Query("prefix", alias="sortField"),
    sort_direction: SortDirection = Query("asc", alias="sortDirection"),
) -> PrefixSorting:
    return PrefixSorting(field=sort_field, direction=sort_direction)


@router.get(
    "/ip-ranges",
    dependencies=[Depends(rate_limited(POLICY_API))],
)
def get_ip_ranges(
    response: Response,
    cache: TieredCacheStore = Depends(get_snapshot_cache),
) -> dict[str, Any]:
    """Return the full AWS IP ranges document as last synced.

    Responds 503 with Retry-After while no snapshot is available.
    """
    snapshot, tier = _require_snapshot(cache)

    response.headers["Cache-Control"] = "public, s-maxage=3600, stale-while-revalidate=86400"
    response.headers["X-Data-Source"] = "AWS IP Ranges API (Cached)"
    response.headers["X-Last-Updated"] = snapshot.source_generated_at
    response.headers["X-Sync-Token"] = snapshot.source_version_token
    response.headers["X-Cache-Status"] = "HIT"
    if tier:
        response.headers["X-Cache-Tier"] = tier

    return dict(snapshot.payload)


@router.get(
    "/ip-ranges/search",
    response_model=SearchResponse,
    dependencies=[Depends(rate_limited(POLICY_SEARCH))],
)
def search_ip_ranges(
    response: Response,
    page: int = Query(1, description="1-based page number."),
    limit: int = Query(50, description=f"Page size (max {MAX_PAGE_SIZE})."),
    filters: PrefixFilters = Depends(_filters),
    sorting: PrefixSorting = Depends(_sorting),
    cache: TieredCacheStore = Depends(get_snapshot_cache),
) -> SearchResponse:
    """Search, filter, sort and paginate prefixes from the cached snapshot."""
    snapshot, _ = _require_snapshot(cache)

    matches = sort_prefixes(filter_prefixes(combine_prefixes(snapshot.payload), filters), sorting)
    page_data, pagination = paginate(matches, page=page, limit=limit)

    response.headers["Cache-Control"] = "public, s-maxage=60, stale-while-revalidate=300"
    response.headers["X-Data-Source"] = "AWS IP Ranges API (Server-Side Filtered)"
    return SearchResponse(data=page_data, pagination=pagination, filters=filters, sorting=sorting)


@router.get(
    "/ip-ranges/export",
    response_model=ExportResponse,
    dependencies=[Depends(rate_limited(POLICY_EXPORT))],
)
def export_ip_ranges(
    response: Response,
    filters: PrefixFilters = Depends(_filters),
    sorting: PrefixSorting = Depends(_sorting),
    cache: TieredCacheStore = Depends(get_snapshot_cache),
) -> ExportResponse:
    """Return every prefix matching the filters, without pagination."""
    snapshot, _ = _require_snapshot(cache)

    matches = sort_prefixes(filter_prefixes(combine_prefixes(snapshot.payload), filters), sorting)

    response.headers["Cache-Control"] = NO_STORE
    return ExportResponse(
        data=matches,
        total=len(matches),
        filters=filters,
        sorting=sorting,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@router.get(
    "/ip-ranges/metadata",
    response_model=RangesMetadataResponse,
    dependencies=[Depends(rate_limited(POLICY_API))],
)
def get_ip_ranges_metadata(
    cache: TieredCacheStore = Depends(get_snapshot_cache),
) -> RangesMetadataResponse:
    """Regions, services and prefix counts of the cached snapshot."""
    snapshot, _ = _require_snapshot(cache)
    ipv4 = len(snapshot.payload.get("prefixes", []))
    ipv6 = len(snapshot.payload.get("ipv6_prefixes", []))
    return RangesMetadataResponse(
        regions=unique_values(snapshot.payload, "region"),
        services=unique_values(snapshot.payload, "service"),
        ipv4Count=ipv4,
        ipv6Count=ipv6,
        totalPrefixes=ipv4 + ipv6,
        lastUpdated=snapshot.source_generated_at,
        syncToken=snapshot.source_version_token,
    )
