"""Flatten, filter, sort and paginate prefixes of a snapshot."""

from __future__ import annotations

import math
from typing import Any, Iterable, Mapping

from ipmap.schemas.ip_ranges import (
    CombinedPrefix,
    PrefixFilters,
    PrefixSorting,
    SearchPagination,
)

MAX_PAGE_SIZE = 500


def combine_prefixes(document: Mapping[str, Any]) -> list[CombinedPrefix]:
    """Merge IPv4 and IPv6 entries into one list, IPv4 first."""

    combined: list[CombinedPrefix] = []
    for entry in document.get("prefixes", []):
        combined.append(
            CombinedPrefix(
                prefix=entry["ip_prefix"],
                region=entry["region"],
                service=entry["service"],
                network_border_group=entry.get("network_border_group", ""),
                type="ipv4",
            )
        )
    for entry in document.get("ipv6_prefixes", []):
        combined.append(
            CombinedPrefix(
                prefix=entry["ipv6_prefix"],
                region=entry["region"],
                service=entry["service"],
                network_border_group=entry.get("network_border_group", ""),
                type="ipv6",
            )
        )
    return combined


def unique_values(document: Mapping[str, Any], field: str) -> list[str]:
    values = {entry[field] for entry in document.get("prefixes", [])}
    values.update(entry[field] for entry in document.get("ipv6_prefixes", []))
    return sorted(values)


def filter_prefixes(prefixes: Iterable[CombinedPrefix], filters: PrefixFilters) -> list[CombinedPrefix]:
    """Apply type, region, service and free-text filters.

    The search term matches case-insensitively against prefix, region,
    service and network border group.
    """

    regions = set(filters.regions) or None
    services = set(filters.services) or None
    term = filters.searchTerm.strip().lower()

    result = []
    for prefix in prefixes:
        if prefix.type == "ipv4" and not filters.includeIPv4:
            continue
        if prefix.type == "ipv6" and not filters.includeIPv6:
            continue
        if regions and prefix.region not in regions:
            continue
        if services and prefix.service not in services:
            continue
        if term:
            haystack = f"{prefix.prefix} {prefix.region} {prefix.service} {prefix.network_border_group}".lower()
            if term not in haystack:
                continue
        result.append(prefix)
    return result


def sort_prefixes(prefixes: Iterable[CombinedPrefix], sorting: PrefixSorting) -> list[CombinedPrefix]:
    return sorted(
        prefixes,
        key=lambda p: getattr(p, sorting.field).lower(),
        reverse=sorting.direction == "desc",
    )


def paginate(
    prefixes: list[CombinedPrefix],
    *,
    page: int,
    limit: int,
) -> tuple[list[CombinedPrefix], SearchPagination]:
    """Slice one page out of ``prefixes``.

    Args:
        prefixes: Already filtered and sorted prefixes.
        page: 1-based page number (values below 1 are clamped).
        limit: Page size, clamped to 1..MAX_PAGE_SIZE.
    """

    page = max(1, page)
    limit = min(MAX_PAGE_SIZE, max(1, limit))
    total = len(prefixes)
    total_pages = math.ceil(total / limit)
    start = (page - 1) * limit

    return prefixes[start : start + limit], SearchPagination(
        page=page,
        limit=limit,
        total=total,
        totalPages=total_pages,
        hasNext=page < total_pages,
        hasPrev=page > 1,
    )
