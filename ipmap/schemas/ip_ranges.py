"""Pydantic schemas for the AWS IP ranges document and query responses."""

from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field


class AWSIPPrefix(BaseModel):
    """One IPv4 prefix entry of the upstream document."""

    model_config = ConfigDict(extra="allow")

    ip_prefix: str
    region: str
    service: str
    network_border_group: str = ""


class AWSIPv6Prefix(BaseModel):
    """One IPv6 prefix entry of the upstream document."""

    model_config = ConfigDict(extra="allow")

    ipv6_prefix: str
    region: str
    service: str
    network_border_group: str = ""


class AWSIPRanges(BaseModel):
    """The upstream document. Unknown fields are preserved."""

    model_config = ConfigDict(extra="allow")

    syncToken: str = Field(..., min_length=1, description="Publisher version token.")
    createDate: str = Field(..., min_length=1, description="Publisher creation timestamp.")
    prefixes: List[AWSIPPrefix]
    ipv6_prefixes: List[AWSIPv6Prefix]


PrefixType = Literal["ipv4", "ipv6"]
SortField = Literal["prefix", "region", "service", "network_border_group"]
SortDirection = Literal["asc", "desc"]


class CombinedPrefix(BaseModel):
    """IPv4 or IPv6 prefix flattened into a single shape."""

    prefix: str
    region: str
    service: str
    network_border_group: str
    type: PrefixType


class PrefixFilters(BaseModel):
    """Filters applied to a search or export."""

    regions: List[str] = Field(default_factory=list)
    services: List[str] = Field(default_factory=list)
    searchTerm: str = ""
    includeIPv4: bool = True
    includeIPv6: bool = True


class PrefixSorting(BaseModel):
    field: SortField = "prefix"
    direction: SortDirection = "asc"


class SearchPagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int
    hasNext: bool
    hasPrev: bool


class SearchResponse(BaseModel):
    """Paginated search results."""

    data: List[CombinedPrefix]
    pagination: SearchPagination
    filters: PrefixFilters
    sorting: PrefixSorting


class ExportResponse(BaseModel):
    """Every prefix matching the filters, unpaginated."""

    data: List[CombinedPrefix]
    total: int
    filters: PrefixFilters
    sorting: PrefixSorting
    timestamp: str


class RangesMetadataResponse(BaseModel):
    """Unique regions/services of the current snapshot."""

    regions: List[str]
    services: List[str]
    ipv4Count: int
    ipv6Count: int
    totalPrefixes: int
    lastUpdated: str
    syncToken: str
