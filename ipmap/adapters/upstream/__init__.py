"""Upstream data source clients."""

from ipmap.adapters.upstream.aws_ip_ranges import AWSIPRangesClient

__all__ = ["AWSIPRangesClient"]
