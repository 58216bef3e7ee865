"""Versioned snapshot of the upstream IP ranges document.

A snapshot pairs the full upstream payload with the version metadata used to
decide whether a refresh is needed. Snapshots are never edited: a sync always
builds a new one and the cache replaces the previous instance.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from ipmap.core.errors import CacheStorageError


@dataclass(frozen=True)
class VersionedSnapshot:
    """One captured copy of the upstream dataset.

    Attributes:
        payload: The upstream document as published (opaque to the cache).
        captured_at: UNIX epoch seconds when the snapshot was stored.
        source_version_token: Upstream ``syncToken``.
        source_generated_at: Upstream ``createDate``.
    """

    payload: Mapping[str, Any]
    captured_at: float
    source_version_token: str
    source_generated_at: str

    def __post_init__(self) -> None:
        if not isinstance(self.payload, MappingProxyType):
            # Read-only view so callers cannot mutate a stored snapshot in place.
            object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    @classmethod
    def capture(cls, payload: Mapping[str, Any], *, now: float | None = None) -> "VersionedSnapshot":
        """Build a snapshot from an upstream document, stamping it with ``now``."""
        return cls(
            payload=payload,
            captured_at=time.time() if now is None else now,
            source_version_token=str(payload["syncToken"]),
            source_generated_at=str(payload["createDate"]),
        )

    def age(self, now: float) -> float:
        return max(0.0, now - self.captured_at)

    def is_expired(self, now: float, max_age_seconds: float) -> bool:
        return self.age(now) >= max_age_seconds

    def same_version_as(self, other: "VersionedSnapshot") -> bool:
        return (
            self.source_version_token == other.source_version_token
            and self.source_generated_at == other.source_generated_at
        )

    def to_record(self) -> "CacheTierRecord":
        return {
            "data": dict(self.payload),
            "timestamp": self.captured_at,
            "createDate": self.source_generated_at,
            "syncToken": self.source_version_token,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "VersionedSnapshot":
        """Rebuild a snapshot from its persisted form.

        Raises:
            CacheStorageError: If the record is missing fields or has bad types.
        """
        try:
            data = record["data"]
            if not isinstance(data, Mapping):
                raise TypeError("data must be an object")
            return cls(
                payload=data,
                captured_at=float(record["timestamp"]),
                source_version_token=str(record["syncToken"]),
                source_generated_at=str(record["createDate"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CacheStorageError(
                code="cache_record_invalid",
                message=f"Persisted snapshot record is invalid: {exc}",
            ) from exc


# Persisted form of a snapshot (JSON object written to the durable tier).
CacheTierRecord = dict[str, Any]


@dataclass
class RateWindowRecord:
    """Request count for one client inside its current fixed window."""

    client_key: str
    window_reset_at: float
    count: int = field(default=0)

    def is_expired(self, now: float) -> bool:
        return now >= self.window_reset_at
