"""Two-tier cache holding the current IP ranges snapshot.

The durable tier (a JSON file by default) survives restarts and is shared by
processes on the same host; the memory tier is process-local and keeps the
common read fast and alive through durable-tier hiccups. The memory tier does
not survive a restart.

Failure policy:
- Durable read errors degrade to "tier absent".
- Durable write errors are logged and swallowed; the memory tier already
  gives read-after-write within this process.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable

from ipmap.adapters.storage.base import AbstractSnapshotStore
from ipmap.models.snapshot import VersionedSnapshot

logger = logging.getLogger(__name__)


TIER_DURABLE = "durable"
TIER_MEMORY = "memory"


@dataclass(frozen=True)
class CacheInfo:
    """Diagnostic view of the cache: which tier answers and how stale it is."""

    present: bool
    tier: str | None = None
    age_seconds: float | None = None
    expired: bool | None = None
    size_bytes: int | None = None
    captured_at: float | None = None
    source_version_token: str | None = None
    source_generated_at: str | None = None
    max_age_seconds: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class TieredCacheStore:
    """Snapshot cache backed by a durable tier with an in-memory fallback.

    Attributes:
        max_age_seconds: Snapshots at least this old are treated as absent.
    """

    def __init__(
        self,
        durable: AbstractSnapshotStore | None,
        *,
        max_age_seconds: int = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_age_seconds < 1:
            raise ValueError("max_age_seconds must be >= 1")

        self._durable = durable
        self._max_age = max_age_seconds
        self._clock = clock
        self._memory: VersionedSnapshot | None = None
        self._lock = threading.RLock()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"TieredCacheStore(durable={self._durable!r}, max_age_seconds={self._max_age}, "
            f"memory={'set' if self._memory else 'empty'})"
        )

    @property
    def max_age_seconds(self) -> int:
        return self._max_age

    def get(self) -> VersionedSnapshot | None:
        """Return the freshest non-expired snapshot from any tier.

        The durable tier answers first. A durable hit refreshes the memory
        tier. If both tiers hold a fresh snapshot, the one captured last wins,
        so a failed durable write never hides the snapshot just set.

        Returns:
            The snapshot, or None if no tier holds a fresh one.
        """

        snapshot, _ = self._resolve()
        return snapshot

    def lookup(self) -> tuple[VersionedSnapshot | None, str | None]:
        """Like ``get`` but also report which tier answered."""

        return self._resolve()

    def set(self, snapshot: VersionedSnapshot) -> None:
        """Store a new snapshot in memory, then try to persist it.

        Args:
            snapshot: Snapshot to store. It replaces the previous one.
        """

        with self._lock:
            self._memory = snapshot

        logger.info(
            "cache.set",
            extra={
                "tier": TIER_MEMORY,
                "sync_token": snapshot.source_version_token,
                "create_date": snapshot.source_generated_at,
            },
        )

        if self._durable is None:
            return

        try:
            self._durable.write(snapshot)
        except Exception as exc:
            logger.warning(
                "cache.durable_write_failed",
                extra={
                    "tier": TIER_DURABLE,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return

        logger.info("cache.set", extra={"tier": TIER_DURABLE})

    def clear(self) -> None:
        """Drop the snapshot from both tiers, each on a best-effort basis."""

        with self._lock:
            self._memory = None

        if self._durable is None:
            logger.info("cache.cleared", extra={"durable_removed": False})
            return

        try:
            removed = self._durable.delete()
        except Exception as exc:
            logger.warning(
                "cache.durable_clear_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return

        logger.info("cache.cleared", extra={"durable_removed": removed})

    def info(self) -> CacheInfo:
        """Describe the snapshot currently served and where it comes from."""

        now = self._clock()
        snapshot, tier = self._resolve(now=now, include_expired=True)
        if snapshot is None:
            return CacheInfo(present=False, max_age_seconds=self._max_age)

        return CacheInfo(
            present=True,
            tier=tier,
            age_seconds=round(snapshot.age(now), 3),
            expired=snapshot.is_expired(now, self._max_age),
            size_bytes=self._size_of(snapshot, tier),
            captured_at=snapshot.captured_at,
            source_version_token=snapshot.source_version_token,
            source_generated_at=snapshot.source_generated_at,
            max_age_seconds=self._max_age,
        )

    def _resolve(
        self,
        *,
        now: float | None = None,
        include_expired: bool = False,
    ) -> tuple[VersionedSnapshot | None, str | None]:
        now = self._clock() if now is None else now

        def usable(candidate: VersionedSnapshot | None) -> bool:
            if candidate is None:
                return False
            return include_expired or not candidate.is_expired(now, self._max_age)

        durable = self._read_durable()
        with self._lock:
            memory = self._memory

            if usable(durable) and (
                not usable(memory) or durable.captured_at >= memory.captured_at  # type: ignore[union-attr]
            ):
                if memory is None or memory.captured_at < durable.captured_at:  # type: ignore[union-attr]
                    # Read-through: keep the memory tier as fresh as disk.
                    self._memory = durable
                logger.debug("cache.hit", extra={"tier": TIER_DURABLE})
                return durable, TIER_DURABLE

            if usable(memory):
                logger.debug("cache.hit", extra={"tier": TIER_MEMORY})
                return memory, TIER_MEMORY

        logger.debug(
            "cache.miss",
            extra={
                "reason": "expired" if (durable or memory) else "not_found",
            },
        )
        return None, None

    def _read_durable(self) -> VersionedSnapshot | None:
        if self._durable is None:
            return None
        try:
            return self._durable.read()
        except Exception as exc:
            logger.warning(
                "cache.durable_read_failed",
                extra={
                    "tier": TIER_DURABLE,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )
            return None

    def _size_of(self, snapshot: VersionedSnapshot, tier: str | None) -> int | None:
        if tier == TIER_DURABLE and self._durable is not None:
            try:
                return self._durable.size_bytes()
            except Exception:
                logger.debug("cache.size_unavailable", extra={"tier": TIER_DURABLE})
        return len(json.dumps(snapshot.to_record()).encode("utf-8"))
