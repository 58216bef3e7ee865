"""Background synchronizer for the IP ranges snapshot.

The controller fetches the upstream document, compares its version metadata
(``syncToken``/``createDate``) with the cached snapshot and writes a new
snapshot only when the content changed or the cached copy is older than the
force-refresh threshold.

Guarantees:
- Single flight: a run requested while another is in progress returns
  immediately with status ``skipped``.
- Fetch failures never escape: the check reports "no update" and the previous
  snapshot (possibly stale) keeps serving.

Scheduling is a strategy picked at construction: ``ContinuousScheduling`` for
long-lived servers, ``OneShotOnInvoke`` for short-lived processes where an
external scheduler calls again later.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable

from ipmap.adapters.upstream.aws_ip_ranges import AWSIPRangesClient
from ipmap.core.errors import UpstreamFetchError, ValidationAppError
from ipmap.models.snapshot import VersionedSnapshot
from ipmap.services.snapshot_cache import TieredCacheStore
from ipmap.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    FETCHING = "fetching"
    DECIDING = "deciding"
    WRITING = "writing"


@dataclass(frozen=True)
class UpdateCheck:
    """Result of comparing the upstream document with the cached snapshot."""

    needs_update: bool
    reason: str
    remote_snapshot: VersionedSnapshot | None = None
    fetch_failed: bool = False


@dataclass(frozen=True)
class SyncOutcome:
    """Summary of one sync run.

    Attributes:
        status: ``updated``, ``unchanged``, ``failed`` or ``skipped``.
        reason: Why the run ended the way it did.
        started_at: UNIX epoch seconds when the run started.
        duration_ms: Wall time of the run.
        sync_token: Token of the snapshot written, when one was written.
    """

    status: str
    reason: str
    started_at: float
    duration_ms: float
    sync_token: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TriggerResult:
    success: bool
    message: str


@dataclass(frozen=True)
class SyncStatus:
    state: str
    mode: str
    interval_seconds: int
    force_refresh_seconds: int
    scheduled: bool
    last_outcome: dict[str, Any] | None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class SchedulingStrategy(ABC):
    """How ``SyncController.schedule`` runs syncs."""

    mode: str = ""

    @abstractmethod
    def start(self, job: Callable[[], Any], interval_seconds: int) -> asyncio.Task[Any] | None:
        """Start running ``job`` on the running event loop."""
        raise NotImplementedError

    async def stop(self) -> None:
        return None

    @property
    def running(self) -> bool:
        return False


class ContinuousScheduling(SchedulingStrategy):
    """Sync now, then on a fixed period, for the lifetime of the process."""

    mode = "continuous"

    def __init__(self) -> None:
        self._periodic: PeriodicTask | None = None

    def start(self, job: Callable[[], Any], interval_seconds: int) -> asyncio.Task[Any] | None:
        if self._periodic is not None and self._periodic.running:
            logger.info("sync.schedule_already_running")
            return None
        self._periodic = PeriodicTask("ip-ranges-sync", job, interval_seconds)
        return self._periodic.start()

    async def stop(self) -> None:
        if self._periodic is not None:
            await self._periodic.stop()
            self._periodic = None

    @property
    def running(self) -> bool:
        return self._periodic is not None and self._periodic.running


class OneShotOnInvoke(SchedulingStrategy):
    """Sync exactly once per call; the caller is responsible for calling again."""

    mode = "one_shot"

    def __init__(self) -> None:
        # Strong references: the event loop only keeps weak ones.
        self._tasks: set[asyncio.Task[Any]] = set()

    def start(self, job: Callable[[], Any], interval_seconds: int) -> asyncio.Task[Any] | None:
        task = asyncio.get_running_loop().create_task(job(), name="ip-ranges-sync-once")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def stop(self) -> None:
        """Cancel in-flight runs and wait for them to finish."""
        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.error(
                    "sync.one_shot_failed",
                    extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
                )
        if tasks:
            logger.info("sync.one_shot_cancelled", extra={"tasks": len(tasks)})

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)


def build_scheduling_strategy(mode: str) -> SchedulingStrategy:
    """Map the configured sync mode to a strategy.

    Raises:
        ValidationAppError: If the mode is unknown.
    """
    if mode == ContinuousScheduling.mode:
        return ContinuousScheduling()
    if mode == OneShotOnInvoke.mode:
        return OneShotOnInvoke()
    raise ValidationAppError(
        code="sync_unknown_mode",
        message=f"Unknown sync mode: {mode!r}",
        details={"supported": [ContinuousScheduling.mode, OneShotOnInvoke.mode]},
    )


class SyncController:
    """Keeps the tiered cache in step with the upstream document."""

    def __init__(
        self,
        cache: TieredCacheStore,
        client: AWSIPRangesClient,
        *,
        force_refresh_seconds: int = 24 * 60 * 60,
        interval_seconds: int = 60 * 60,
        strategy: SchedulingStrategy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if force_refresh_seconds < 1:
            raise ValidationAppError(
                code="sync_invalid_config",
                message="force_refresh_seconds must be >= 1",
            )
        if interval_seconds < 1:
            raise ValidationAppError(
                code="sync_invalid_config",
                message="interval_seconds must be >= 1",
            )

        self._cache = cache
        self._client = client
        self._force_refresh = force_refresh_seconds
        self._interval = interval_seconds
        self._strategy = strategy or ContinuousScheduling()
        self._clock = clock
        self._guard = threading.Lock()
        self._state = SyncState.IDLE
        self._last_outcome: SyncOutcome | None = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def last_outcome(self) -> SyncOutcome | None:
        return self._last_outcome

    async def check_for_update(self) -> UpdateCheck:
        """Fetch the upstream document and decide whether the cache needs it.

        The upstream is fetched even when a snapshot is cached, so the version
        metadata can be compared. Fetch errors are converted into
        ``needs_update=False`` with the error as reason.

        Returns:
            UpdateCheck with the decision, its reason and the fetched snapshot.
        """
        loop = asyncio.get_running_loop()
        cached = await loop.run_in_executor(None, self._cache.get)

        self._enter(SyncState.FETCHING)
        try:
            payload = await self._client.fetch()
        except UpstreamFetchError as exc:
            logger.error(
                "sync.fetch_failed",
                extra={
                    "error_code": exc.code,
                    "error_msg": exc.message,
                    "has_cache": cached is not None,
                },
            )
            return UpdateCheck(
                needs_update=False,
                reason=f"fetch failed: {exc.message}",
                fetch_failed=True,
            )

        self._enter(SyncState.DECIDING)
        now = self._clock()
        remote = VersionedSnapshot.capture(payload, now=now)

        if cached is None:
            return UpdateCheck(needs_update=True, reason="no cache", remote_snapshot=remote)

        changed = []
        if remote.source_version_token != cached.source_version_token:
            changed.append("syncToken")
        if remote.source_generated_at != cached.source_generated_at:
            changed.append("createDate")
        if changed:
            logger.info(
                "sync.update_detected",
                extra={
                    "cached_sync_token": cached.source_version_token,
                    "remote_sync_token": remote.source_version_token,
                    "cached_create_date": cached.source_generated_at,
                    "remote_create_date": remote.source_generated_at,
                },
            )
            return UpdateCheck(
                needs_update=True,
                reason=f"{' and '.join(changed)} changed",
                remote_snapshot=remote,
            )

        age = cached.age(now)
        if age >= self._force_refresh:
            logger.info("sync.force_refresh", extra={"cache_age_s": round(age, 1)})
            return UpdateCheck(
                needs_update=True,
                reason=f"forced by age ({age / 3600:.1f}h old)",
                remote_snapshot=remote,
            )

        return UpdateCheck(needs_update=False, reason="up to date")

    async def run_sync(self) -> SyncOutcome:
        """Run one check-and-write cycle unless another is already running.

        Returns:
            SyncOutcome describing what the run did.
        """
        started_at = self._clock()
        start = time.perf_counter()

        if not self._guard.acquire(blocking=False):
            logger.info("sync.skipped", extra={"state": self._state.value})
            return SyncOutcome(
                status="skipped",
                reason="sync already running",
                started_at=started_at,
                duration_ms=0.0,
            )

        try:
            self._state = SyncState.CHECKING
            logger.info("sync.started")

            check = await self.check_for_update()

            if check.needs_update and check.remote_snapshot is not None:
                self._state = SyncState.WRITING
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self._cache.set, check.remote_snapshot)
                status = "updated"
                sync_token = check.remote_snapshot.source_version_token
            else:
                status = "failed" if check.fetch_failed else "unchanged"
                sync_token = None

            outcome = SyncOutcome(
                status=status,
                reason=check.reason,
                started_at=started_at,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
                sync_token=sync_token,
            )
            self._last_outcome = outcome
            logger.info(
                "sync.completed",
                extra={
                    "status": outcome.status,
                    "reason": outcome.reason,
                    "duration_ms": outcome.duration_ms,
                },
            )
            return outcome
        finally:
            self._state = SyncState.IDLE
            self._guard.release()

    def schedule(self, interval_seconds: int | None = None) -> asyncio.Task[Any] | None:
        """Start syncing according to the configured strategy.

        Must be called from a running event loop.

        Args:
            interval_seconds: Period for continuous scheduling (default from init).

        Returns:
            The task running the sync(s), or None if already scheduled.
        """
        interval = interval_seconds or self._interval
        logger.info(
            "sync.schedule",
            extra={"mode": self._strategy.mode, "interval_s": interval},
        )
        return self._strategy.start(self.run_sync, interval)

    async def stop(self) -> None:
        await self._strategy.stop()

    async def trigger(self) -> TriggerResult:
        """Run a sync now, for operators.

        Returns:
            TriggerResult; ``success`` is False only if the run itself raised.
        """
        try:
            outcome = await self.run_sync()
        except Exception as exc:
            logger.error(
                "sync.trigger_failed",
                extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return TriggerResult(success=False, message=str(exc) or "Sync failed")

        if outcome.status == "skipped":
            return TriggerResult(success=True, message="Sync already running")
        return TriggerResult(success=True, message=f"Sync completed: {outcome.reason}")

    def status(self) -> SyncStatus:
        return SyncStatus(
            state=self._state.value,
            mode=self._strategy.mode,
            interval_seconds=self._interval,
            force_refresh_seconds=self._force_refresh,
            scheduled=self._strategy.running,
            last_outcome=self._last_outcome.as_dict() if self._last_outcome else None,
        )

    def _enter(self, state: SyncState) -> None:
        # Standalone checks (outside run_sync) do not move the state machine.
        if self._guard.locked() and self._state is not SyncState.IDLE:
            self._state = state
