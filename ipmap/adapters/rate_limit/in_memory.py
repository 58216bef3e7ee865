"""In-memory fixed-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: uses a lock around shared state.
- Each client's window starts at its first request and lasts
  ``window_seconds``; an expired record is replaced, never reused.
"""

from __future__ import annotations

import math
import threading
import time
from typing import Any, Callable

from ipmap.adapters.rate_limit.base import AbstractRateLimiter, RateLimitDecision, RateLimitPolicy
from ipmap.adapters.rate_limit.exemption import ExemptionPredicate, RequestSignals
from ipmap.models.snapshot import RateWindowRecord


class InMemoryFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter using a fixed time window per client key.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        policy: RateLimitPolicy,
        *,
        exemption: ExemptionPredicate | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory rate limiter.

        Args:
            policy: Window length, budget and counting rules.
            exemption: Optional predicate; matching callers skip the counters.
            clock: Time source function returning UNIX time in seconds.
        """
        self.policy = policy
        self._exemption = exemption
        self._clock = clock
        self._lock = threading.RLock()
        self._records: dict[str, RateWindowRecord] = {}
        self._allowed = 0
        self._denied = 0
        self._exempted = 0

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryFixedWindowRateLimiter(policy={self.policy.name!r}, "
            f"limit={self.policy.max_requests}, window_seconds={self.policy.window_seconds}, "
            f"clients={len(self._records)})"
        )

    def _get_or_reset_record(self, key: str, now: float) -> RateWindowRecord:
        """Get the current record for key or start a new window.

        Args:
            key: Client key.
            now: Current UNIX time.

        Returns:
            The record for the window containing ``now``.
        """
        record = self._records.get(key)
        if record is None or record.is_expired(now):
            record = RateWindowRecord(
                client_key=key,
                window_reset_at=now + self.policy.window_seconds,
            )
            self._records[key] = record
        return record

    def _build_decision(
        self,
        *,
        allowed: bool,
        now: float,
        remaining: int,
        window_reset_at: float,
        exempt: bool = False,
    ) -> RateLimitDecision:
        retry_after = None
        if not allowed:
            retry_after = max(0, int(math.ceil(window_reset_at - now)))
        return RateLimitDecision(
            allowed=allowed,
            exempt=exempt,
            limit=self.policy.max_requests,
            remaining=remaining,
            reset_at=int(math.ceil(window_reset_at)),
            window_reset_at=window_reset_at,
            window_seconds=self.policy.window_seconds,
            retry_after_seconds=retry_after,
        )

    def admit(
        self,
        client_key: str,
        *,
        now: float | None = None,
        signals: RequestSignals | None = None,
    ) -> RateLimitDecision:
        """Check the window for ``client_key`` and consume one unit if allowed.

        Args:
            client_key: Caller identity (e.g., client IP).
            now: Current UNIX time; defaults to the limiter's clock.
            signals: Request metadata for the exemption predicate.

        Returns:
            RateLimitDecision with allowance decision and metadata.

        Raises:
            ValueError: If client_key is empty.
        """
        if not client_key:
            raise ValueError("client_key must be a non-empty string")

        now = self._clock() if now is None else now

        if signals is not None and self._exemption is not None and self._exemption(signals):
            with self._lock:
                self._exempted += 1
            return self._build_decision(
                allowed=True,
                now=now,
                remaining=self.policy.max_requests,
                window_reset_at=now + self.policy.window_seconds,
                exempt=True,
            )

        with self._lock:
            record = self._get_or_reset_record(client_key, now)

            if record.count >= self.policy.max_requests:
                self._denied += 1
                return self._build_decision(
                    allowed=False,
                    now=now,
                    remaining=0,
                    window_reset_at=record.window_reset_at,
                )

            record.count += 1
            self._allowed += 1
            return self._build_decision(
                allowed=True,
                now=now,
                remaining=max(0, self.policy.max_requests - record.count),
                window_reset_at=record.window_reset_at,
            )

    def release(self, client_key: str, window_reset_at: float) -> None:
        """Give back one unit, only if the window it was taken from is current."""
        with self._lock:
            record = self._records.get(client_key)
            if record is None or record.window_reset_at != window_reset_at:
                return
            record.count = max(0, record.count - 1)

    def remaining(self, client_key: str, *, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        with self._lock:
            record = self._records.get(client_key)
            if record is None or record.is_expired(now):
                return self.policy.max_requests
            return max(0, self.policy.max_requests - record.count)

    def sweep(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        with self._lock:
            expired = [key for key, record in self._records.items() if record.is_expired(now)]
            for key in expired:
                del self._records[key]
        return len(expired)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "policy": self.policy.name,
                "limit": self.policy.max_requests,
                "window_seconds": self.policy.window_seconds,
                "tracked_clients": len(self._records),
                "allowed": self._allowed,
                "denied": self._denied,
                "exempted": self._exempted,
            }
