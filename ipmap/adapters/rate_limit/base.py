"""Rate limiter interfaces.

The API should depend on this abstraction (not the concrete implementation)
so we can swap storage backends later (e.g., Redis) with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from ipmap.adapters.rate_limit.exemption import RequestSignals


@dataclass(frozen=True)
class RateLimitPolicy:
    """Limits applied to one guarded route.

    Attributes:
        name: Policy identifier used in logs and diagnostics.
        max_requests: Requests allowed per window.
        window_seconds: Window length; each client's window starts at its
            first request.
        skip_successful_requests: Give the unit back when the handler succeeds.
        skip_failed_requests: Give the unit back when the handler fails.
        message: Human-readable rejection message.
    """

    name: str
    max_requests: int
    window_seconds: int
    skip_successful_requests: bool = False
    skip_failed_requests: bool = False
    message: str = "Too many requests, please try again later."

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if self.window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of an admission check.

    Attributes:
        allowed: Whether the request may proceed.
        exempt: True when the exemption predicate matched (counters untouched).
        limit: Max requests per window.
        remaining: Requests left in the current window.
        reset_at: UNIX epoch seconds (rounded up) when the window rolls over.
        window_reset_at: Exact window end, used to release within the same window.
        window_seconds: Window length.
        retry_after_seconds: Suggested wait in seconds when denied.
    """

    allowed: bool
    exempt: bool
    limit: int
    remaining: int
    reset_at: int
    window_reset_at: float
    window_seconds: int
    retry_after_seconds: int | None = None


class AbstractRateLimiter(ABC):
    """Interface for per-client rate limiters."""

    policy: RateLimitPolicy

    @abstractmethod
    def admit(
        self,
        client_key: str,
        *,
        now: float | None = None,
        signals: RequestSignals | None = None,
    ) -> RateLimitDecision:
        """Check and consume one unit of the client's budget.

        Args:
            client_key: Caller identity (e.g., client IP).
            now: Current UNIX time; defaults to the limiter's clock.
            signals: Request metadata for the exemption predicate.

        Returns:
            RateLimitDecision describing whether it was allowed.
        """
        raise NotImplementedError

    @abstractmethod
    def release(self, client_key: str, window_reset_at: float) -> None:
        """Give back one unit consumed in the window ending at ``window_reset_at``."""
        raise NotImplementedError

    @abstractmethod
    def sweep(self, now: float | None = None) -> int:
        """Drop expired window records. Returns the number removed."""
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> dict[str, Any]:
        """Return lightweight counters without exposing client keys."""
        raise NotImplementedError
