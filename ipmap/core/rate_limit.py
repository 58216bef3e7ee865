"""Rate limiting dependencies for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: API routes depend on a dependency factory only.
- Swap-friendly: storage backend can be replaced (e.g., Redis) behind an
  abstract interface.
- One policy per route family (``api``, ``search``, ``export``).

Rate limiting strategy:
- Fixed window per client, keyed by the client IP taken from proxy headers.
- First-party callers are exempted by an advisory header heuristic.
- Every counted response carries X-RateLimit-* headers; denials are 429.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, AsyncIterator, Callable, Mapping
from urllib.parse import urlsplit

from fastapi import Request, Response

from ipmap.adapters.rate_limit.base import AbstractRateLimiter, RateLimitDecision, RateLimitPolicy
from ipmap.adapters.rate_limit.exemption import (
    ExemptionPredicate,
    RequestSignals,
    default_exemption_predicate,
)
from ipmap.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from ipmap.core.config import parse_csv, settings
from ipmap.core.errors import RateLimitExceededError

logger = logging.getLogger(__name__)


UNKNOWN_CLIENT = "unknown"

POLICY_API = "api"
POLICY_SEARCH = "search"
POLICY_EXPORT = "export"


_limiters: dict[str, AbstractRateLimiter] | None = None
_limiters_config: tuple[Any, ...] | None = None


def _current_config() -> tuple[Any, ...]:
    rl = settings.rate_limit
    return (
        rl.api_requests,
        rl.api_window_seconds,
        rl.search_requests,
        rl.search_window_seconds,
        rl.export_requests,
        rl.export_window_seconds,
        rl.internal_header,
        rl.internal_hosts,
        rl.internal_user_agents,
        rl.external_tool_signatures,
        settings.app.public_base_url,
    )


def build_policies() -> dict[str, RateLimitPolicy]:
    """Build the route policies from settings."""

    rl = settings.rate_limit
    return {
        POLICY_API: RateLimitPolicy(
            name=POLICY_API,
            max_requests=rl.api_requests,
            window_seconds=rl.api_window_seconds,
            message="Too many API requests. Please try again later.",
        ),
        POLICY_SEARCH: RateLimitPolicy(
            name=POLICY_SEARCH,
            max_requests=rl.search_requests,
            window_seconds=rl.search_window_seconds,
            message="Too many search requests. Please slow down.",
        ),
        POLICY_EXPORT: RateLimitPolicy(
            name=POLICY_EXPORT,
            max_requests=rl.export_requests,
            window_seconds=rl.export_window_seconds,
            message="Too many export requests. Please wait before requesting another export.",
        ),
    }


def build_exemption_predicate() -> ExemptionPredicate:
    """Build the default first-party heuristic from settings.

    Advisory only: every signal it reads can be forged by a client.
    """

    rl = settings.rate_limit
    hosts = parse_csv(rl.internal_hosts)
    if settings.app.public_base_url:
        public_host = urlsplit(settings.app.public_base_url).hostname
        if public_host:
            hosts.append(public_host)

    return default_exemption_predicate(
        internal_header=rl.internal_header,
        internal_hosts=hosts,
        internal_user_agents=parse_csv(rl.internal_user_agents),
        external_tool_signatures=parse_csv(rl.external_tool_signatures),
    )


def get_rate_limiters() -> dict[str, AbstractRateLimiter]:
    """Return the process-wide limiters, one per policy.

    The instances are cached in-module to preserve state across requests.
    If configuration changes (primarily in tests), the limiters are rebuilt.

    Returns:
        dict mapping policy name to its limiter.
    """

    global _limiters, _limiters_config

    config = _current_config()
    if _limiters is None or _limiters_config != config:
        exemption = build_exemption_predicate()
        _limiters = {
            name: InMemoryFixedWindowRateLimiter(policy, exemption=exemption)
            for name, policy in build_policies().items()
        }
        _limiters_config = config

    return _limiters


def get_rate_limiter(policy_name: str) -> AbstractRateLimiter:
    return get_rate_limiters()[policy_name]


def reset_rate_limiters() -> None:
    """Forget all counters (tests and operators)."""

    global _limiters, _limiters_config
    _limiters = None
    _limiters_config = None


def sweep_rate_limiters() -> int:
    """Drop expired windows from every limiter."""

    if _limiters is None:
        return 0
    removed = sum(limiter.sweep() for limiter in _limiters.values())
    if removed:
        logger.info("rate_limit.swept", extra={"removed": removed})
    return removed


def client_key_from_headers(headers: Mapping[str, str]) -> str:
    """Identify the caller from proxy headers.

    Priority: first hop of X-Forwarded-For, X-Real-IP, CF-Connecting-IP.
    Unidentifiable callers share the ``"unknown"`` bucket.
    """

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    for header in ("x-real-ip", "cf-connecting-ip"):
        value = (headers.get(header) or "").strip()
        if value:
            return value

    return UNKNOWN_CLIENT


def _hash_limiter_key(key: str) -> str:
    """Hash the client key for logging without exposing addresses."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


def build_rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at),
        "X-RateLimit-Window": str(decision.window_seconds),
    }
    if not decision.allowed and decision.retry_after_seconds is not None:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def _request_origin(request: Request) -> str:
    return f"{request.url.scheme}://{request.url.netloc}"


def rate_limited(policy_name: str) -> Callable[..., AsyncIterator[None]]:
    """Build a dependency enforcing the named policy.

    The dependency consumes one unit before the handler runs and, for
    policies that skip successful or failed requests, gives it back once the
    handler's outcome is known. A request failed when the handler raised or
    set a status of 400 or above on the injected response.

    Args:
        policy_name: One of the configured policies.

    Returns:
        An async generator dependency for ``Depends``.
    """

    async def enforce_rate_limit(request: Request, response: Response) -> AsyncIterator[None]:
        if not settings.rate_limit.enabled:
            yield
            return

        limiter = get_rate_limiter(policy_name)
        key = client_key_from_headers(request.headers)
        signals = RequestSignals.from_headers(request.headers, request_origin=_request_origin(request))
        decision = limiter.admit(key, signals=signals)

        if decision.exempt:
            yield
            return

        log_extra = {
            "policy": policy_name,
            "key_hash": _hash_limiter_key(key),
            "limit": decision.limit,
            "remaining": decision.remaining,
            "window_s": decision.window_seconds,
        }

        headers = build_rate_limit_headers(decision) if settings.rate_limit.include_headers else {}
        # Error responses pick these up in the exception handlers.
        request.state.rate_limit_headers = headers

        if not decision.allowed:
            retry_after = decision.retry_after_seconds or 0
            logger.warning("rate_limit.exceeded", extra={**log_extra, "retry_after_s": retry_after})
            raise RateLimitExceededError(
                code="rate_limit_exceeded",
                message=limiter.policy.message,
                details={
                    "retry_after": retry_after,
                    "limit": decision.limit,
                    "window_seconds": decision.window_seconds,
                },
            )

        logger.info("rate_limit.allowed", extra=log_extra)
        for name, value in headers.items():
            response.headers[name] = value

        policy = limiter.policy
        failed = False
        try:
            yield
            # Only a status set on the injected response is visible here; a
            # handler returning its own Response object is counted as a success.
            failed = response.status_code is not None and response.status_code >= 400
        except Exception:
            failed = True
            raise
        finally:
            if (failed and policy.skip_failed_requests) or (
                not failed and policy.skip_successful_requests
            ):
                limiter.release(key, decision.window_reset_at)

    return enforce_rate_limit
