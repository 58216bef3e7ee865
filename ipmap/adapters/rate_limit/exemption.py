"""Heuristics deciding whether a caller bypasses rate limiting.

These checks only look at request headers, which any client can forge. They
are an advisory convenience to avoid throttling the service's own pages, NOT
a security boundary. Do not use them to protect anything.

Predicates are plain callables over ``RequestSignals`` and compose with
``any_of``; routes can swap the default for ``never_exempt`` or their own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping
from urllib.parse import urlsplit


@dataclass(frozen=True)
class RequestSignals:
    """Request metadata used by exemption predicates.

    Attributes:
        headers: Request headers with lower-cased names.
        request_origin: ``scheme://host[:port]`` the request was addressed to.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    request_origin: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], request_origin: str | None = None) -> "RequestSignals":
        return cls(
            headers={k.lower(): v for k, v in headers.items()},
            request_origin=request_origin,
        )

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @property
    def declared_origin(self) -> str | None:
        return self.header("origin") or self.header("referer")

    @property
    def user_agent(self) -> str:
        return self.header("user-agent") or ""


ExemptionPredicate = Callable[[RequestSignals], bool]


def _origin_of(url: str) -> tuple[str, str] | None:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}".lower(), (parts.hostname or "").lower()


def never_exempt(signals: RequestSignals) -> bool:
    return False


def has_internal_marker(header_name: str = "X-Internal-Request") -> ExemptionPredicate:
    """Exempt requests carrying ``<header_name>: true``."""

    def predicate(signals: RequestSignals) -> bool:
        return (signals.header(header_name) or "").strip().lower() == "true"

    return predicate


def origin_in_allow_list(internal_hosts: Iterable[str] = ()) -> ExemptionPredicate:
    """Exempt requests whose Origin/Referer is this service or an allowed host."""

    hosts = [h.lower() for h in internal_hosts if h]

    def predicate(signals: RequestSignals) -> bool:
        declared = signals.declared_origin
        if not declared:
            return False
        parsed = _origin_of(declared)
        if parsed is None:
            return False
        origin, hostname = parsed
        if signals.request_origin and origin == signals.request_origin.lower():
            return True
        return any(host in hostname for host in hosts)

    return predicate


def user_agent_contains(signatures: Iterable[str]) -> ExemptionPredicate:
    """Exempt requests whose User-Agent contains an internal tooling signature."""

    needles = [s for s in signatures if s]

    def predicate(signals: RequestSignals) -> bool:
        agent = signals.user_agent
        return any(needle in agent for needle in needles)

    return predicate


def lacks_external_indicators(external_tool_signatures: Iterable[str] = ("curl", "Postman")) -> ExemptionPredicate:
    """Exempt requests with no Origin/Referer and no known external-tool User-Agent.

    Deliberately permissive: same-origin page loads often send neither.
    """

    needles = [s for s in external_tool_signatures if s]

    def predicate(signals: RequestSignals) -> bool:
        if signals.declared_origin:
            return False
        agent = signals.user_agent
        return not any(needle in agent for needle in needles)

    return predicate


def any_of(*predicates: ExemptionPredicate) -> ExemptionPredicate:
    def predicate(signals: RequestSignals) -> bool:
        return any(p(signals) for p in predicates)

    return predicate


def default_exemption_predicate(
    *,
    internal_header: str = "X-Internal-Request",
    internal_hosts: Iterable[str] = ("localhost", "127.0.0.1"),
    internal_user_agents: Iterable[str] = ("IPMap/", "Next.js", "node-fetch"),
    external_tool_signatures: Iterable[str] = ("curl", "Postman"),
) -> ExemptionPredicate:
    """Build the default first-party heuristic.

    A caller is exempt if any of these hold:
    - it sends the internal marker header set to ``true``;
    - its Origin/Referer is this service or an allow-listed host;
    - its User-Agent matches internal tooling;
    - it sends no Origin/Referer and no external-tool User-Agent.
    """

    return any_of(
        has_internal_marker(internal_header),
        origin_in_allow_list(list(internal_hosts)),
        user_agent_contains(list(internal_user_agents)),
        lacks_external_indicators(list(external_tool_signatures)),
    )
