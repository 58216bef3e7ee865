"""OpenAPI customization for rate-limit and availability responses.

Data endpoints share two documented failure shapes: 429 when a client runs
out of budget and 503 before the first sync has landed. They are declared
once as reusable components and referenced from every gated operation.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMIT_HEADERS = {
    "X-RateLimit-Limit": {"description": "Requests allowed per window", "schema": {"type": "integer"}},
    "X-RateLimit-Remaining": {"description": "Requests left in the current window", "schema": {"type": "integer"}},
    "X-RateLimit-Reset": {"description": "Unix time when the window resets", "schema": {"type": "integer"}},
    "X-RateLimit-Window": {"description": "Window length in seconds", "schema": {"type": "integer"}},
}

_ERROR_SCHEMA = {
    "type": "object",
    "properties": {
        "error": {
            "type": "object",
            "properties": {
                "code": {"type": "string"},
                "message": {"type": "string"},
                "request_id": {"type": "string"},
                "details": {"type": "object"},
            },
        }
    },
}

_GATED_PREFIXES = ("/v1/ip-ranges", "/v1/status", "/v1/sync")


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation with shared responses and tags.

    - Adds ``RateLimitExceeded`` (429) and ``ServiceUnavailable`` (503)
      response components
    - References them from every rate-limited operation
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        responses = components.setdefault("responses", {})
        responses.setdefault(
            "RateLimitExceeded",
            {
                "description": "Rate limit exceeded; retry after the indicated delay.",
                "headers": {
                    "Retry-After": {"description": "Seconds to wait", "schema": {"type": "integer"}},
                    **_RATE_LIMIT_HEADERS,
                },
                "content": {"application/json": {"schema": _ERROR_SCHEMA}},
            },
        )
        responses.setdefault(
            "ServiceUnavailable",
            {
                "description": "No snapshot synced yet; retry after the indicated delay.",
                "headers": {
                    "Retry-After": {"description": "Seconds to wait", "schema": {"type": "integer"}},
                },
                "content": {"application/json": {"schema": _ERROR_SCHEMA}},
            },
        )

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {"name": "IP Ranges", "description": "Read, search and export AWS IP ranges."},
            {"name": "Operations", "description": "Manual sync and diagnostics."},
            {"name": "Health", "description": "Liveness and readiness checks."},
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        for path, methods in schema.get("paths", {}).items():
            if not path.startswith(_GATED_PREFIXES):
                continue
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                op_responses = method_obj.setdefault("responses", {})
                op_responses.setdefault("429", {"$ref": "#/components/responses/RateLimitExceeded"})
                if path.startswith("/v1/ip-ranges"):
                    op_responses.setdefault("503", {"$ref": "#/components/responses/ServiceUnavailable"})

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
