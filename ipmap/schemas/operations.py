"""Pydantic schemas for operational endpoints."""

from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, Field


class TriggerResponse(BaseModel):
    """Result of a manual sync."""

    success: bool = Field(..., description="False only if the sync run itself raised.")
    message: str
    timestamp: str


class StatusResponse(BaseModel):
    """Diagnostic view of the cache, the synchronizer and the limiters."""

    cache: Dict[str, Any] = Field(..., description="Which tier answers and how stale it is.")
    sync: Dict[str, Any] = Field(..., description="Synchronizer state and last outcome.")
    rate_limits: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-policy counters (no client identities).",
    )
    timestamp: str
