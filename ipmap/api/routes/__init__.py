from __future__ import annotations

from ipmap.api.routes.health import router as health_router
from ipmap.api.routes.ip_ranges import router as ip_ranges_router
from ipmap.api.routes.operations import router as operations_router

__all__ = ["health_router", "ip_ranges_router", "operations_router"]
