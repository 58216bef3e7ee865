"""Run one sync and exit, for cron jobs and other external schedulers.

Usage:
    python -m ipmap.sync_job
"""

from __future__ import annotations

import asyncio
import logging
import sys

from ipmap.core.config import settings
from ipmap.core.dependencies import get_sync_controller
from ipmap.core.logging import configure_logging

logger = logging.getLogger(__name__)


async def _run() -> int:
    outcome = await get_sync_controller().run_sync()
    return 1 if outcome.status == "failed" else 0


def main() -> int:
    configure_logging(settings.log)
    return asyncio.run(_run())


if __name__ == "__main__":
    sys.exit(main())
