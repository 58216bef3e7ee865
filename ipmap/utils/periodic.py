"""Fixed-period background job running on the event loop."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Run a callable now and then every ``interval_seconds``.

    The job runs in an asyncio task owned by this object. Errors raised by
    the job are logged and do not stop the schedule.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any] | Any],
        interval_seconds: float,
        *,
        run_immediately: bool = True,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")

        self.name = name
        self.interval_seconds = interval_seconds
        self._func = func
        self._run_immediately = run_immediately
        self._task: asyncio.Task[None] | None = None

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return f"PeriodicTask(name={self.name!r}, interval_seconds={self.interval_seconds}, running={self.running})"

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        """Start the loop on the running event loop; no-op if already running."""
        if self._task is not None and not self._task.done():
            logger.info("periodic.already_running", extra={"job": self.name})
            return self._task

        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)
        logger.info(
            "periodic.started",
            extra={"job": self.name, "interval_s": self.interval_seconds},
        )
        return self._task

    async def stop(self) -> None:
        """Cancel the loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("periodic.stopped", extra={"job": self.name})

    async def run_once(self) -> None:
        try:
            result = self._func()
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "periodic.job_failed",
                extra={
                    "job": self.name,
                    "error_type": type(exc).__name__,
                    "error_msg": str(exc),
                },
            )

    async def _loop(self) -> None:
        if self._run_immediately:
            await self.run_once()
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()
