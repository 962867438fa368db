"""Detached background work that outlives the request that started it."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine

logger = logging.getLogger(__name__)


class BackgroundJobRunner:
    """Spawn fire-and-forget jobs and keep them alive until they finish.

    The event loop only holds weak references to tasks, so the runner keeps
    each one until it completes. Failures are logged from a done-callback;
    nothing is reported back to the request that spawned the job.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def active(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.info("Started background job %s (%d active)", name, len(self._tasks))
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background job %s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background job %s failed",
                task.get_name(),
                exc_info=(type(exc), exc, exc.__traceback__),
            )
        else:
            logger.info("Background job %s finished", task.get_name())

    async def drain(self, timeout: float = 30.0) -> None:
        """Wait for in-flight jobs, cancelling whatever is still running at the deadline."""

        if not self._tasks:
            return
        pending = set(self._tasks)
        logger.info("Waiting for %d background job(s) to finish", len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(
                "Cancelled %d background job(s) still running at shutdown",
                len(still_running),
            )
            await asyncio.gather(*still_running, return_exceptions=True)


__all__ = ["BackgroundJobRunner"]
