"""
saticiyiz.services.side_effects — Best-Effort Task Queue
=========================================================

Side effects that must never fail or delay the action that triggered them
(like notifications, mention notifications, comment notifications) are
submitted here instead of being awaited inline::

    queue.submit(notifications.create_like_notification(...), label="like-notify")

Each job runs as its own task.  A failure is logged and counted, and is
not surfaced to the submitter.  ``drain()`` waits for everything
submitted so far, which is what tests and shutdown use.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BestEffortQueue:
    """Fire-and-forget task set with failure logging."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self.failures = 0
        self.completed = 0

    def submit(self, coro: Coroutine[Any, Any, Any], *, label: str = "side-effect") -> asyncio.Task | None:
        """Schedule *coro* on the running loop; returns the task."""
        if self._closed:
            logger.warning("Side effect %r dropped, queue is closed", label)
            coro.close()
            return None
        task = asyncio.get_running_loop().create_task(self._guard(coro, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Coroutine[Any, Any, Any], label: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.debug("Side effect %r cancelled", label)
            raise
        except Exception:
            self.failures += 1
            logger.exception("Side effect %r failed", label)
        else:
            self.completed += 1

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every submitted job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self, *, timeout: float = 5.0) -> None:
        """Stop accepting jobs, wait up to *timeout*, cancel stragglers."""
        self._closed = True
        if not self._tasks:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except TimeoutError:
            stragglers = list(self._tasks)
            logger.warning("Cancelling %d unfinished side effects", len(stragglers))
            for task in stragglers:
                task.cancel()
            await asyncio.gather(*stragglers, return_exceptions=True)
