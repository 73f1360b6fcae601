"""
saticiyiz.services.drafts — Markdown Draft Autosave
====================================================

While an editor is open, its content is written to client-local storage
under one fixed key every ``interval`` seconds, overwriting the previous
draft.  Only one draft exists at a time.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from saticiyiz.storage import KeyValueStorage

logger = logging.getLogger(__name__)


class DraftAutosaver:
    """Timer-driven draft persistence for one editor."""

    def __init__(self, storage: KeyValueStorage, key: str, interval: float = 30.0) -> None:
        self._storage = storage
        self._key = key
        self._interval = interval
        self._get_content: Callable[[], str] | None = None
        self._task: asyncio.Task | None = None
        self._last_saved: str | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, get_content: Callable[[], str]) -> None:
        """Begin autosaving whatever *get_content* returns."""
        self._get_content = get_content
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.save_now()
            except OSError:
                logger.exception("Draft autosave failed")

    def save_now(self, content: str | None = None) -> bool:
        """Write the draft if it changed; True when something was written."""
        if content is None:
            if self._get_content is None:
                return False
            content = self._get_content()
        if content == self._last_saved:
            return False
        self._storage.set_item(self._key, content)
        self._last_saved = content
        return True

    def load(self) -> str | None:
        return self._storage.get_item(self._key)

    def clear(self) -> None:
        self._storage.remove_item(self._key)
        self._last_saved = None

    async def stop(self, *, flush: bool = True) -> None:
        """Cancel the timer, optionally writing the current content first."""
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        if flush:
            self.save_now()
