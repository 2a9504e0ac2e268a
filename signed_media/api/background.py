"""Bounded fire-and-forget execution for cache write-backs.

Callers hand over a coroutine and move on. The outcome is only observed
through logging: failures are reported by the task's done-callback, never
raised back into the caller. At most ``max_in_flight`` writes run at once;
a write submitted past the cap is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from signed_media.shared import MAX_BACKGROUND_WRITES

log = logging.getLogger(__name__)


class BackgroundWriter:
    def __init__(self, max_in_flight: int = MAX_BACKGROUND_WRITES) -> None:
        self.max_in_flight = max_in_flight
        self._tasks: set[asyncio.Task[Any]] = set()
        self.dropped = 0
        self.failed = 0

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], description: str) -> bool:
        """Start *coro* detached. Returns False if it was dropped at the cap."""
        if len(self._tasks) >= self.max_in_flight:
            coro.close()
            self.dropped += 1
            log.warning(f"Background write dropped ({self.max_in_flight} in flight): {description}")
            return False
        task = asyncio.get_running_loop().create_task(coro, name=f"bg:{description}")
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(t, description))
        return True

    def _on_done(self, task: asyncio.Task[Any], description: str) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            log.debug(f"Background write cancelled: {description}")
            return
        exc = task.exception()
        if exc is not None:
            self.failed += 1
            log.warning(f"Background write failed: {description}: {exc}")

    async def drain(self) -> None:
        """Wait for every in-flight write (shutdown, tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
