"""
Cancellable one-shot timer for coalescing saves.

arm() (re)schedules the callback, cancel() drops it, fire_now() runs it
immediately. Requires a running asyncio loop to arm; without one the timer
stays idle and the caller is expected to flush explicitly.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class DebounceTimer:
    def __init__(self, callback: Callable[[], Awaitable[None]]):
        self._callback = callback
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self, delay: float) -> bool:
        """
        Schedule the callback `delay` seconds from now, replacing any pending one.

        Returns:
            False if there is no running event loop to schedule on.
        """
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; timer left idle")
            return False
        self._handle = loop.call_later(delay, self._fire)
        return True

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def fire_now(self) -> None:
        self.cancel()
        await self._callback()

    async def wait(self) -> None:
        """Wait for a callback that has already started from the timer."""
        if self._task is not None and not self._task.done():
            await self._task

    def _fire(self) -> None:
        self._handle = None
        self._task = asyncio.get_running_loop().create_task(self._callback())
