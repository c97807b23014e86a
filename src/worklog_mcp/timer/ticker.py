"""Periodic display refresh for a running timer."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class RefreshTicker:
    """Call ``render(read())`` every ``interval`` seconds while enabled.

    The ticker only reads; it never touches session state. It needs a running event
    loop and stays dormant when enabled outside of one.
    """

    def __init__(
        self,
        read: Callable[[], int],
        render: Callable[[int], None],
        *,
        interval: float = 1.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("Refresh interval must be positive")
        self._read = read
        self._render = render
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def sync(self, running: bool) -> None:
        """Start ticking when ``running`` and stop otherwise."""

        if running:
            self.start()
        else:
            self.stop()

    def start(self) -> None:
        if self.active:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; display refresh stays dormant")
            return
        self._task = loop.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            self._render(self._read())
            await asyncio.sleep(self._interval)


__all__ = ["RefreshTicker"]
