from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable

from .events import open_events
from .lifecycle import CancellationToken
from .models import Event

logger = logging.getLogger(__name__)

ROTATION_INTERVAL_SECONDS = 4.0


class TickerController:
    """Rotating highlight over the currently open events.

    ``update`` is called with every events snapshot. The cached list and the
    rotation task are only replaced when the number of open events changes;
    with zero or one open event there is no rotation and the index stays 0.
    Must be driven from the event loop that runs the rotation task.
    """

    def __init__(
        self,
        interval: float = ROTATION_INTERVAL_SECONDS,
        on_tick: Callable[[], None] | None = None,
        token: CancellationToken | None = None,
    ):
        self.interval = interval
        self.events: list[Event] = []
        self.index = 0
        self._on_tick = on_tick
        self._token = token or CancellationToken()
        self._task: asyncio.Task | None = None

    @property
    def rotating(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def current(self) -> Event | None:
        if not self.events:
            return None
        return self.events[self.index]

    def update(self, events: Iterable[Event], now: datetime) -> bool:
        """Returns True when the cached list was replaced."""
        if self._token.cancelled:
            return False

        visible = open_events(events, now)
        if len(visible) == len(self.events):
            return False

        self.events = visible
        self._stop()
        if len(visible) > 1:
            # The list may have shrunk under the current index.
            self.index %= len(visible)
            self._task = asyncio.get_running_loop().create_task(self._rotate())
        else:
            self.index = 0
        logger.debug(f"Ticker now covers {len(visible)} open events")
        return True

    def advance(self) -> None:
        if self._token.cancelled or len(self.events) < 2:
            return
        self.index = (self.index + 1) % len(self.events)
        if self._on_tick is not None:
            self._on_tick()

    async def _rotate(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self._token.cancelled:
                return
            self.advance()

    def _stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def dispose(self) -> None:
        self._stop()
