"""Batch stopwatch with an optional display ticker."""

import asyncio
import time
from collections.abc import Callable


class BatchTimer:
    """Monotonic stopwatch for one batch.

    ``restart`` zeroes and starts it, ``pause`` freezes it. The ticker is a
    repeating asyncio task that reports the elapsed time to a display
    callback until it is stopped.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._started_at: float | None = None
        self._frozen_ms = 0
        self._ticker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._started_at is not None

    @property
    def elapsed_ms(self) -> int:
        if self._started_at is None:
            return self._frozen_ms
        return int((self._clock() - self._started_at) * 1000)

    def restart(self) -> None:
        self._frozen_ms = 0
        self._started_at = self._clock()

    def pause(self) -> int:
        """Freeze the stopwatch and return the elapsed milliseconds."""
        self._frozen_ms = self.elapsed_ms
        self._started_at = None
        return self._frozen_ms

    def start_ticker(self, on_tick: Callable[[int], None], interval: float = 0.1) -> asyncio.Task:
        """Call ``on_tick(elapsed_ms)`` every ``interval`` seconds while running.

        Must be called from inside a running event loop. Replaces any
        ticker already running.
        """
        self.stop_ticker()
        self._ticker = asyncio.get_running_loop().create_task(self._tick(on_tick, interval))
        return self._ticker

    def stop_ticker(self) -> None:
        if self._ticker is not None and not self._ticker.done():
            self._ticker.cancel()
        self._ticker = None

    async def _tick(self, on_tick: Callable[[int], None], interval: float) -> None:
        while True:
            if self.running:
                on_tick(self.elapsed_ms)
            await asyncio.sleep(interval)
