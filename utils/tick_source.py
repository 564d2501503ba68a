"""
Periodic tick source for the focus engine.
Runs as an asyncio task so it never blocks the event loop.
"""
import asyncio
from typing import Any, Callable, Optional

from utils.logging import get_logger

logger = get_logger(__name__)


class TickSource:
    """
    Repeating timer that calls ``callback`` every ``interval`` seconds.

    ``start`` on a running source and ``stop`` on a stopped one do nothing.
    Deadlines are computed from the loop clock, so a slow callback does not
    make the ticks drift.
    """

    def __init__(self, interval: float, callback: Callable[[], Any], name: str = "tick"):
        """
        Args:
            interval: Seconds between ticks (> 0)
            callback: Synchronous function called once per tick
            name: Label used in logs
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None
        # Cancelled by stop() but not yet awaited
        self._last_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.is_running:
            return False
        self._task = asyncio.create_task(self._run(), name=f"tick-source-{self.name}")
        logger.debug("Tick source started", extra={"source": self.name, "interval_sec": self.interval})
        return True

    def stop(self) -> bool:
        if not self.is_running:
            self._task = None
            return False
        self._task.cancel()
        self._last_task, self._task = self._task, None
        logger.debug("Tick source stopped", extra={"source": self.name})
        return True

    async def aclose(self) -> None:
        """Stops the source and waits for the cancelled task to finish."""
        self.stop()
        task, self._last_task = self._last_task, None
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time() + self.interval
        try:
            while True:
                await asyncio.sleep(max(0.0, next_at - loop.time()))
                next_at += self.interval
                try:
                    self.callback()
                except Exception as e:
                    # A failing callback must not end the tick stream
                    logger.error(
                        "Tick callback failed",
                        extra={"source": self.name, "error": str(e)},
                        exc_info=True,
                    )
        except asyncio.CancelledError:
            logger.debug("Tick source cancelled", extra={"source": self.name})
            raise
