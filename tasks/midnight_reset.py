import asyncio
from datetime import date, datetime
from typing import Any, Callable, Optional

from database.base import PreferencesStore
from utils.clock import local_now, seconds_until_midnight
from utils.logging import clear_log_context, get_logger, set_log_context

logger = get_logger(__name__)

# Sleep wakeups can land a hair early; fire just after midnight instead
MIDNIGHT_SLACK_SEC = 1.0


class MidnightResetScheduler:
    """
    One-shot timer to the next local midnight, re-armed after every firing.

    On each midnight it records ``lastResetDate`` and calls ``on_rollover``.
    It never touches a running focus block. ``start`` is idempotent: a
    second request while running is ignored, not queued.
    """

    def __init__(
        self,
        prefs_store: PreferencesStore,
        user_id: str,
        on_rollover: Optional[Callable[[date], Any]] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.prefs_store = prefs_store
        self.user_id = user_id
        self.on_rollover = on_rollover
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        if self.is_running:
            logger.info("Midnight reset already scheduled, request ignored")
            return False
        self._task = asyncio.create_task(self._run(), name="midnight-reset")
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Midnight reset scheduler stopped")

    async def run_once(self) -> bool:
        """Marks today as the last reset day and notifies the owner."""
        today = self.clock().date()
        ok = await self.prefs_store.write_last_reset_date(self.user_id, today)
        if not ok:
            logger.warning("Last reset date not saved", extra={"day": today.isoformat()})
        if self.on_rollover is not None:
            try:
                self.on_rollover(today)
            except Exception as e:
                logger.error("Rollover callback failed", extra={"error": str(e)})
        return ok

    async def _run(self) -> None:
        logger.info("Midnight reset scheduler started")
        while True:
            delay = seconds_until_midnight(self.clock())
            logger.debug("Next midnight reset armed", extra={"delay_sec": round(delay, 1)})
            await asyncio.sleep(delay + MIDNIGHT_SLACK_SEC)

            try:
                set_log_context(op_id=f"midnight-{self.clock().date().isoformat()}", user_id=self.user_id)
                await self.run_once()
            except Exception as e:
                logger.error("Midnight reset failed", extra={"error": str(e)})
            finally:
                clear_log_context()
