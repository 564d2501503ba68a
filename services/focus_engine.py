"""
Focus session engine.

A single actor owns the timer state. Commands, ticks and flush results
arrive as messages on one asyncio queue and are applied strictly in
arrival order, so a reset can never interleave with the phase advance of
a tick. Store writes run as separate tasks and report back through the
same queue. Subscribers are notified synchronously after every applied
change.
"""
import asyncio
import itertools
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional, Set, Tuple

from database.base import PreferencesStore, SessionStore
from models.focus import EngineSnapshot, FocusPreferences, Phase
from services.phase_machine import PhaseStateMachine, validate_break_override
from services.sync_policy import FlushJob, SyncPolicy
from tasks.midnight_reset import MidnightResetScheduler
from utils.clock import local_now
from utils.logging import clear_log_context, get_logger, set_log_context
from utils.tick_source import TickSource

logger = get_logger(__name__)

Listener = Callable[[EngineSnapshot], Any]


@dataclass(frozen=True)
class _Message:
    kind: str
    payload: Any = None


class FocusEngine:
    """
    Pomodoro engine for one user, shared by every screen of the process.

    Args:
        user_id: Owner of preferences and session records
        prefs_store: Preferences adapter
        session_store: Session record adapter
        tick_interval: Real seconds between countdown ticks
        sync_interval: Real seconds between periodic flushes during work
        ticking: Run the tick sources; when False ticks are driven by
            calling ``tick()`` / ``sync_tick()`` directly
        clock: Source of local, timezone-aware "now"
        final_flush_timeout: Seconds ``stop()`` waits for the last flush
    """

    def __init__(
        self,
        user_id: str,
        prefs_store: PreferencesStore,
        session_store: SessionStore,
        *,
        tick_interval: float = 1,
        sync_interval: float = 60,
        ticking: bool = True,
        clock: Callable[[], datetime] = local_now,
        final_flush_timeout: float = 5.0,
    ):
        self.user_id = user_id
        self.prefs_store = prefs_store
        self.session_store = session_store
        self.clock = clock
        self.final_flush_timeout = final_flush_timeout
        # Countdown seconds consumed per tick
        self.tick_seconds = max(1, round(tick_interval))

        self._prefs = FocusPreferences(user_id=user_id)
        self.machine = PhaseStateMachine(self._prefs)
        self.sync = SyncPolicy(session_store, user_id, clock=clock)
        self.midnight = MidnightResetScheduler(
            prefs_store, user_id, on_rollover=self._on_midnight, clock=clock
        )

        self._ticking = ticking
        self._ticker = TickSource(tick_interval, self.tick, name="countdown")
        self._sync_ticker = TickSource(sync_interval, self.sync_tick, name="sync")

        self._queue: asyncio.Queue = asyncio.Queue()
        # Serialises start() and stop() so concurrent callers share one actor
        self._lifecycle_lock = asyncio.Lock()
        self._actor: Optional[asyncio.Task] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

        self._listeners: Dict[int, Listener] = {}
        self._handles = itertools.count(1)
        self._seq = itertools.count(1)

        self._block_id = 0
        self._saved_block_minutes = 0
        self._logged_today_minutes = 0
        self._today: Optional[date] = None

    # === Lifecycle ===

    @property
    def is_started(self) -> bool:
        return self._actor is not None

    async def start(self) -> None:
        """Loads preferences and today's sessions, then starts the actor."""
        async with self._lifecycle_lock:
            if self._actor is not None:
                return
            await self._load_and_launch()
            self._notify()

    async def _load_and_launch(self) -> None:
        prefs = await self.prefs_store.read_preferences(self.user_id)
        try:
            self.machine.set_preferences(prefs)
            self._prefs = prefs
        except ValueError as e:
            logger.warning("Preferences rejected, using defaults", extra={"error": str(e)})

        self._today = self.clock().date()
        sessions = await self.session_store.query_sessions_for_day(self.user_id, self._today)
        self._logged_today_minutes = sum(
            s.duration_minutes for s in sessions if s.phase_type == Phase.WORK
        )

        self._actor = asyncio.create_task(self._run(), name="focus-engine")
        self.midnight.start()
        logger.info(
            "Focus engine started",
            extra={
                "user_id": self.user_id,
                "work_minutes": self._prefs.work_minutes,
                "logged_today_minutes": self._logged_today_minutes,
            },
        )

    async def stop(self) -> None:
        """
        Ends the open block with a best-effort final flush and cancels every
        timer. Time still unsynced when the wait runs out is lost.
        """
        async with self._lifecycle_lock:
            if self._actor is None:
                return
            await self._shutdown()

    async def _shutdown(self) -> None:
        self.save_and_end()
        try:
            await asyncio.wait_for(self.settle(), timeout=self.final_flush_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Final flush did not finish in time",
                extra={"timeout_sec": self.final_flush_timeout},
            )

        await self._ticker.aclose()
        await self._sync_ticker.aclose()
        await self.midnight.stop()

        actor, self._actor = self._actor, None
        actor.cancel()
        leftovers = [actor, *self._background]
        if self._flush_task is not None:
            leftovers.append(self._flush_task)
        for task in leftovers:
            task.cancel()
        await asyncio.gather(*leftovers, return_exceptions=True)
        self._flush_task = None
        logger.info("Focus engine stopped")

    async def settle(self) -> None:
        """Waits until queued messages are applied and no write is in flight."""
        if self._actor is None:
            return
        while True:
            await self._queue.join()
            pending = [t for t in (self._flush_task, *self._background) if t is not None and not t.done()]
            if not pending:
                if self._queue.empty():
                    return
                continue
            await asyncio.gather(*pending, return_exceptions=True)

    # === Commands ===

    def start_work(self) -> None:
        self._post("start_work")

    def pause(self) -> None:
        self._post("pause")

    def resume(self) -> None:
        self._post("resume")

    def reset(self) -> None:
        self._post("reset")

    def save_and_end(self) -> None:
        self._post("save_and_end")

    def tick(self) -> None:
        self._post("tick")

    def sync_tick(self) -> None:
        self._post("sync_tick")

    def set_break_override(self, short_minutes: Optional[int] = None, long_minutes: Optional[int] = None) -> None:
        validate_break_override(short_minutes, long_minutes)
        self._post("break_override", (short_minutes, long_minutes))

    def update_preferences(self, prefs: FocusPreferences) -> None:
        """Applies new durations from the next phase and saves them."""
        prefs.validate()
        self._post("update_preferences", prefs)

    # === Observation ===

    def subscribe(self, listener: Listener) -> int:
        handle = next(self._handles)
        self._listeners[handle] = listener
        return handle

    def unsubscribe(self, handle: int) -> None:
        self._listeners.pop(handle, None)

    def snapshot(self) -> EngineSnapshot:
        state = self.machine.state
        saved = self._saved_block_minutes
        if state.last_sync is None or state.last_sync.date() != self.clock().date():
            # Yesterday's block must not show up on today's dashboard
            saved = 0
        return EngineSnapshot(
            phase=state.phase,
            remaining_seconds=state.remaining_seconds,
            is_paused=state.is_paused,
            last_sync=state.last_sync,
            unflushed_minutes_display=self.machine.pending_seconds // 60,
            completed_work_cycles=state.completed_work_cycles,
            phase_total_seconds=state.phase_total_seconds,
            saved_block_minutes=saved,
            logged_today_minutes=self._logged_today_minutes,
            daily_goal_minutes=self._prefs.daily_goal_minutes,
            sync_stale=self.sync.stale,
        )

    @property
    def phase(self) -> Phase:
        return self.machine.state.phase

    @property
    def remaining_seconds(self) -> int:
        return self.machine.state.remaining_seconds

    @property
    def is_paused(self) -> bool:
        return self.machine.state.is_paused

    @property
    def last_sync(self) -> Optional[datetime]:
        return self.machine.state.last_sync

    @property
    def unflushed_minutes_display(self) -> int:
        """Whole minutes not yet persisted, including time carried over a break."""
        return self.machine.pending_seconds // 60

    @property
    def preferences(self) -> FocusPreferences:
        return self._prefs

    # === Actor ===

    def _post(self, kind: str, payload: Any = None) -> None:
        self._queue.put_nowait(_Message(kind, payload))

    async def _run(self) -> None:
        handlers = {
            "start_work": self._on_start_work,
            "pause": self._on_pause,
            "resume": self._on_resume,
            "reset": self._on_reset,
            "save_and_end": self._on_save_and_end,
            "tick": self._on_tick,
            "sync_tick": self._on_sync_tick,
            "flush_result": self._on_flush_result,
            "break_override": self._on_break_override,
            "update_preferences": self._on_update_preferences,
            "rollover": self._on_rollover,
        }
        while True:
            message = await self._queue.get()
            set_log_context(op_id=f"{message.kind}-{next(self._seq)}", user_id=self.user_id)
            try:
                handler = handlers[message.kind]
                changed = handler(message.payload) if message.payload is not None else handler()
                if changed:
                    self._notify()
            except Exception as e:
                logger.error(
                    "Engine message failed",
                    extra={"kind": message.kind, "error": str(e)},
                    exc_info=True,
                )
            finally:
                clear_log_context()
                self._queue.task_done()

    def _on_start_work(self) -> bool:
        if not self.machine.start_work():
            return False
        self._block_id += 1
        self._saved_block_minutes = 0
        self._update_tickers()
        logger.info("Work block started", extra={"work_minutes": self._prefs.work_minutes})
        return True

    def _on_pause(self) -> bool:
        changed = self.machine.pause()
        if changed:
            logger.info("Paused", extra={"remaining_seconds": self.machine.state.remaining_seconds})
        return changed

    def _on_resume(self) -> bool:
        changed = self.machine.resume()
        if changed:
            logger.info("Resumed", extra={"remaining_seconds": self.machine.state.remaining_seconds})
        return changed

    def _on_reset(self) -> bool:
        closing = self.machine.reset()
        self.sync.close_block(closing, self._block_id)
        # Minutes that land after a reset do not count toward the cleared block
        self._block_id += 1
        self._saved_block_minutes = 0
        self._trigger_flush()
        self._update_tickers()
        logger.info("Timer reset", extra={"closing_seconds": closing})
        return True

    def _on_save_and_end(self) -> bool:
        closing = self.machine.save_and_end()
        if closing is None:
            return False
        self.sync.close_block(closing, self._block_id)
        self._trigger_flush()
        self._update_tickers()
        logger.info("Block saved and ended", extra={"closing_seconds": closing})
        return True

    def _on_tick(self) -> bool:
        outcome = self.machine.on_tick(self.tick_seconds)
        if outcome.ended_work:
            self._trigger_flush()
        if outcome.advanced_to == Phase.WORK:
            self._block_id += 1
            self._saved_block_minutes = 0
        return outcome.changed

    def _on_sync_tick(self) -> bool:
        state = self.machine.state
        if state.phase == Phase.WORK and not state.is_paused:
            self._trigger_flush()
        return False

    def _on_flush_result(self, payload: Tuple[FlushJob, bool]) -> bool:
        job, ok = payload
        self._flush_task = None
        result = self.sync.complete(job, ok)
        if result.ok:
            self.machine.acknowledge_flush(result.acknowledged_seconds, self.sync.last_sync)
            if self._today == self.clock().date():
                self._logged_today_minutes += job.minutes
            if job.block_id == self._block_id:
                self._saved_block_minutes += job.minutes
        if self.sync.take_deferred():
            self._trigger_flush()
        return True

    def _on_break_override(self, payload: Tuple[Optional[int], Optional[int]]) -> bool:
        short_minutes, long_minutes = payload
        self.machine.set_break_override(short_minutes, long_minutes)
        logger.info(
            "Break override set",
            extra={"short_break_minutes": short_minutes, "long_break_minutes": long_minutes},
        )
        return True

    def _on_update_preferences(self, prefs: FocusPreferences) -> bool:
        # lastResetDate belongs to the midnight routine
        prefs = prefs.with_changes(user_id=self.user_id, last_reset_date=self._prefs.last_reset_date)
        self.machine.set_preferences(prefs)
        self._prefs = prefs
        self._spawn(self._save_preferences(prefs))
        return True

    def _on_rollover(self, day: date) -> bool:
        self._today = day
        self._logged_today_minutes = 0
        self._prefs = self._prefs.with_changes(last_reset_date=day)
        logger.info("Day rolled over", extra={"day": day.isoformat()})
        return True

    def _on_midnight(self, day: date) -> None:
        self._post("rollover", day)

    # === Effects ===

    def _trigger_flush(self) -> None:
        job = self.sync.next_job(self.machine.pending_seconds, self._block_id)
        if job is None:
            return
        self._flush_task = asyncio.create_task(self._flush(job))

    async def _flush(self, job: FlushJob) -> None:
        ok = await self.sync.write(job)
        self._post("flush_result", (job, ok))

    async def _save_preferences(self, prefs: FocusPreferences) -> None:
        ok = await self.prefs_store.write_preferences(self.user_id, prefs)
        if not ok:
            logger.warning("Preferences not saved, keeping them in memory")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _update_tickers(self) -> None:
        if not self._ticking:
            return
        if self.machine.state.phase == Phase.IDLE:
            self._ticker.stop()
            self._sync_ticker.stop()
        else:
            self._ticker.start()
            self._sync_ticker.start()

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for handle, listener in list(self._listeners.items()):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error("Listener failed", extra={"handle": handle, "error": str(e)})
