"""
Pomodoro phase state machine.

Pure in-memory logic: no timers, no I/O. The engine feeds it commands and
ticks one at a time and turns the returned outcomes into persistence work.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from models.focus import EngineState, FocusPreferences, Phase
from utils.logging import get_logger

logger = get_logger(__name__)


def validate_break_override(short_minutes: Optional[int], long_minutes: Optional[int]) -> None:
    for value in (short_minutes, long_minutes):
        if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value <= 0):
            raise ValueError(f"break override must be a positive integer, got {value!r}")


@dataclass(frozen=True)
class TickOutcome:
    """What a single tick did to the state."""
    changed: bool = False
    advanced_from: Optional[Phase] = None
    advanced_to: Optional[Phase] = None

    @property
    def ended_work(self) -> bool:
        return self.advanced_from == Phase.WORK


class PhaseStateMachine:
    """
    Owns ``EngineState`` and applies the Idle -> Work -> Break -> Work cycle.

    Calls that make no sense in the current state are ignored rather than
    rejected, because UI state may briefly lag behind the engine.
    """

    def __init__(self, prefs: FocusPreferences):
        self.prefs = prefs.validate()
        self.state = EngineState()
        self._short_break_override: Optional[int] = None
        self._long_break_override: Optional[int] = None

    # === Queries ===

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def pending_seconds(self) -> int:
        """Work seconds accrued but not yet acknowledged as persisted."""
        return self.state.unflushed_seconds + self.state.carried_seconds

    def configured_seconds(self, phase: Phase) -> int:
        """Length of ``phase`` if it were entered now."""
        if phase == Phase.SHORT_BREAK and self._short_break_override:
            return self._short_break_override * 60
        if phase == Phase.LONG_BREAK and self._long_break_override:
            return self._long_break_override * 60
        return self.prefs.minutes_for(phase) * 60

    # === Commands ===

    def start_work(self) -> bool:
        if self.state.phase != Phase.IDLE:
            logger.debug("start_work ignored", extra={"phase": self.state.phase.value})
            return False
        self._enter(Phase.WORK)
        self.state.is_paused = False
        return True

    def pause(self) -> bool:
        if self.state.phase == Phase.IDLE or self.state.is_paused:
            logger.debug("pause ignored", extra={"phase": self.state.phase.value})
            return False
        self.state.is_paused = True
        return True

    def resume(self) -> bool:
        if self.state.phase == Phase.IDLE or not self.state.is_paused:
            logger.debug("resume ignored", extra={"phase": self.state.phase.value})
            return False
        self.state.is_paused = False
        return True

    def reset(self) -> int:
        """
        Returns to Idle from any state.

        Returns:
            The pending work seconds at the moment of reset, which the
            caller hands to the sync policy as the closing block.
            ``completed_work_cycles`` is kept.
        """
        closing = self.pending_seconds
        self.state.phase = Phase.IDLE
        self.state.remaining_seconds = 0
        self.state.phase_total_seconds = 0
        self.state.unflushed_seconds = 0
        self.state.carried_seconds = 0
        self.state.is_paused = False
        self._short_break_override = None
        self._long_break_override = None
        return closing

    def save_and_end(self) -> Optional[int]:
        """Same transition as ``reset``; ignored while Idle (returns None)."""
        if self.state.phase == Phase.IDLE:
            logger.debug("save_and_end ignored", extra={"phase": Phase.IDLE.value})
            return None
        return self.reset()

    def on_tick(self, seconds: int = 1) -> TickOutcome:
        if self.state.phase == Phase.IDLE or self.state.is_paused or seconds <= 0:
            return TickOutcome()

        elapsed = min(seconds, self.state.remaining_seconds)
        self.state.remaining_seconds -= elapsed
        if self.state.phase == Phase.WORK:
            self.state.unflushed_seconds += elapsed

        if self.state.remaining_seconds > 0:
            return TickOutcome(changed=True)

        expired = self.state.phase
        next_phase = self._advance()
        return TickOutcome(changed=True, advanced_from=expired, advanced_to=next_phase)

    def acknowledge_flush(self, seconds: int, at: datetime) -> None:
        """Subtract persisted seconds, oldest (carried) first."""
        from_carried = min(seconds, self.state.carried_seconds)
        self.state.carried_seconds -= from_carried
        rest = seconds - from_carried
        self.state.unflushed_seconds = max(0, self.state.unflushed_seconds - rest)
        self.state.last_sync = at

    def set_preferences(self, prefs: FocusPreferences) -> None:
        """New durations apply from the next phase entry; the running phase keeps its length."""
        self.prefs = prefs.validate()

    def set_break_override(self, short_minutes: Optional[int], long_minutes: Optional[int]) -> None:
        """Session-only break lengths, read when each break begins."""
        validate_break_override(short_minutes, long_minutes)
        self._short_break_override = short_minutes
        self._long_break_override = long_minutes

    # === Internals ===

    def _advance(self) -> Phase:
        expired = self.state.phase
        if expired == Phase.WORK:
            # Whole minutes go out with the next flush; the sub-minute part
            # waits for the next work block.
            self.state.carried_seconds += self.state.unflushed_seconds
            self.state.unflushed_seconds = 0
            self.state.completed_work_cycles += 1
            if self.state.completed_work_cycles % self.prefs.long_break_interval_cycles == 0:
                next_phase = Phase.LONG_BREAK
            else:
                next_phase = Phase.SHORT_BREAK
        else:
            next_phase = Phase.WORK

        self._enter(next_phase)
        logger.info(
            "Phase advanced",
            extra={
                "from_phase": expired.value,
                "to_phase": next_phase.value,
                "completed_work_cycles": self.state.completed_work_cycles,
            },
        )
        return next_phase

    def _enter(self, phase: Phase) -> None:
        total = self.configured_seconds(phase)
        self.state.phase = phase
        self.state.phase_total_seconds = total
        self.state.remaining_seconds = total
        if phase == Phase.WORK:
            self.state.unflushed_seconds = self.state.carried_seconds
            self.state.carried_seconds = 0
        else:
            self.state.unflushed_seconds = 0
