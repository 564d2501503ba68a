from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional


class Phase(str, Enum):
    """Segments of the Pomodoro cycle."""
    IDLE = "idle"
    WORK = "work"
    SHORT_BREAK = "short_break"
    LONG_BREAK = "long_break"

    @property
    def is_break(self) -> bool:
        return self in (Phase.SHORT_BREAK, Phase.LONG_BREAK)


DEFAULT_WORK_MINUTES = 25
DEFAULT_SHORT_BREAK_MINUTES = 5
DEFAULT_LONG_BREAK_MINUTES = 15
DEFAULT_LONG_BREAK_INTERVAL = 4
DEFAULT_DAILY_GOAL_MINUTES = 240


@dataclass(frozen=True)
class FocusPreferences:
    """Per-user durations stored in ``users/{uid}/focusPrefs/prefs``."""

    user_id: str
    work_minutes: int = DEFAULT_WORK_MINUTES
    short_break_minutes: int = DEFAULT_SHORT_BREAK_MINUTES
    long_break_minutes: int = DEFAULT_LONG_BREAK_MINUTES
    long_break_interval_cycles: int = DEFAULT_LONG_BREAK_INTERVAL
    daily_goal_minutes: int = DEFAULT_DAILY_GOAL_MINUTES
    last_reset_date: Optional[date] = None

    def validate(self) -> "FocusPreferences":
        """Raise ValueError unless every minute value is a positive integer."""
        for name in (
            "work_minutes",
            "short_break_minutes",
            "long_break_minutes",
            "daily_goal_minutes",
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"{name} must be a positive integer, got {value!r}")
        interval = self.long_break_interval_cycles
        if not isinstance(interval, int) or isinstance(interval, bool) or interval < 1:
            raise ValueError(f"long_break_interval_cycles must be >= 1, got {interval!r}")
        return self

    def minutes_for(self, phase: Phase) -> int:
        if phase == Phase.WORK:
            return self.work_minutes
        if phase == Phase.SHORT_BREAK:
            return self.short_break_minutes
        if phase == Phase.LONG_BREAK:
            return self.long_break_minutes
        return 0

    def with_changes(self, **changes: Any) -> "FocusPreferences":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        """Firestore document body. ``lastResetDate`` is written separately."""
        return {
            "workMinutes": self.work_minutes,
            "shortBreakMinutes": self.short_break_minutes,
            "longBreakMinutes": self.long_break_minutes,
            "longBreakInterval": self.long_break_interval_cycles,
            "dailyGoalMinutes": self.daily_goal_minutes,
        }

    @classmethod
    def from_dict(cls, user_id: str, data: Optional[Dict[str, Any]]) -> "FocusPreferences":
        """Build preferences from a stored document; missing fields take defaults."""
        if not data:
            return cls(user_id=user_id)
        last_reset = data.get("lastResetDate")
        if isinstance(last_reset, str):
            last_reset = _parse_date(last_reset)
        elif isinstance(last_reset, datetime):
            last_reset = last_reset.date()
        return cls(
            user_id=user_id,
            work_minutes=data.get("workMinutes", DEFAULT_WORK_MINUTES),
            short_break_minutes=data.get("shortBreakMinutes", DEFAULT_SHORT_BREAK_MINUTES),
            long_break_minutes=data.get("longBreakMinutes", DEFAULT_LONG_BREAK_MINUTES),
            long_break_interval_cycles=data.get("longBreakInterval", DEFAULT_LONG_BREAK_INTERVAL),
            daily_goal_minutes=data.get("dailyGoalMinutes", DEFAULT_DAILY_GOAL_MINUTES),
            last_reset_date=last_reset,
        )


def _parse_date(value: str) -> Optional[date]:
    # Older documents stored non-padded "YYYY-M-D"
    try:
        year, month, day = (int(part) for part in value.split("-"))
        return date(year, month, day)
    except ValueError:
        return None


@dataclass(frozen=True)
class FocusSessionRecord:
    """One flushed block of work time. Append-only."""

    user_id: str
    start: datetime
    duration_minutes: int
    phase_type: Phase = Phase.WORK
    id: Optional[str] = None

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "start": self.start,
            "end": self.end,
            "durationMinutes": self.duration_minutes,
            "phaseType": self.phase_type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], record_id: Optional[str] = None) -> "FocusSessionRecord":
        return cls(
            user_id=data.get("userId", ""),
            start=data["start"],
            duration_minutes=int(data.get("durationMinutes", 0)),
            phase_type=Phase(data.get("phaseType", Phase.WORK.value)),
            id=record_id,
        )


@dataclass
class EngineState:
    """In-memory timer state, owned by the phase state machine."""

    phase: Phase = Phase.IDLE
    remaining_seconds: int = 0
    phase_total_seconds: int = 0
    completed_work_cycles: int = 0
    unflushed_seconds: int = 0
    # Work seconds from an earlier block, restored at the next work entry
    carried_seconds: int = 0
    is_paused: bool = False
    last_sync: Optional[datetime] = None


@dataclass(frozen=True)
class EngineSnapshot:
    """Read-only view handed to subscribers."""

    phase: Phase
    remaining_seconds: int
    is_paused: bool
    last_sync: Optional[datetime]
    unflushed_minutes_display: int
    completed_work_cycles: int = 0
    phase_total_seconds: int = 0
    saved_block_minutes: int = 0
    logged_today_minutes: int = 0
    daily_goal_minutes: int = DEFAULT_DAILY_GOAL_MINUTES
    sync_stale: bool = False
