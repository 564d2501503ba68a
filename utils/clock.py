from datetime import date, datetime, time, timedelta


def local_now() -> datetime:
    """Current local time, timezone-aware."""
    return datetime.now().astimezone()


def day_bounds(day: date, tz=None) -> tuple[datetime, datetime]:
    """Local midnight of ``day`` and of the following day."""
    tz = tz or local_now().tzinfo
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def seconds_until_midnight(now: datetime) -> float:
    """Seconds from ``now`` to the next local midnight (never zero)."""
    _, next_midnight = day_bounds(now.date(), now.tzinfo)
    return max(1.0, (next_midnight - now).total_seconds())


def fmt_mmss(seconds: int) -> str:
    m, s = divmod(max(0, int(seconds)), 60)
    return f"{m:02}:{s:02}"
