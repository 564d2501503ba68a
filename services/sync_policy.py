"""
Decides when accrued work time becomes a durable session record.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from database.base import SessionStore
from models.focus import FocusSessionRecord, Phase
from utils.clock import local_now
from utils.logging import get_logger

logger = get_logger(__name__)

FLUSH_UNIT_SEC = 60


@dataclass
class FlushJob:
    """One append in flight.

    ``live`` jobs flush seconds still held by the state machine and are
    acknowledged against it on success. A live job becomes ``detached``
    when the machine is reset underneath it; backlog jobs are detached
    from the start.
    """
    seconds: int
    record: FocusSessionRecord
    live: bool
    block_id: int
    detached: bool = False

    @property
    def minutes(self) -> int:
        return self.seconds // FLUSH_UNIT_SEC


@dataclass(frozen=True)
class FlushResult:
    job: FlushJob
    ok: bool
    # Seconds the state machine should drop from its accumulator
    acknowledged_seconds: int = 0


class SyncPolicy:
    """
    At most one flush is in flight. A trigger that arrives while one is
    outstanding is remembered and re-evaluated once the result is in.

    Failed flushes leave the accumulator untouched, so the next trigger
    writes the larger cumulative total (at-least-once delivery).
    """

    def __init__(
        self,
        store: SessionStore,
        user_id: str,
        clock: Callable[[], datetime] = local_now,
    ):
        self.store = store
        self.user_id = user_id
        self.clock = clock

        self.in_flight: Optional[FlushJob] = None
        # Whole-minute seconds from closed blocks still awaiting delivery
        self.backlog_seconds = 0
        self._backlog_block_id = 0
        self.last_sync: Optional[datetime] = None
        self.stale = False
        self._deferred = False

    def next_job(self, pending_seconds: int, block_id: int) -> Optional[FlushJob]:
        """
        Evaluates a trigger.

        Args:
            pending_seconds: Unacknowledged work seconds held by the machine
            block_id: Identifier of the work block those seconds belong to

        Returns:
            The job to dispatch, or None when nothing is due or a flush is
            already in flight
        """
        if self.in_flight is not None:
            self._deferred = True
            logger.debug("Flush deferred, one already in flight")
            return None

        if self.backlog_seconds >= FLUSH_UNIT_SEC:
            job = self._make_job(self.backlog_seconds, live=False, block_id=self._backlog_block_id)
            job.detached = True
        elif pending_seconds >= FLUSH_UNIT_SEC:
            whole = (pending_seconds // FLUSH_UNIT_SEC) * FLUSH_UNIT_SEC
            job = self._make_job(whole, live=True, block_id=block_id)
        else:
            return None

        self.in_flight = job
        return job

    def close_block(self, pending_seconds: int, block_id: int) -> int:
        """
        Moves a block that is being closed out of the machine's hands.

        Whole minutes not already covered by a live in-flight job join the
        backlog; the sub-minute remainder is dropped.

        Returns:
            Seconds discarded
        """
        covered = 0
        if self.in_flight is not None and self.in_flight.live and not self.in_flight.detached:
            covered = self.in_flight.seconds
            self.in_flight.detached = True

        remaining = max(0, pending_seconds - covered)
        closing = (remaining // FLUSH_UNIT_SEC) * FLUSH_UNIT_SEC
        self.backlog_seconds += closing
        if closing:
            self._backlog_block_id = block_id
        discarded = remaining - closing
        if discarded:
            logger.info(
                "Sub-minute remainder dropped at block close",
                extra={"discarded_seconds": discarded},
            )
        return discarded

    async def write(self, job: FlushJob) -> bool:
        try:
            return bool(await self.store.append_session(self.user_id, job.record))
        except Exception as e:
            logger.error(
                "Flush failed",
                extra={"duration_minutes": job.minutes, "error": str(e)},
            )
            return False

    def complete(self, job: FlushJob, ok: bool) -> FlushResult:
        """Applies a write result; the caller acknowledges live seconds on the machine."""
        if self.in_flight is job:
            self.in_flight = None

        if ok:
            self.last_sync = self.clock()
            self.stale = False
            if not job.live:
                self.backlog_seconds = max(0, self.backlog_seconds - job.seconds)
            logger.info(
                "Focus time synced",
                extra={"duration_minutes": job.minutes, "detached": job.detached},
            )
            acknowledged = job.seconds if job.live and not job.detached else 0
            return FlushResult(job=job, ok=True, acknowledged_seconds=acknowledged)

        self.stale = True
        if job.live and job.detached:
            # The machine already let go of these seconds
            self.backlog_seconds += job.seconds
            self._backlog_block_id = job.block_id
        logger.warning(
            "Focus time not synced, will retry on next trigger",
            extra={"duration_minutes": job.minutes},
        )
        return FlushResult(job=job, ok=False)

    def take_deferred(self) -> bool:
        """True once if a trigger was deferred while a flush was in flight."""
        deferred, self._deferred = self._deferred, False
        return deferred

    def _make_job(self, seconds: int, live: bool, block_id: int) -> FlushJob:
        now = self.clock()
        minutes = seconds // FLUSH_UNIT_SEC
        record = FocusSessionRecord(
            user_id=self.user_id,
            start=now - timedelta(minutes=minutes),
            duration_minutes=minutes,
            phase_type=Phase.WORK,
        )
        return FlushJob(seconds=seconds, record=record, live=live, block_id=block_id)
