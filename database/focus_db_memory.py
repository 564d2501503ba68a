"""
In-memory focus storage for running without Firestore.
"""
import uuid
from dataclasses import replace
from datetime import date
from typing import Dict, List

from database.base import PreferencesStore, SessionStore
from models.focus import FocusPreferences, FocusSessionRecord
from utils.logging import get_logger

logger = get_logger(__name__)


class FocusDBMemory(PreferencesStore, SessionStore):
    """
    Keeps preferences and sessions in process memory; nothing survives a restart.

    ``fail_writes`` makes every write report failure, which simulates an
    unreachable store.
    """

    def __init__(self):
        self.preferences: Dict[str, FocusPreferences] = {}
        self.sessions: List[FocusSessionRecord] = []
        self.fail_writes = False
        logger.info("FocusDBMemory initialised (data kept in memory)")

    async def read_preferences(self, user_id: str) -> FocusPreferences:
        if user_id not in self.preferences:
            self.preferences[user_id] = FocusPreferences(user_id=user_id)
        return self.preferences[user_id]

    async def write_preferences(self, user_id: str, prefs: FocusPreferences) -> bool:
        if self.fail_writes:
            logger.error("Failed to save preferences", extra={"user_id": user_id, "error": "store unavailable"})
            return False
        current = self.preferences.get(user_id)
        last_reset = current.last_reset_date if current else None
        self.preferences[user_id] = prefs.with_changes(user_id=user_id, last_reset_date=last_reset)
        return True

    async def write_last_reset_date(self, user_id: str, day: date) -> bool:
        if self.fail_writes:
            logger.error("Failed to save last reset date", extra={"user_id": user_id, "error": "store unavailable"})
            return False
        prefs = await self.read_preferences(user_id)
        self.preferences[user_id] = prefs.with_changes(last_reset_date=day)
        return True

    async def append_session(self, user_id: str, record: FocusSessionRecord) -> bool:
        if self.fail_writes:
            logger.error("Failed to append focus session", extra={"user_id": user_id, "error": "store unavailable"})
            return False
        self.sessions.append(replace(record, user_id=user_id, id=str(uuid.uuid4())))
        logger.debug("Focus session stored in memory", extra={"user_id": user_id})
        return True

    async def query_sessions_for_day(self, user_id: str, day: date) -> List[FocusSessionRecord]:
        return [
            s for s in self.sessions
            if s.user_id == user_id and s.start.astimezone().date() == day
        ]
