"""
Firestore storage for focus preferences and session records.
"""
import asyncio
from datetime import date
from typing import List

from google.cloud import firestore

from database.base import PreferencesStore, SessionStore
from models.focus import FocusPreferences, FocusSessionRecord
from utils.clock import day_bounds
from utils.logging import get_logger

logger = get_logger(__name__)

SESSIONS_COLLECTION = "focusSessions"
USERS_COLLECTION = "users"
PREFS_COLLECTION = "focusPrefs"
PREFS_DOCUMENT = "prefs"


class FocusDB(PreferencesStore, SessionStore):
    """Focus persistence backed by Firestore.

    Blocking client calls run in worker threads so the event loop that
    drives the timer is never stalled by network I/O.
    """

    def __init__(self, db: firestore.Client):
        """
        Args:
            db: Firestore client instance
        """
        self.db = db

    def _prefs_ref(self, user_id: str):
        return (
            self.db.collection(USERS_COLLECTION)
            .document(user_id)
            .collection(PREFS_COLLECTION)
            .document(PREFS_DOCUMENT)
        )

    # === Preferences ===

    async def read_preferences(self, user_id: str) -> FocusPreferences:
        """
        Reads the user's preferences.

        Returns:
            Stored preferences, or defaults if the document is missing,
            invalid or unreadable
        """
        try:
            doc = await asyncio.to_thread(self._prefs_ref(user_id).get)
            data = doc.to_dict() if doc.exists else None
        except Exception as e:
            logger.error("Failed to read preferences", extra={"user_id": user_id, "error": str(e)})
            return FocusPreferences(user_id=user_id)

        prefs = FocusPreferences.from_dict(user_id, data)
        try:
            return prefs.validate()
        except ValueError as e:
            logger.warning(
                "Stored preferences invalid, using defaults",
                extra={"user_id": user_id, "error": str(e)},
            )
            return FocusPreferences(user_id=user_id, last_reset_date=prefs.last_reset_date)

    async def write_preferences(self, user_id: str, prefs: FocusPreferences) -> bool:
        try:
            await asyncio.to_thread(self._prefs_ref(user_id).set, prefs.to_dict(), merge=True)
            logger.info("Preferences saved", extra={"user_id": user_id})
            return True
        except Exception as e:
            logger.error("Failed to save preferences", extra={"user_id": user_id, "error": str(e)})
            return False

    async def write_last_reset_date(self, user_id: str, day: date) -> bool:
        try:
            await asyncio.to_thread(
                self._prefs_ref(user_id).set,
                {"lastResetDate": day.isoformat()},
                merge=True,
            )
            logger.info("Last reset date saved", extra={"user_id": user_id, "day": day.isoformat()})
            return True
        except Exception as e:
            logger.error("Failed to save last reset date", extra={"user_id": user_id, "error": str(e)})
            return False

    # === Sessions ===

    async def append_session(self, user_id: str, record: FocusSessionRecord) -> bool:
        try:
            data = record.to_dict()
            data["userId"] = user_id
            data["created_at"] = firestore.SERVER_TIMESTAMP
            await asyncio.to_thread(self.db.collection(SESSIONS_COLLECTION).add, data)
            logger.info(
                "Focus session appended",
                extra={"user_id": user_id, "duration_minutes": record.duration_minutes},
            )
            return True
        except Exception as e:
            logger.error("Failed to append focus session", extra={"user_id": user_id, "error": str(e)})
            return False

    async def query_sessions_for_day(self, user_id: str, day: date) -> List[FocusSessionRecord]:
        """
        Lists sessions whose start falls on the given local calendar day.
        """
        start, end = day_bounds(day)
        try:
            docs = await asyncio.to_thread(
                lambda: list(
                    self.db.collection(SESSIONS_COLLECTION)
                    .where("userId", "==", user_id)
                    .where("start", ">=", start)
                    .where("start", "<", end)
                    .stream()
                )
            )
        except Exception as e:
            logger.error("Failed to query focus sessions", extra={"user_id": user_id, "error": str(e)})
            return []

        return [FocusSessionRecord.from_dict(doc.to_dict(), doc.id) for doc in docs]
