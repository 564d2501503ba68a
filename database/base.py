from abc import ABC, abstractmethod
from datetime import date
from typing import List

from models.focus import FocusPreferences, FocusSessionRecord


class PreferencesStore(ABC):
    """Durable home of per-user focus preferences."""

    @abstractmethod
    async def read_preferences(self, user_id: str) -> FocusPreferences:
        """Return stored preferences, or defaults when none exist."""
        raise NotImplementedError

    @abstractmethod
    async def write_preferences(self, user_id: str, prefs: FocusPreferences) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def write_last_reset_date(self, user_id: str, day: date) -> bool:
        raise NotImplementedError


class SessionStore(ABC):
    """Append-only log of completed work blocks."""

    @abstractmethod
    async def append_session(self, user_id: str, record: FocusSessionRecord) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def query_sessions_for_day(self, user_id: str, day: date) -> List[FocusSessionRecord]:
        raise NotImplementedError
