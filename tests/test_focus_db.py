from datetime import date, datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from google.cloud import firestore

from database.focus_db import FocusDB
from database.focus_db_memory import FocusDBMemory
from models.focus import FocusPreferences, FocusSessionRecord, Phase

USER = "user-1"
NOW = datetime(2026, 3, 10, 12, 0).astimezone()


def _sync_to_thread(f, *args, **kwargs):
    return f(*args, **kwargs)


@pytest.fixture
def mock_firestore_client():
    return MagicMock()


@pytest.fixture
def focus_db(mock_firestore_client):
    return FocusDB(mock_firestore_client)


def _prefs_ref(client):
    return client.collection.return_value.document.return_value.collection.return_value.document.return_value


@pytest.mark.asyncio
async def test_read_preferences_defaults_when_missing(focus_db, mock_firestore_client):
    doc = MagicMock(exists=False)
    _prefs_ref(mock_firestore_client).get.return_value = doc

    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        prefs = await focus_db.read_preferences(USER)

    assert prefs == FocusPreferences(user_id=USER)
    mock_firestore_client.collection.assert_called_with("users")


@pytest.mark.asyncio
async def test_read_preferences_parses_document(focus_db, mock_firestore_client):
    doc = MagicMock(exists=True)
    doc.to_dict.return_value = {
        "workMinutes": 50,
        "shortBreakMinutes": 10,
        "longBreakInterval": 2,
        "lastResetDate": "2026-3-9",
    }
    _prefs_ref(mock_firestore_client).get.return_value = doc

    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        prefs = await focus_db.read_preferences(USER)

    assert prefs.work_minutes == 50
    assert prefs.short_break_minutes == 10
    assert prefs.long_break_minutes == 15
    assert prefs.long_break_interval_cycles == 2
    assert prefs.daily_goal_minutes == 240
    assert prefs.last_reset_date == date(2026, 3, 9)


@pytest.mark.asyncio
async def test_read_preferences_replaces_invalid_document(focus_db, mock_firestore_client, caplog):
    doc = MagicMock(exists=True)
    doc.to_dict.return_value = {"workMinutes": 0, "lastResetDate": "2026-03-09"}
    _prefs_ref(mock_firestore_client).get.return_value = doc

    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        with caplog.at_level("WARNING"):
            prefs = await focus_db.read_preferences(USER)

    assert prefs.work_minutes == 25
    assert prefs.last_reset_date == date(2026, 3, 9)
    assert "Stored preferences invalid" in caplog.text


@pytest.mark.asyncio
async def test_read_preferences_store_error_returns_defaults(focus_db, mock_firestore_client, caplog):
    _prefs_ref(mock_firestore_client).get.side_effect = Exception("unavailable")

    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        with caplog.at_level("ERROR"):
            prefs = await focus_db.read_preferences(USER)

    assert prefs == FocusPreferences(user_id=USER)
    assert "Failed to read preferences" in caplog.text


@pytest.mark.asyncio
async def test_write_preferences_merges(focus_db, mock_firestore_client):
    prefs = FocusPreferences(user_id=USER, work_minutes=30)

    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        assert await focus_db.write_preferences(USER, prefs) is True

    _prefs_ref(mock_firestore_client).set.assert_called_once_with(prefs.to_dict(), merge=True)


@pytest.mark.asyncio
async def test_write_preferences_failure(focus_db, mock_firestore_client):
    _prefs_ref(mock_firestore_client).set.side_effect = Exception("denied")

    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        assert await focus_db.write_preferences(USER, FocusPreferences(user_id=USER)) is False


@pytest.mark.asyncio
async def test_write_last_reset_date(focus_db, mock_firestore_client):
    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        assert await focus_db.write_last_reset_date(USER, date(2026, 3, 10)) is True

    _prefs_ref(mock_firestore_client).set.assert_called_once_with(
        {"lastResetDate": "2026-03-10"}, merge=True
    )


@pytest.mark.asyncio
async def test_append_session(focus_db, mock_firestore_client):
    record = FocusSessionRecord(USER, NOW, 25)

    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        assert await focus_db.append_session(USER, record) is True

    mock_firestore_client.collection.assert_called_with("focusSessions")
    data = mock_firestore_client.collection.return_value.add.call_args.args[0]
    assert data["userId"] == USER
    assert data["durationMinutes"] == 25
    assert data["phaseType"] == "work"
    assert data["start"] == NOW
    assert data["end"] == NOW + timedelta(minutes=25)
    assert data["created_at"] is firestore.SERVER_TIMESTAMP


@pytest.mark.asyncio
async def test_append_session_failure(focus_db, mock_firestore_client, caplog):
    mock_firestore_client.collection.return_value.add.side_effect = Exception("offline")

    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        with caplog.at_level("ERROR"):
            ok = await focus_db.append_session(USER, FocusSessionRecord(USER, NOW, 1))

    assert ok is False
    assert "Failed to append focus session" in caplog.text


@pytest.mark.asyncio
async def test_query_sessions_for_day(focus_db, mock_firestore_client):
    doc = MagicMock(id="abc")
    doc.to_dict.return_value = {
        "userId": USER,
        "start": NOW,
        "end": NOW + timedelta(minutes=20),
        "durationMinutes": 20,
        "phaseType": "work",
    }
    query = mock_firestore_client.collection.return_value.where.return_value
    query.where.return_value.where.return_value.stream.return_value = [doc]

    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        records = await focus_db.query_sessions_for_day(USER, NOW.date())

    assert records == [FocusSessionRecord(USER, NOW, 20, Phase.WORK, id="abc")]
    mock_firestore_client.collection.return_value.where.assert_called_once_with("userId", "==", USER)
    start_filter = query.where.call_args.args
    assert start_filter[:2] == ("start", ">=")
    assert start_filter[2].date() == NOW.date()


@pytest.mark.asyncio
async def test_query_sessions_error_returns_empty(focus_db, mock_firestore_client):
    mock_firestore_client.collection.return_value.where.side_effect = Exception("index missing")

    with patch("asyncio.to_thread", side_effect=_sync_to_thread):
        assert await focus_db.query_sessions_for_day(USER, NOW.date()) == []


@pytest.mark.asyncio
async def test_memory_store_round_trip():
    store = FocusDBMemory()
    await store.write_last_reset_date(USER, date(2026, 3, 10))
    await store.write_preferences(USER, FocusPreferences(user_id=USER, work_minutes=45))

    prefs = await store.read_preferences(USER)
    assert prefs.work_minutes == 45
    # Settings writes never clobber the reset marker
    assert prefs.last_reset_date == date(2026, 3, 10)

    await store.append_session(USER, FocusSessionRecord(USER, NOW, 5))
    today = await store.query_sessions_for_day(USER, NOW.date())
    assert [r.duration_minutes for r in today] == [5]
    assert today[0].id is not None
    assert await store.query_sessions_for_day(USER, NOW.date() + timedelta(days=1)) == []


@pytest.mark.asyncio
async def test_memory_store_failure_mode():
    store = FocusDBMemory()
    store.fail_writes = True

    assert await store.append_session(USER, FocusSessionRecord(USER, NOW, 5)) is False
    assert await store.write_preferences(USER, FocusPreferences(user_id=USER)) is False
    assert await store.write_last_reset_date(USER, NOW.date()) is False
    assert store.sessions == []
