"""
Headless runner for the focus engine.
"""
import asyncio
import signal
from typing import Optional

import config
from database.focus_db import FocusDB
from database.focus_db_memory import FocusDBMemory
from models.focus import EngineSnapshot, Phase
from services.focus_engine import FocusEngine
from utils.clock import fmt_mmss
from utils.firestore_client import create_firestore_client
from utils.logging import get_logger, setup_logging

log = get_logger(__name__)

shutdown_event: Optional[asyncio.Event] = None


def build_store():
    """Firestore when it can be reached, otherwise memory."""
    client = create_firestore_client(config.FIREBASE_PROJECT_ID)
    if client is None:
        log.warning("Firestore unavailable, focus data will be kept in memory only")
        return FocusDBMemory()
    log.info("Focus storage initialised with Firestore")
    return FocusDB(client)


def make_phase_logger():
    last_phase = {"value": None}

    def on_change(snapshot: EngineSnapshot) -> None:
        if snapshot.phase != last_phase["value"]:
            last_phase["value"] = snapshot.phase
            log.info(
                "Phase now %s",
                snapshot.phase.value,
                extra={
                    "remaining": fmt_mmss(snapshot.remaining_seconds),
                    "completed_work_cycles": snapshot.completed_work_cycles,
                    "logged_today_minutes": snapshot.logged_today_minutes,
                },
            )

    return on_change


async def main() -> None:
    global shutdown_event
    setup_logging(level=config.LOG_LEVEL)
    log.info("Starting focus engine runner")

    store = build_store()
    engine = FocusEngine(
        user_id=config.USER_ID,
        prefs_store=store,
        session_store=store,
        tick_interval=config.TICK_INTERVAL_SEC,
        sync_interval=config.SYNC_INTERVAL_SEC,
    )
    handle = engine.subscribe(make_phase_logger())

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, shutdown_event.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform / loop
            pass

    await engine.start()
    try:
        if config.AUTOSTART and engine.phase == Phase.IDLE:
            engine.start_work()
        await shutdown_event.wait()
        log.info("Shutdown requested")
    finally:
        engine.unsubscribe(handle)
        await engine.stop()
        log.info("Focus engine runner stopped")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Stopped by user")


if __name__ == "__main__":
    run()
