"""Focus engine configuration, read from the environment (.env supported)."""
import logging
import os

from utils.env_loader import load_env

load_env()

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid integer in environment", extra={"var": name, "value": raw})
        return default
    if value <= 0:
        logger.warning("Non-positive interval in environment", extra={"var": name, "value": raw})
        return default
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


USER_ID = os.getenv("FOCUS_USER_ID", "local")

GOOGLE_APPLICATION_CREDENTIALS = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

TICK_INTERVAL_SEC = _env_int("FOCUS_TICK_SEC", 1)
SYNC_INTERVAL_SEC = _env_int("FOCUS_SYNC_SEC", 60)

AUTOSTART = _env_bool("FOCUS_AUTOSTART")
