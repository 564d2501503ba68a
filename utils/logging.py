import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

# Correlation for whatever the engine is currently applying: a command,
# a tick or a flush result
_op_id_var: ContextVar[str | None] = ContextVar("op_id", default=None)
_user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)

_SECRET_KEYS = frozenset({"token", "password", "secret", "api_key", "private_key"})
_SECRET_RE = re.compile(r"\b(token|password|secret|api_key|private_key)=(\S+)", re.IGNORECASE)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}


def _redact_secrets(message: str) -> str:
    return _SECRET_RE.sub(lambda m: f"{m.group(1)}=***", message)


class JSONFormatter(logging.Formatter):
    """One JSON object per record: base fields, correlation, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": _redact_secrets(record.getMessage()),
        }
        for field, var in (("op_id", _op_id_var), ("user_id", _user_id_var)):
            value = var.get()
            if value is not None:
                payload[field] = value

        extras = {
            key: "***" if key.lower() in _SECRET_KEYS else value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_") and value is not None
        }
        payload.update(extras)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Route the root logger to stdout through ``JSONFormatter``."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level.upper())

    for noisy in ("google", "urllib3", "httpx", "grpc"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_log_context(op_id: str | None = None, user_id: str | None = None) -> None:
    """Set correlation fields for the current task; None leaves a field as is."""
    if op_id is not None:
        _op_id_var.set(op_id)
    if user_id is not None:
        _user_id_var.set(user_id)


def clear_log_context() -> None:
    _op_id_var.set(None)
    _user_id_var.set(None)


def get_op_id() -> str | None:
    return _op_id_var.get()


def get_user_id() -> str | None:
    return _user_id_var.get()
