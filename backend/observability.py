import contextvars
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("homestash_request_id", default="")

SENSITIVE_FIELDS = {"password", "token", "authorization"}

LOGGER_NAME = "homestash"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_FIELDS)


def sanitize_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in payload.items():
        if is_sensitive_key(key):
            sanitized[key] = "<redacted>"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_payload(value)
        else:
            sanitized[key] = value
    return sanitized


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": iso_utc(now_utc()),
            "level": record.levelname,
            "logger": record.name,
        }
        request_id = get_active_request_id()
        if request_id:
            entry["request_id"] = request_id
        structured = getattr(record, "structured", None)
        if structured:
            entry.update(structured)
        else:
            entry["event"] = record.getMessage()
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=True, default=str)


def configure_logging(level: Optional[int] = None) -> logging.Logger:
    """Attach the JSON line handler to the service logger once; level defaults to LOG_LEVEL."""
    logger = logging.getLogger(LOGGER_NAME)
    if not any(isinstance(h.formatter, StructuredFormatter) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
    logger.setLevel(level if level is not None else LOG_LEVEL)
    logger.propagate = False
    return logger


def set_active_request_id(value: str) -> contextvars.Token[str]:
    return REQUEST_ID_CTX.set(value)


def reset_active_request_id(token: contextvars.Token[str]) -> None:
    REQUEST_ID_CTX.reset(token)


def get_active_request_id() -> str:
    return REQUEST_ID_CTX.get() or ""


def log_structured(level: int, event: str, **fields: Any) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    structured = {
        "event": event,
        **sanitize_payload(fields),
    }
    logger.log(level, "", extra={"structured": structured})
