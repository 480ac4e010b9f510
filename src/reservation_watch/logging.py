from __future__ import annotations

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .util.serialization import sanitize_for_json

_JSON_SCALAR_TYPES = (str, int, float, bool)

_PLAIN_CONTEXT_KEYS = ("subscription_id", "reservation_id", "days_remaining", "count")

_STANDARD_RECORD_KEYS = frozenset(
    (
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    )
)


def _is_json_safe(value: object, depth: int = 3) -> bool:
    if isinstance(value, _JSON_SCALAR_TYPES):
        return True
    if depth <= 0:
        return False
    if isinstance(value, dict):
        for k, v in value.items():
            if not isinstance(k, (str, int, float, bool)) and k is not None:
                return False
            if not _is_json_safe(v, depth - 1):
                return False
        return True
    if isinstance(value, (list, tuple)):
        return all(_is_json_safe(v, depth - 1) for v in value)
    return False


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    json_logs: bool = False


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_RECORD_KEYS and value is not None
    }


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line. Extras pass through sanitize_for_json, so a
    shared key or bearer token handed to a log call is redacted, not printed.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in sanitize_for_json(_record_extras(record)).items():
            if key not in payload and _is_json_safe(value):
                payload[key] = value
        return json.dumps(payload, sort_keys=True)


class PlainFormatter(logging.Formatter):
    """
    Human-readable line: `[step:phase] message: error key=value (duration_ms=N)`.
    Only the reservation/session context keys are shown inline; the JSON
    formatter carries everything else.
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        timestamp = datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="seconds")
        extras = sanitize_for_json(_record_extras(record))
        message = record.getMessage()
        if extras.get("step") or extras.get("phase"):
            message = f"[{extras.get('step') or 'unknown'}:{extras.get('phase') or 'unknown'}] {message}"
        if extras.get("error"):
            message = f"{message}: {extras['error']}"
        context = " ".join(f"{key}={extras[key]}" for key in _PLAIN_CONTEXT_KEYS if key in extras)
        if context:
            message = f"{message} {context}"
        if "duration_ms" in extras:
            message = f"{message} (duration_ms={extras['duration_ms']})"
        line = f"{timestamp} {record.levelname} {record.name}: {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _level_from_str(level: str) -> int:
    value = getattr(logging, (level or "").upper(), None)
    return value if isinstance(value, int) else logging.INFO


def setup_logging(config: Optional[LogConfig] = None) -> None:
    """
    Configure root logger once. Subsequent calls are no-ops.
    Env overrides:
      - RESV_WATCH_LOG_LEVEL (default INFO)
      - RESV_WATCH_JSON_LOGS (1/true to enable)
    """
    if getattr(setup_logging, "_configured", False):
        return

    env_level = os.getenv("RESV_WATCH_LOG_LEVEL")
    env_json = os.getenv("RESV_WATCH_JSON_LOGS")

    level = _level_from_str((config.level if config else None) or env_level or "INFO")
    json_logs = (config.json_logs if config else False) or ((env_json or "").lower() in ("1", "true", "yes"))

    # Logs go to stderr so the report on stdout stays readable when piped.
    handler = logging.StreamHandler(stream=sys.stderr)
    if json_logs:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(PlainFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    # The Azure SDK logs every HTTP request at INFO.
    for noisy in ("azure", "msal", "urllib3"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))

    setattr(setup_logging, "_configured", True)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
