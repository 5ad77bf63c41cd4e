"""Structured logging. App secrets and access tokens never reach log output."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

_SENSITIVE = ("token", "secret", "password", "bearer", "authorization")

# LogRecord attributes that are not user-supplied `extra` fields
_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


def _is_sensitive(text: str) -> bool:
    lowered = text.lower()
    return any(s in lowered for s in _SENSITIVE)


def _redact(obj: Any, key: str | None = None) -> Any:
    if key is not None and _is_sensitive(key):
        return "[REDACTED]"
    if isinstance(obj, dict):
        return {k: _redact(v, str(k)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_redact(v) for v in obj]
    if isinstance(obj, str) and _is_sensitive(obj):
        return "[REDACTED]"
    return obj


class StructuredFormatter(logging.Formatter):
    """One JSON object (or key=value line) per record; `extra` fields are redacted."""

    def __init__(self, use_json: bool = True) -> None:
        super().__init__()
        self.use_json = use_json

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith("_"):
                continue
            log_dict[key] = _redact(value, key)
        if self.use_json:
            return json.dumps(log_dict, default=str, ensure_ascii=False)
        return " ".join(f"{k}={v!r}" for k, v in log_dict.items())


def setup_logging(level: str = "INFO", use_json: bool = True) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter(use_json=use_json))
        root.addHandler(handler)
    # httpx logs every request line at INFO, including token exchange URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)
