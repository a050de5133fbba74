"""Structured logging helpers shared across SourceCache components."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

__all__ = ["JSONFormatter", "mask_sensitive_data", "setup_logging"]

LOG_DIR_ENV = "SOURCECACHE_LOG_DIR"
_SENSITIVE_KEYS = {"authorization", "cookie", "api_key", "apikey", "token", "secret", "password"}


def mask_sensitive_data(payload: Any, key_hint: Optional[str] = None) -> Any:
    """Return a copy of ``payload`` with credential-like values masked."""

    if isinstance(payload, dict):
        return {key: mask_sensitive_data(value, str(key).lower()) for key, value in payload.items()}
    if isinstance(payload, (list, tuple)):
        return [mask_sensitive_data(item, key_hint) for item in payload]
    if key_hint in _SENSITIVE_KEYS and payload is not None:
        return "***masked***"
    return payload


class JSONFormatter(logging.Formatter):
    """Formatter emitting masked JSON log entries for cache operations."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            payload.update(record.extra_fields)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload), default=str)


def setup_logging(
    *,
    level: str = "INFO",
    log_dir: Optional[Path] = None,
    json_logs: bool = True,
    max_log_size_mb: int = 50,
    propagate: bool = False,
) -> logging.Logger:
    """Configure the ``ImagerKit.SourceCache`` logger.

    A console handler is always installed. When ``json_logs`` is set, a
    rotating JSONL file handler is added under ``log_dir`` (or
    ``$SOURCECACHE_LOG_DIR``); without either directory only the console is used.
    Calling this again replaces the handlers it installed earlier.
    """

    logger = logging.getLogger("ImagerKit.SourceCache")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_imagerkit_managed", False):
            logger.removeHandler(handler)
            if isinstance(handler, logging.StreamHandler):
                stream = getattr(handler, "stream", None)
                if stream in (sys.stdout, sys.stderr):
                    continue
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    stream_handler._imagerkit_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    if log_dir is None:
        env_value = os.environ.get(LOG_DIR_ENV, "").strip()
        log_dir = Path(env_value) if env_value else None

    if json_logs and log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        file_handler = RotatingFileHandler(
            log_dir / f"sourcecache-{today}.jsonl",
            maxBytes=int(max_log_size_mb * 1024 * 1024),
            backupCount=5,
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler._imagerkit_managed = True  # type: ignore[attr-defined]
        logger.addHandler(file_handler)

    logger.propagate = propagate
    return logger
