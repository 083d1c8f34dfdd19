"""
Project logging.

- stdout only (cron/systemd/journald friendly)
- JSON lines by default, LOG_FORMAT=text for humans
- structured context goes into extra={"payload": {...}}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from proxsave_notify.common.config import get_settings

PROJECT_LOGGER = "proxsave-notify"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        extra_payload = getattr(record, "payload", None)
        if isinstance(extra_payload, dict):
            payload["payload"] = extra_payload
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extra_payload = getattr(record, "payload", None)
        if isinstance(extra_payload, dict) and extra_payload:
            details = " ".join(f"{k}={v}" for k, v in extra_payload.items())
            line = f"{line} [{details}]"
        return line


def _build_formatter(log_format: str) -> logging.Formatter:
    if (log_format or "").lower() == "text":
        return TextFormatter()
    return JsonFormatter()


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    s = get_settings()
    root = logging.getLogger()
    resolved = getattr(logging, (level or s.log_level or "INFO").upper(), logging.INFO)
    root.setLevel(resolved)

    # Repeated calls only adjust the level
    if root.handlers:
        for h in root.handlers:
            h.setLevel(resolved)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(_build_formatter(log_format or s.log_format))
    root.addHandler(handler)

    logging.getLogger("urllib3").setLevel(max(resolved, logging.WARNING))


def get_project_logger(name: str = PROJECT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def get_channel_logger(channel: str) -> logging.Logger:
    """
    Per-channel logger (proxsave-notify.email, proxsave-notify.webhook, ...).
    """
    return logging.getLogger(f"{PROJECT_LOGGER}.{channel.lower()}")
