"""
Gotify push channel.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from urllib.parse import urlencode

from proxsave_notify.common.errors import CancelledError, ConfigurationError, DeliveryError, ErrCode
from proxsave_notify.common.logging import get_channel_logger
from proxsave_notify.report.model import Report, Status
from proxsave_notify.report.templates import build_subject, render_text

from .base import DeliveryResult
from .http import SINGLE_SHOT_READ_CAP, request_once

TARGET = "gotify"
TIMEOUT_SEC = 15.0


@dataclass
class GotifyConfig:
    enabled: bool = False
    server_url: str = ""
    token: str = ""
    priority_success: int = 2
    priority_warning: int = 5
    priority_failure: int = 8


class GotifyChannel:
    name = "gotify"
    critical = False

    def __init__(self, config: GotifyConfig, *, log: logging.Logger | None = None) -> None:
        url = (config.server_url or "").strip()
        if config.enabled:
            if not url:
                raise ConfigurationError("GOTIFY_SERVER_URL is required when GOTIFY_ENABLED=true")
            if not (config.token or "").strip():
                raise ConfigurationError("GOTIFY_TOKEN is required when GOTIFY_ENABLED=true")
        config.server_url = url.rstrip("/")
        if config.priority_success <= 0:
            config.priority_success = 2
        if config.priority_warning <= 0:
            config.priority_warning = 5
        if config.priority_failure <= 0:
            config.priority_failure = 8

        self.config = config
        self.enabled = config.enabled
        self.log = log or get_channel_logger("gotify")

    def endpoint(self) -> str:
        return f"{self.config.server_url}/message?{urlencode({'token': self.config.token})}"

    def priority(self, status: Status) -> int:
        if status == Status.failure:
            return self.config.priority_failure
        if status == Status.warning:
            return self.config.priority_warning
        return self.config.priority_success

    def send(self, report: Report, *, cancel: threading.Event) -> DeliveryResult:
        started = time.monotonic()
        result = DeliveryResult(ok=False, provider=self.name, method="gotify")
        if not self.enabled:
            self.log.debug("gotify_disabled")
            return result

        body = json.dumps(
            {
                "title": build_subject(report),
                "message": render_text(report),
                "priority": self.priority(report.status),
            },
            ensure_ascii=False,
        ).encode("utf-8")

        try:
            if cancel.is_set():
                raise CancelledError()
            reply = request_once(
                target=TARGET,
                method="POST",
                url=self.endpoint(),
                headers={"Content-Type": "application/json"},
                body=body,
                timeout=TIMEOUT_SEC,
                read_cap=SINGLE_SHOT_READ_CAP,
            )
            result.meta["status_code"] = reply.status_code
            if not 200 <= reply.status_code < 300:
                raise DeliveryError(
                    ErrCode.PROTOCOL,
                    f"gotify returned HTTP {reply.status_code}: {reply.body.strip()}",
                )
        except DeliveryError as e:
            result.error = e.message
            result.error_code = e.code
            result.duration_sec = time.monotonic() - started
            self.log.warning("gotify_send_failed", extra={"payload": {"err": e.message}})
            return result

        result.ok = True
        result.duration_sec = time.monotonic() - started
        self.log.debug("gotify_delivered", extra={"payload": {"status_code": reply.status_code}})
        return result
