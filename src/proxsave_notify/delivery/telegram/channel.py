"""
Telegram channel (personal bot or centralized bot server).

Notes:
- personal: credentials from config, validated at construction
- centralized: credentials fetched per send from the bot server (5s bound)
- the message is plain UTF-8 text, no parse_mode
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass

from proxsave_notify.common.errors import CancelledError, ConfigurationError, DeliveryError, ErrCode
from proxsave_notify.common.logging import get_channel_logger
from proxsave_notify.report.model import Report
from proxsave_notify.report.templates import build_telegram_text

from ..base import DeliveryResult
from ..http import DEFAULT_TIMEOUT_SEC, request_once
from .registration import RE_BOT_TOKEN, RE_CHAT_ID, fetch_credentials

TARGET = "telegram"
API_BASE = "https://api.telegram.org"

MODE_PERSONAL = "personal"
MODE_CENTRALIZED = "centralized"


@dataclass
class TelegramConfig:
    enabled: bool = False
    mode: str = MODE_CENTRALIZED
    bot_token: str = ""
    chat_id: str = ""
    server_api_host: str = ""
    server_id: str = ""


def validate_telegram_config(config: TelegramConfig) -> None:
    if config.mode not in (MODE_PERSONAL, MODE_CENTRALIZED):
        raise ConfigurationError(
            f"invalid Telegram mode: {config.mode} (must be 'personal' or 'centralized')"
        )
    if config.mode == MODE_PERSONAL:
        if not config.bot_token:
            raise ConfigurationError("TELEGRAM_BOT_TOKEN is required for personal mode")
        if not config.chat_id:
            raise ConfigurationError("TELEGRAM_CHAT_ID is required for personal mode")
        if not RE_BOT_TOKEN.fullmatch(config.bot_token):
            raise ConfigurationError(
                "invalid TELEGRAM_BOT_TOKEN format (expected: digits:alphanumeric_35+)"
            )
        if not RE_CHAT_ID.fullmatch(config.chat_id):
            raise ConfigurationError("invalid TELEGRAM_CHAT_ID format (expected: numeric)")
        return
    if not config.server_api_host:
        raise ConfigurationError("TELEGRAM_SERVER_API_HOST is required for centralized mode")
    if not config.server_id:
        raise ConfigurationError("SERVER_ID is required for centralized mode")


class TelegramChannel:
    name = "telegram"
    critical = False

    def __init__(
        self,
        config: TelegramConfig,
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        log: logging.Logger | None = None,
    ) -> None:
        config.mode = (config.mode or "").strip().lower()
        if config.enabled:
            validate_telegram_config(config)
        self.config = config
        self.enabled = config.enabled
        self.timeout_sec = timeout_sec
        self.log = log or get_channel_logger("telegram")

    def _credentials(self) -> tuple[str, str]:
        if self.config.mode == MODE_CENTRALIZED:
            return fetch_credentials(self.config.server_api_host, self.config.server_id)
        return self.config.bot_token, self.config.chat_id

    def send_message(self, bot_token: str, chat_id: str, text: str) -> None:
        reply = request_once(
            target=TARGET,
            method="POST",
            url=f"{API_BASE}/bot{bot_token}/sendMessage",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            form={"chat_id": chat_id, "text": text},
            timeout=self.timeout_sec,
        )
        if reply.status_code != 200:
            raise DeliveryError(
                ErrCode.PROTOCOL,
                f"telegram api returned status {reply.status_code}: {reply.body}",
                {"status_code": reply.status_code},
            )

    def send(self, report: Report, *, cancel: threading.Event) -> DeliveryResult:
        started = time.monotonic()
        result = DeliveryResult(ok=False, provider=self.name, method="telegram")
        if not self.enabled:
            self.log.debug("telegram_disabled")
            return result

        try:
            if cancel.is_set():
                raise CancelledError()
            bot_token, chat_id = self._credentials()
            if not bot_token or not chat_id:
                raise DeliveryError(ErrCode.CONFIGURATION, "missing bot token or chat ID")
            if cancel.is_set():
                raise CancelledError()
            self.send_message(bot_token, chat_id, build_telegram_text(report))
        except DeliveryError as e:
            result.error = e.message
            result.error_code = e.code
            result.meta.update(e.details or {})
            result.duration_sec = time.monotonic() - started
            self.log.warning(
                "telegram_send_failed",
                extra={"payload": {"mode": self.config.mode, "err": e.message}},
            )
            return result

        result.ok = True
        result.duration_sec = time.monotonic() - started
        self.log.debug("telegram_delivered", extra={"payload": {"mode": self.config.mode}})
        return result
