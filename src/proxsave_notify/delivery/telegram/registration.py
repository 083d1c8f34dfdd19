"""
Centralized Telegram bot handshake.

The bot server maps a SERVER_ID to the bot token and chat id registered for it.
fetch_credentials() is used for delivery; check_registration() is the
user-facing status probe (never raises).
"""

from __future__ import annotations

import enum
import json
import re
from dataclasses import dataclass
from urllib.parse import quote

from proxsave_notify.common.errors import DeliveryError, ErrCode

from ..http import HANDSHAKE_TIMEOUT_SEC, request_once

TARGET = "telegram_handshake"

RE_BOT_TOKEN = re.compile(r"^[0-9]+:[A-Za-z0-9_-]{35,}$")
RE_CHAT_ID = re.compile(r"^-?[0-9]+$")


class HandshakeFailure(str, enum.Enum):
    bot_not_started = "bot_not_started"
    not_registered = "not_registered"
    invalid_server_id = "invalid_server_id"
    unexpected = "unexpected"


_HANDSHAKE_FAILURES = {
    403: (HandshakeFailure.bot_not_started, "first communication - bot not started (HTTP 403)"),
    409: (HandshakeFailure.not_registered, "missing registration - register with bot (HTTP 409)"),
    422: (HandshakeFailure.invalid_server_id, "invalid SERVER_ID (HTTP 422)"),
}


@dataclass
class RegistrationStatus:
    code: int
    message: str
    error: str | None = None


def chat_id_url(server_api_host: str, server_id: str) -> str:
    return f"{server_api_host.rstrip('/')}/api/get-chat-id?server_id={quote(server_id, safe='')}"


def fetch_credentials(server_api_host: str, server_id: str) -> tuple[str, str]:
    """
    (bot_token, chat_id) for this server; raises DeliveryError on any non-200.

    Handshake rejections carry details {"status_code", "handshake"} where
    handshake is a HandshakeFailure value.
    """
    reply = request_once(
        target=TARGET,
        method="GET",
        url=chat_id_url(server_api_host, server_id),
        timeout=HANDSHAKE_TIMEOUT_SEC,
    )
    status = reply.status_code
    if status == 200:
        try:
            data = json.loads(reply.body)
        except ValueError as e:
            raise DeliveryError(ErrCode.FORMAT, f"failed to parse response: {e}") from e
        if not isinstance(data, dict):
            raise DeliveryError(ErrCode.FORMAT, "failed to parse response: not an object")
        token = str(data.get("bot_token") or "")
        chat_id = str(data.get("chat_id") or "")
        if not RE_BOT_TOKEN.fullmatch(token):
            raise DeliveryError(ErrCode.FORMAT, "invalid bot token format from server")
        if not RE_CHAT_ID.fullmatch(chat_id):
            raise DeliveryError(ErrCode.FORMAT, "invalid chat ID format from server")
        return token, chat_id
    failure, message = _HANDSHAKE_FAILURES.get(
        status, (HandshakeFailure.unexpected, f"unexpected status {status}: {reply.body}")
    )
    raise DeliveryError(
        ErrCode.PROTOCOL, message, {"status_code": status, "handshake": failure.value}
    )


_REGISTRATION_MESSAGES = {
    200: "200 - Registration active",
    403: "403 - Start the bot and send the Server ID",
    409: "409 - Registration missing on the bot",
    422: "422 - Invalid Server ID",
}


def check_registration(server_api_host: str, server_id: str) -> RegistrationStatus:
    if not server_id:
        return RegistrationStatus(code=0, message="SERVER_ID not available", error="server ID missing")
    try:
        reply = request_once(
            target=TARGET,
            method="GET",
            url=chat_id_url(server_api_host, server_id),
            timeout=HANDSHAKE_TIMEOUT_SEC,
        )
    except DeliveryError as e:
        return RegistrationStatus(code=0, message="Connection failed", error=e.message)

    status = reply.status_code
    if status == 200:
        return RegistrationStatus(code=200, message=_REGISTRATION_MESSAGES[200])
    if status in _REGISTRATION_MESSAGES:
        return RegistrationStatus(
            code=status, message=_REGISTRATION_MESSAGES[status], error=reply.body
        )
    return RegistrationStatus(
        code=status,
        message=f"{status} - Unexpected response: {reply.body}",
        error=f"unexpected status {status}",
    )
