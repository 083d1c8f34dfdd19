from __future__ import annotations

import json
import threading

import pytest
import requests

from proxsave_notify.common.errors import ConfigurationError, ErrCode
from proxsave_notify.delivery.telegram.channel import TelegramChannel, TelegramConfig
from proxsave_notify.delivery.telegram.registration import HandshakeFailure, check_registration
from proxsave_notify.report.templates import build_telegram_text

BOT_TOKEN = "123456:" + "A" * 35
BOT_HOST = "https://bot.example.com"


class _FakeResponse:
    def __init__(self, status: int = 200, body: bytes = b"") -> None:
        self.status_code = status
        self._body = body

    def iter_content(self, chunk_size: int = 1024):
        if self._body:
            yield self._body

    def close(self) -> None:
        return None


class _FakeHttp:
    def __init__(self, *responses: _FakeResponse) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, str, dict]] = []

    def __call__(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0)


def _handshake(token: str = BOT_TOKEN, chat_id: str = "987654") -> _FakeResponse:
    return _FakeResponse(200, json.dumps({"bot_token": token, "chat_id": chat_id}).encode())


def _centralized() -> TelegramChannel:
    return TelegramChannel(
        TelegramConfig(enabled=True, server_api_host=BOT_HOST + "/", server_id="1234567890")
    )


@pytest.mark.parametrize(
    ("config", "message"),
    [
        (TelegramConfig(enabled=True, mode="pager"), "invalid Telegram mode: pager"),
        (
            TelegramConfig(enabled=True, mode="personal", chat_id="1"),
            "TELEGRAM_BOT_TOKEN is required for personal mode",
        ),
        (
            TelegramConfig(enabled=True, mode="personal", bot_token=BOT_TOKEN),
            "TELEGRAM_CHAT_ID is required for personal mode",
        ),
        (
            TelegramConfig(enabled=True, mode="personal", bot_token="123:short", chat_id="1"),
            "invalid TELEGRAM_BOT_TOKEN format",
        ),
        (
            TelegramConfig(enabled=True, mode="personal", bot_token=BOT_TOKEN, chat_id="@chan"),
            "invalid TELEGRAM_CHAT_ID format",
        ),
        (
            TelegramConfig(enabled=True, server_id="1234567890"),
            "TELEGRAM_SERVER_API_HOST is required for centralized mode",
        ),
        (
            TelegramConfig(enabled=True, server_api_host=BOT_HOST),
            "SERVER_ID is required for centralized mode",
        ),
    ],
)
def test_config_validation(config: TelegramConfig, message: str) -> None:
    with pytest.raises(ConfigurationError) as e:
        TelegramChannel(config)
    assert e.value.message.startswith(message)


def test_disabled_config_is_not_validated() -> None:
    channel = TelegramChannel(TelegramConfig(enabled=False, mode="PAGER"))
    assert not channel.enabled


def test_personal_mode_accepts_negative_chat_id(monkeypatch, make_report) -> None:
    fake = _FakeHttp(_FakeResponse(200, b'{"ok":true}'))
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)
    config = TelegramConfig(
        enabled=True, mode="Personal", bot_token=BOT_TOKEN, chat_id="-100123"
    )

    result = TelegramChannel(config).send(make_report(), cancel=threading.Event())
    assert result.ok
    assert fake.calls[0][2]["data"]["chat_id"] == "-100123"


def test_centralized_handshake_then_send(monkeypatch, make_report) -> None:
    fake = _FakeHttp(_handshake(), _FakeResponse(200, b'{"ok":true}'))
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)
    report = make_report()

    result = _centralized().send(report, cancel=threading.Event())
    assert result.ok
    assert result.method == "telegram"

    method, url, kwargs = fake.calls[0]
    assert method == "GET"
    assert url == "https://bot.example.com/api/get-chat-id?server_id=1234567890"
    assert kwargs["timeout"] == 5.0

    method, url, kwargs = fake.calls[1]
    assert method == "POST"
    assert url == f"https://api.telegram.org/bot{BOT_TOKEN}/sendMessage"
    assert kwargs["data"] == {"chat_id": "987654", "text": build_telegram_text(report)}
    assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"


@pytest.mark.parametrize(
    ("status", "failure", "message"),
    [
        (403, HandshakeFailure.bot_not_started, "first communication - bot not started (HTTP 403)"),
        (409, HandshakeFailure.not_registered, "missing registration - register with bot (HTTP 409)"),
        (422, HandshakeFailure.invalid_server_id, "invalid SERVER_ID (HTTP 422)"),
        (502, HandshakeFailure.unexpected, "unexpected status 502: nope"),
    ],
)
def test_handshake_errors(
    monkeypatch, make_report, status: int, failure: HandshakeFailure, message: str
) -> None:
    fake = _FakeHttp(_FakeResponse(status, b"nope"))
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    result = _centralized().send(make_report(), cancel=threading.Event())
    assert not result.ok
    assert result.error == message
    assert result.error_code == ErrCode.PROTOCOL
    assert result.meta == {"status_code": status, "handshake": failure.value}
    assert len(fake.calls) == 1


def test_handshake_rejects_malformed_credentials(monkeypatch, make_report) -> None:
    fake = _FakeHttp(_handshake(token="not-a-token"))
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    result = _centralized().send(make_report(), cancel=threading.Event())
    assert result.error == "invalid bot token format from server"
    assert result.error_code == ErrCode.FORMAT


def test_send_message_error_keeps_status(monkeypatch, make_report) -> None:
    fake = _FakeHttp(_handshake(), _FakeResponse(400, b"Bad Request: chat not found"))
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    result = _centralized().send(make_report(), cancel=threading.Event())
    assert not result.ok
    assert result.error == "telegram api returned status 400: Bad Request: chat not found"
    assert result.meta["status_code"] == 400


def test_cancelled_send_makes_no_request(monkeypatch, make_report) -> None:
    fake = _FakeHttp()
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)
    cancel = threading.Event()
    cancel.set()

    result = _centralized().send(make_report(), cancel=cancel)
    assert result.error_code == ErrCode.CANCELLED
    assert fake.calls == []


def test_check_registration(monkeypatch) -> None:
    assert check_registration(BOT_HOST, "").code == 0

    fake = _FakeHttp(
        _FakeResponse(200),
        _FakeResponse(403, b"start the bot"),
        _FakeResponse(500, b"oops"),
    )
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    ok = check_registration(BOT_HOST, "1234567890")
    assert (ok.code, ok.message, ok.error) == (200, "200 - Registration active", None)

    pending = check_registration(BOT_HOST, "1234567890")
    assert pending.message == "403 - Start the bot and send the Server ID"
    assert pending.error == "start the bot"

    odd = check_registration(BOT_HOST, "1234567890")
    assert odd.message == "500 - Unexpected response: oops"


def test_check_registration_connection_failure(monkeypatch) -> None:
    def _boom(*_args, **_kwargs):
        raise requests.ConnectionError("no route to host")

    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", _boom)
    status = check_registration(BOT_HOST, "1234567890")
    assert (status.code, status.message) == (0, "Connection failed")
    assert "no route to host" in status.error
