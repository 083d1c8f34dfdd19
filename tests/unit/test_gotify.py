from __future__ import annotations

import json
import threading

import pytest

from proxsave_notify.common.errors import ConfigurationError
from proxsave_notify.delivery.gotify import GotifyChannel, GotifyConfig
from proxsave_notify.report.model import Status
from proxsave_notify.report.templates import build_subject, render_text


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


def _channel(**overrides) -> GotifyChannel:
    kwargs = {"enabled": True, "server_url": " https://push.example.com/ ", "token": "app token"}
    kwargs.update(overrides)
    return GotifyChannel(GotifyConfig(**kwargs))


def test_send_posts_message(monkeypatch, make_report) -> None:
    fake = _FakeHttp(_FakeResponse(200, b'{"id":1}'))
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)
    report = make_report(1, warning_count=1)

    result = _channel().send(report, cancel=threading.Event())
    assert result.ok
    assert result.meta["status_code"] == 200

    method, url, kwargs = fake.calls[0]
    assert method == "POST"
    assert url == "https://push.example.com/message?token=app+token"
    assert kwargs["timeout"] == 15.0
    assert json.loads(kwargs["data"]) == {
        "title": build_subject(report),
        "message": render_text(report),
        "priority": 5,
    }


def test_non_2xx_is_an_error(monkeypatch, make_report) -> None:
    fake = _FakeHttp(_FakeResponse(401, b'{"error":"Unauthorized"}\n'))
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    result = _channel().send(make_report(), cancel=threading.Event())
    assert not result.ok
    assert result.error == 'gotify returned HTTP 401: {"error":"Unauthorized"}'
    assert result.meta["status_code"] == 401


def test_priorities_default_when_not_positive() -> None:
    channel = _channel(priority_success=0, priority_warning=-1, priority_failure=10)
    assert channel.priority(Status.success) == 2
    assert channel.priority(Status.warning) == 5
    assert channel.priority(Status.failure) == 10


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"server_url": "  "}, "GOTIFY_SERVER_URL is required when GOTIFY_ENABLED=true"),
        ({"token": ""}, "GOTIFY_TOKEN is required when GOTIFY_ENABLED=true"),
    ],
)
def test_required_settings(overrides: dict, message: str) -> None:
    with pytest.raises(ConfigurationError, match=message):
        _channel(**overrides)


def test_disabled_channel_skips_validation() -> None:
    assert not _channel(enabled=False, server_url="", token="").enabled
