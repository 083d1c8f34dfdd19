from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading

import pytest

from proxsave_notify.common.errors import ConfigurationError, ErrCode
from proxsave_notify.delivery.webhook.channel import WebhookChannel, WebhookConfig
from proxsave_notify.delivery.webhook.endpoints import (
    Endpoint,
    EndpointAuth,
    load_endpoints,
    parse_headers,
)
from proxsave_notify.delivery.webhook.payloads import (
    build_discord_payload,
    build_generic_payload,
    build_payload,
    build_slack_payload,
    build_teams_payload,
)
from proxsave_notify.report.model import StorageSnapshot

log = logging.getLogger("proxsave-notify.test")


class _FakeResponse:
    def __init__(self, status: int = 200, body: bytes = b"") -> None:
        self.status_code = status
        self._body = body

    def iter_content(self, chunk_size: int = 1024):
        if self._body:
            yield self._body

    def close(self) -> None:
        return None


class _FakeHttpByUrl:
    """
    Endpoints run on parallel threads, so responses are queued per URL.
    """

    def __init__(self, responses: dict[str, list[_FakeResponse]]) -> None:
        self.responses = responses
        self.calls: list[tuple[str, str, dict]] = []
        self._lock = threading.Lock()

    def __call__(self, method, url, **kwargs):
        with self._lock:
            self.calls.append((method, url, kwargs))
            return self.responses[url].pop(0)


def _no_sleep(seconds, cancel=None) -> bool:
    return True


def _channel(*endpoints: Endpoint, **overrides) -> WebhookChannel:
    kwargs = {"enabled": True, "endpoints": list(endpoints), "retry_delay_sec": 0.01}
    kwargs.update(overrides)
    return WebhookChannel(WebhookConfig(**kwargs), sleep=_no_sleep)


# =============================================================================
# PAYLOADS
# =============================================================================
def test_discord_payload(make_report, categories) -> None:
    report = make_report(1, warning_count=6, log_categories=categories(6))
    embed = build_discord_payload(report)["embeds"][0]

    assert embed["title"] == "⚠️ PVE Backup Report"
    assert embed["color"] == 16753920
    assert embed["timestamp"] == "2025-11-14T10:30:45Z"
    assert embed["footer"]["text"] == "Proxmox Backup Script v1.2.3 • Exit Code: 1"
    names = [f["name"] for f in embed["fields"]]
    assert "Secondary Storage" not in names
    top = embed["fields"][-1]
    assert top["name"] == "Top Issues"
    assert top["value"].count("[WARNING]") == 5
    assert top["value"].endswith("... and 1 more\n```")


def test_slack_payload_only_lists_issues_when_present(make_report, categories) -> None:
    clean = build_slack_payload(make_report())["blocks"]
    assert clean[0]["text"]["text"] == "✅ PVE Backup Report"
    assert not any("Errors:" in str(b) for b in clean)

    report = make_report(2, error_count=2, log_categories=categories(2, "ERROR"))
    blocks = build_slack_payload(report)["blocks"]
    issues = blocks[-2]["text"]["text"]
    assert issues.startswith("*Errors:* 2 | *Warnings:* 0")
    assert "• [ERROR] issue 0 (×1)" in issues
    assert blocks[-1]["type"] == "context"


def test_teams_payload(make_report) -> None:
    cloud = StorageSnapshot(enabled=True, status="error", summary="0/3")
    payload = build_teams_payload(make_report(2, cloud=cloud))

    assert payload["themeColor"] == "E74C3C"
    card = payload["attachments"][0]["content"]
    assert card["type"] == "AdaptiveCard"
    facts = {f["title"]: f["value"] for f in card["body"][2]["facts"]}
    assert facts["Cloud Storage"] == "❌ 0/3"
    assert facts["Exit Code"] == "2"


def test_generic_payload(make_report) -> None:
    secondary = StorageSnapshot(enabled=True, status="ok", summary="3/3", count=3, free="1 TB")
    payload = build_generic_payload(make_report(secondary=secondary))

    assert payload["status"] == "success"
    assert payload["timestamp_iso"] == "2025-11-14T10:30:45Z"
    assert payload["backup"]["size_bytes"] == 1536
    assert payload["storage"]["secondary"]["free"] == "1 TB"
    assert "cloud" not in payload["storage"]
    assert "log_categories" not in payload


def test_disabled_local_storage_renders_as_disabled(make_report) -> None:
    local = StorageSnapshot(enabled=False, status="ok", summary="0/7")
    report = make_report(local=local)

    fields = build_discord_payload(report)["embeds"][0]["fields"]
    local_field = next(f for f in fields if f["name"] == "Local Storage")
    assert local_field["value"] == "➖ 0/7"

    generic = build_generic_payload(report)["storage"]["local"]
    assert (generic["status"], generic["emoji"]) == ("disabled", "➖")


def test_unknown_format_falls_back_to_generic(make_report, caplog) -> None:
    report = make_report()
    assert build_payload("mattermost", report, log) == build_generic_payload(report)
    assert any(r.getMessage() == "webhook_unknown_format" for r in caplog.records)


# =============================================================================
# ENDPOINT CONFIG
# =============================================================================
def test_load_endpoints_from_env() -> None:
    env = {
        "WEBHOOK_OPS_TEAM_URL": "https://hooks.example.com/ops",
        "WEBHOOK_OPS_TEAM_FORMAT": "slack",
        "WEBHOOK_OPS_TEAM_HEADERS": "X-Team: ops, X-Env:prod,broken",
        "WEBHOOK_OPS_TEAM_AUTH_TYPE": "bearer",
        "WEBHOOK_OPS_TEAM_AUTH_TOKEN": "t0k",
        "WEBHOOK_AUDIT_METHOD": "PUT",
    }
    endpoints = load_endpoints(["ops-team", " ", "audit"], env, default_format="discord")

    assert len(endpoints) == 1
    ep = endpoints[0]
    assert (ep.name, ep.format, ep.method) == ("ops-team", "slack", "POST")
    assert ep.headers == {"X-Team": "ops", "X-Env": "prod"}
    assert ep.auth == EndpointAuth(type="bearer", token="t0k")


def test_parse_headers_keeps_colons_in_values() -> None:
    assert parse_headers("Link:https://example.com") == {"Link": "https://example.com"}
    assert parse_headers("") == {}


# =============================================================================
# CHANNEL
# =============================================================================
def test_requires_endpoints_when_enabled() -> None:
    with pytest.raises(ConfigurationError, match="no endpoints configured"):
        WebhookChannel(WebhookConfig(enabled=True))


def test_unknown_auth_type_rejected() -> None:
    ep = Endpoint(name="ops", url="https://e.com", auth=EndpointAuth(type="digest"))
    with pytest.raises(ConfigurationError, match="unknown auth type: digest for endpoint ops"):
        _channel(ep)


def test_quota_429_is_not_retried(monkeypatch, make_report) -> None:
    url = "https://hooks.example.com/quota"
    fake = _FakeHttpByUrl(
        {url: [_FakeResponse(429, b'{"message":"Quota per server exceeded"}')]}
    )
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    result = _channel(Endpoint(name="q", url=url)).send(make_report(), cancel=threading.Event())
    assert not result.ok
    assert len(fake.calls) == 1
    assert result.error == "all 1 endpoints failed: rate limit exceeded: Quota per server exceeded"
    assert result.meta["failure_count"] == 1


def test_one_good_endpoint_is_enough(monkeypatch, make_report) -> None:
    good = "https://hooks.example.com/good"
    fake = _FakeHttpByUrl({good: [_FakeResponse(200)]})
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    channel = _channel(
        Endpoint(name="files", url="ftp://files.example.com/drop"),
        Endpoint(name="good", url=good),
    )
    result = channel.send(make_report(), cancel=threading.Event())

    assert result.ok
    assert result.error is None
    assert result.meta["success_count"] == 1
    assert result.meta["failure_count"] == 1
    assert result.meta["endpoints"] == [
        {"name": "files", "ok": False, "error": "invalid URL scheme 'ftp' for endpoint files"},
        {"name": "good", "ok": True, "error": None},
    ]
    assert [c[1] for c in fake.calls] == [good]


def test_all_failed_reports_first_error_in_order(monkeypatch, make_report) -> None:
    a, b = "https://a.example.com/hook", "https://b.example.com/hook"
    fake = _FakeHttpByUrl({a: [_FakeResponse(404)], b: [_FakeResponse(401)]})
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    channel = _channel(Endpoint(name="a", url=a), Endpoint(name="b", url=b))
    result = channel.send(make_report(), cancel=threading.Event())

    assert not result.ok
    assert result.error_code == ErrCode.TRANSPORT
    assert result.error == "all 2 endpoints failed: endpoint not found (HTTP 404)"


def test_server_errors_exhaust_retries(monkeypatch, make_report) -> None:
    url = "https://hooks.example.com/flaky"
    fake = _FakeHttpByUrl({url: [_FakeResponse(503, b"busy")] * 3})
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    result = _channel(Endpoint(name="flaky", url=url), max_retries=2).send(
        make_report(), cancel=threading.Event()
    )
    assert len(fake.calls) == 3
    assert result.meta["endpoints"][0]["error"] == (
        "webhook failed after 3 attempts: server error (HTTP 503): busy"
    )


def test_headers_and_hmac_signature(monkeypatch, make_report) -> None:
    url = "https://hooks.example.com/signed"
    fake = _FakeHttpByUrl({url: [_FakeResponse(204)]})
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    ep = Endpoint(
        name="signed",
        url=url,
        format="discord",
        headers={"Host": "evil.example", "Content-Type": "text/plain", "X-Team": "ops"},
        auth=EndpointAuth(type="hmac", secret="s3cret"),
    )
    result = _channel(ep).send(make_report(), cancel=threading.Event())
    assert result.ok

    _, _, kwargs = fake.calls[0]
    headers, body = kwargs["headers"], kwargs["data"]
    assert headers["Content-Type"] == "application/json"
    assert headers["User-Agent"] == "proxsave/1.2.3"
    assert headers["X-Team"] == "ops"
    assert "Host" not in headers
    assert headers["X-Signature"] == hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    assert "embeds" in json.loads(body)


def test_get_sends_no_body(monkeypatch, make_report) -> None:
    url = "https://hooks.example.com/ping"
    fake = _FakeHttpByUrl({url: [_FakeResponse(200)]})
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    ep = Endpoint(name="ping", url=url, method="get")
    assert _channel(ep).send(make_report(), cancel=threading.Event()).ok

    method, _, kwargs = fake.calls[0]
    assert method == "GET"
    assert kwargs["data"] is None
    assert "Content-Type" not in kwargs["headers"]


def test_bearer_without_token_fails_endpoint(monkeypatch, make_report) -> None:
    fake = _FakeHttpByUrl({})
    monkeypatch.setattr("proxsave_notify.delivery.http.requests.request", fake)

    ep = Endpoint(name="ops", url="https://e.com/hook", auth=EndpointAuth(type="bearer"))
    result = _channel(ep).send(make_report(), cancel=threading.Event())
    assert result.error == "all 1 endpoints failed: authentication failed: bearer token is empty"
    assert fake.calls == []
