from __future__ import annotations

import logging

import pytest

from proxsave_notify.common.config import Settings, reload_settings, split_csv
from proxsave_notify.delivery.factory import build_channels


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ("SECRETS_PROVIDER", "EMAIL_RECIPIENT", "WEBHOOK_ENDPOINTS", "EMAIL_RECIPIENT_FILE"):
        monkeypatch.delenv(key, raising=False)


def test_env_aliases(monkeypatch) -> None:
    monkeypatch.setenv("EMAIL_DELIVERY_METHOD", "pmf")
    monkeypatch.setenv("EMAIL_FALLBACK_SENDMAIL", "false")
    monkeypatch.setenv("BOT_TELEGRAM_TYPE", "personal")
    monkeypatch.setenv("GOTIFY_PRIORITY_FAILURE", "9")

    s = reload_settings()
    assert s.email_delivery_method == "pmf"
    assert s.email_fallback_to_forwarder is False
    assert s.telegram_mode == "personal"
    assert s.gotify_priority_failure == 9
    assert s.webhook_default_format == "generic"


def test_dotenv_file_is_read(tmp_path) -> None:
    (tmp_path / ".env").write_text("WEBHOOK_FORMAT=discord\n", encoding="utf-8")
    assert Settings().webhook_default_format == "discord"


def test_file_override(monkeypatch, tmp_path) -> None:
    secret = tmp_path / "recipient"
    secret.write_text("ops@example.com\n", encoding="utf-8")
    monkeypatch.setenv("EMAIL_RECIPIENT_FILE", str(secret))

    assert reload_settings().email_recipient == "ops@example.com"


def test_csv_file_override_accepts_one_per_line(monkeypatch, tmp_path) -> None:
    names = tmp_path / "endpoints"
    names.write_text("ops\naudit\n", encoding="utf-8")
    monkeypatch.setenv("WEBHOOK_ENDPOINTS_FILE", str(names))

    assert split_csv(reload_settings().webhook_endpoints) == ["ops", "audit"]


def test_unreadable_file_override_raises(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("EMAIL_RECIPIENT_FILE", str(tmp_path / "missing"))
    with pytest.raises(RuntimeError, match="Failed to read EMAIL_RECIPIENT_FILE"):
        reload_settings()


def test_invalid_channel_is_left_out(caplog) -> None:
    s = Settings(
        EMAIL_ENABLED=False,
        TELEGRAM_ENABLED=True,
        BOT_TELEGRAM_TYPE="personal",
        TELEGRAM_BOT_TOKEN="not-a-token",
        TELEGRAM_CHAT_ID="42",
    )
    channels = build_channels(s, env={})

    assert [c.name for c in channels] == ["email", "gotify", "webhook"]
    failures = [r for r in caplog.records if r.getMessage() == "notifier_init_failed"]
    assert len(failures) == 1
    assert failures[0].levelno == logging.WARNING
    assert failures[0].payload["channel"] == "telegram"


def test_webhook_endpoints_come_from_env() -> None:
    s = Settings(WEBHOOK_ENABLED=True, WEBHOOK_ENDPOINTS="ops, audit", WEBHOOK_FORMAT="slack")
    env = {"WEBHOOK_OPS_URL": "https://hooks.example.com/ops"}
    webhook = build_channels(s, env=env)[-1]

    assert webhook.enabled
    assert [ep.name for ep in webhook.config.endpoints] == ["ops"]
    assert webhook.config.endpoints[0].format == "slack"
