"""
Centralized notification configuration (ENV / .env).

Notes:
- values are read from .env and environment variables
- typed values via pydantic-settings
- any field may be loaded from a file through <ENV_NAME>_FILE
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .secrets import maybe_load_external_secrets

DEFAULT_PMF_CANDIDATES = (
    "/usr/libexec/proxmox-mail-forward,/usr/bin/proxmox-mail-forward,proxmox-mail-forward"
)
DEFAULT_MAIL_LOG_PATHS = "/var/log/mail.log,/var/log/maillog,/var/log/mail.err"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Runtime
    # -------------------------------------------------------------------------
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json|text
    proxmox_type: str = Field(default="unknown", alias="PROXMOX_TYPE")  # pve|pbs|unknown
    dispatch_timeout_sec: float = Field(default=120.0, alias="NOTIFY_DISPATCH_TIMEOUT_SEC")

    # -------------------------------------------------------------------------
    # Email
    # -------------------------------------------------------------------------
    email_enabled: bool = Field(default=True, alias="EMAIL_ENABLED")
    email_delivery_method: str = Field(default="relay", alias="EMAIL_DELIVERY_METHOD")
    # Historical name: enables the proxmox-mail-forward fallback after a relay failure.
    email_fallback_to_forwarder: bool = Field(default=True, alias="EMAIL_FALLBACK_SENDMAIL")
    email_attach_log_file: bool = Field(default=False, alias="EMAIL_ATTACH_LOG")
    email_recipient: str = Field(default="", alias="EMAIL_RECIPIENT")
    email_from: str = Field(default="no-reply@proxmox.tis24.it", alias="EMAIL_FROM")
    email_subject_override: str = Field(default="", alias="EMAIL_SUBJECT")

    # -------------------------------------------------------------------------
    # Cloud relay
    # -------------------------------------------------------------------------
    cloud_relay_url: str = Field(default="", alias="CLOUD_RELAY_URL")
    cloud_relay_token: str = Field(default="", alias="CLOUD_RELAY_TOKEN")
    cloud_relay_hmac_secret: str = Field(default="", alias="CLOUD_RELAY_HMAC_SECRET")
    cloud_relay_timeout_sec: float = Field(default=30.0, alias="CLOUD_RELAY_TIMEOUT")
    cloud_relay_max_retries: int = Field(default=2, alias="CLOUD_RELAY_MAX_RETRIES")
    cloud_relay_retry_delay_sec: float = Field(default=2.0, alias="CLOUD_RELAY_RETRY_DELAY")

    # -------------------------------------------------------------------------
    # Local mail transports
    # -------------------------------------------------------------------------
    sendmail_path: str = Field(default="/usr/sbin/sendmail", alias="SENDMAIL_PATH")
    pmf_candidates: str = Field(default=DEFAULT_PMF_CANDIDATES, alias="PMF_CANDIDATES")
    mail_log_paths: str = Field(default=DEFAULT_MAIL_LOG_PATHS, alias="MAIL_LOG_PATHS")
    postfix_main_cf: str = Field(default="/etc/postfix/main.cf", alias="POSTFIX_MAIN_CF")

    # -------------------------------------------------------------------------
    # Telegram
    # -------------------------------------------------------------------------
    telegram_enabled: bool = Field(default=False, alias="TELEGRAM_ENABLED")
    telegram_mode: str = Field(default="centralized", alias="BOT_TELEGRAM_TYPE")
    telegram_bot_token: str = Field(default="", alias="TELEGRAM_BOT_TOKEN")
    telegram_chat_id: str = Field(default="", alias="TELEGRAM_CHAT_ID")
    telegram_server_api_host: str = Field(
        default="https://bot.tis24.it:1443", alias="TELEGRAM_SERVER_API_HOST"
    )
    server_id: str = Field(default="", alias="SERVER_ID")
    server_mac: str = Field(default="", alias="SERVER_MAC")

    # -------------------------------------------------------------------------
    # Gotify
    # -------------------------------------------------------------------------
    gotify_enabled: bool = Field(default=False, alias="GOTIFY_ENABLED")
    gotify_server_url: str = Field(default="", alias="GOTIFY_SERVER_URL")
    gotify_token: str = Field(default="", alias="GOTIFY_TOKEN")
    gotify_priority_success: int = Field(default=2, alias="GOTIFY_PRIORITY_SUCCESS")
    gotify_priority_warning: int = Field(default=5, alias="GOTIFY_PRIORITY_WARNING")
    gotify_priority_failure: int = Field(default=8, alias="GOTIFY_PRIORITY_FAILURE")

    # -------------------------------------------------------------------------
    # Webhooks (per-endpoint WEBHOOK_<NAME>_* variables are read by the factory)
    # -------------------------------------------------------------------------
    webhook_enabled: bool = Field(default=False, alias="WEBHOOK_ENABLED")
    webhook_endpoints: str = Field(default="", alias="WEBHOOK_ENDPOINTS")
    webhook_default_format: str = Field(default="generic", alias="WEBHOOK_FORMAT")
    webhook_timeout_sec: float = Field(default=30.0, alias="WEBHOOK_TIMEOUT")
    webhook_max_retries: int = Field(default=3, alias="WEBHOOK_MAX_RETRIES")
    webhook_retry_delay_sec: float = Field(default=2.0, alias="WEBHOOK_RETRY_DELAY")


_CSV_ENV_FIELDS = {
    "WEBHOOK_ENDPOINTS",
    "PMF_CANDIDATES",
    "MAIL_LOG_PATHS",
}


def split_csv(raw: str | None) -> list[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


def _normalize_file_value(env_key: str, raw: str) -> str:
    value = (raw or "").strip()
    if env_key in _CSV_ENV_FIELDS and "\n" in value and "," not in value:
        parts = [p.strip() for p in value.splitlines() if p.strip()]
        return ",".join(parts)
    return value


def _collect_file_overrides() -> dict[str, str]:
    aliases = {str(field.alias or name) for name, field in Settings.model_fields.items()}

    overrides: dict[str, str] = {}
    for key, path in os.environ.items():
        if not key.endswith("_FILE"):
            continue
        base = key[: -len("_FILE")]
        if base not in aliases:
            continue
        file_path = (path or "").strip()
        if not file_path:
            continue
        try:
            raw = Path(file_path).read_text(encoding="utf-8")
        except OSError as e:
            logging.getLogger("proxsave-notify").error(
                "config_file_read_failed",
                extra={"payload": {"env_key": key, "path": file_path, "error": str(e)[:200]}},
            )
            raise RuntimeError(f"Failed to read {key} from {file_path}") from e
        overrides[base] = _normalize_file_value(base, raw)
    return overrides


def _build_settings() -> Settings:
    maybe_load_external_secrets()
    return Settings(**_collect_file_overrides())


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = _build_settings()
    return _SETTINGS


def reload_settings() -> Settings:
    global _SETTINGS
    _SETTINGS = _build_settings()
    return _SETTINGS
