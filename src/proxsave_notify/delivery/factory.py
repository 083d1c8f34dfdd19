"""
Channel factory: Settings -> configured channels -> Dispatcher.

A channel whose configuration is invalid is logged (notifier_init_failed)
and left out; the remaining channels still run.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping

from proxsave_notify.common.config import Settings, split_csv
from proxsave_notify.common.errors import ConfigurationError
from proxsave_notify.common.logging import get_channel_logger, get_project_logger

from .base import Channel
from .dispatcher import Dispatcher
from .email.channel import EmailChannel, EmailConfig
from .email.forwarder import ForwarderTransport
from .email.process import ProcessRunner, SubprocessRunner
from .email.relay import RelayConfig
from .email.sendmail import SendmailTransport
from .gotify import GotifyChannel, GotifyConfig
from .telegram.channel import TelegramChannel, TelegramConfig
from .webhook.channel import WebhookChannel, WebhookConfig
from .webhook.endpoints import load_endpoints


def build_email_channel(s: Settings, runner: ProcessRunner) -> EmailChannel:
    log = get_channel_logger("email")
    config = EmailConfig(
        enabled=s.email_enabled,
        delivery_method=s.email_delivery_method,
        fallback_to_forwarder=s.email_fallback_to_forwarder,
        attach_log_file=s.email_attach_log_file,
        recipient=s.email_recipient,
        sender=s.email_from,
        subject_override=s.email_subject_override,
        relay=RelayConfig(
            url=s.cloud_relay_url,
            token=s.cloud_relay_token,
            hmac_secret=s.cloud_relay_hmac_secret,
            timeout_sec=s.cloud_relay_timeout_sec,
            max_retries=s.cloud_relay_max_retries,
            retry_delay_sec=s.cloud_relay_retry_delay_sec,
        ),
    )
    sendmail = SendmailTransport(
        sendmail_path=s.sendmail_path,
        mail_log_paths=split_csv(s.mail_log_paths),
        postfix_main_cf=s.postfix_main_cf,
        runner=runner,
        log=log,
    )
    forwarder = ForwarderTransport(candidates=split_csv(s.pmf_candidates), runner=runner, log=log)
    return EmailChannel(
        config,
        proxmox_type=s.proxmox_type,
        runner=runner,
        sendmail=sendmail,
        forwarder=forwarder,
        log=log,
    )


def build_telegram_channel(s: Settings) -> TelegramChannel:
    return TelegramChannel(
        TelegramConfig(
            enabled=s.telegram_enabled,
            mode=s.telegram_mode,
            bot_token=s.telegram_bot_token,
            chat_id=s.telegram_chat_id,
            server_api_host=s.telegram_server_api_host,
            server_id=s.server_id,
        )
    )


def build_gotify_channel(s: Settings) -> GotifyChannel:
    return GotifyChannel(
        GotifyConfig(
            enabled=s.gotify_enabled,
            server_url=s.gotify_server_url,
            token=s.gotify_token,
            priority_success=s.gotify_priority_success,
            priority_warning=s.gotify_priority_warning,
            priority_failure=s.gotify_priority_failure,
        )
    )


def build_webhook_channel(s: Settings, env: Mapping[str, str]) -> WebhookChannel:
    endpoints = load_endpoints(
        split_csv(s.webhook_endpoints), env, default_format=s.webhook_default_format
    )
    return WebhookChannel(
        WebhookConfig(
            enabled=s.webhook_enabled,
            endpoints=endpoints,
            default_format=s.webhook_default_format,
            timeout_sec=s.webhook_timeout_sec,
            max_retries=s.webhook_max_retries,
            retry_delay_sec=s.webhook_retry_delay_sec,
        )
    )


def build_channels(
    s: Settings,
    *,
    env: Mapping[str, str] | None = None,
    runner: ProcessRunner | None = None,
    log: logging.Logger | None = None,
) -> list[Channel]:
    log = log or get_project_logger()
    env = os.environ if env is None else env
    runner = runner or SubprocessRunner()

    builders: list[tuple[str, Callable[[], Channel]]] = [
        ("email", lambda: build_email_channel(s, runner)),
        ("telegram", lambda: build_telegram_channel(s)),
        ("gotify", lambda: build_gotify_channel(s)),
        ("webhook", lambda: build_webhook_channel(s, env)),
    ]
    channels: list[Channel] = []
    for name, build in builders:
        try:
            channels.append(build())
        except ConfigurationError as e:
            log.warning(
                "notifier_init_failed",
                extra={"payload": {"channel": name, "err": e.message}},
            )
    return channels


def build_dispatcher(
    s: Settings,
    *,
    env: Mapping[str, str] | None = None,
    runner: ProcessRunner | None = None,
) -> Dispatcher:
    return Dispatcher(build_channels(s, env=env, runner=runner))
