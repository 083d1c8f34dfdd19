"""
Email channel.

Flow:
- resolve the recipient (config, else root@pam auto-detection)
- pick the transport: relay | sendmail | pmf
- relay failures may fall back once to proxmox-mail-forward

Notes:
- root mailboxes are refused for the relay only
- an email that only "looks" invalid is sent anyway (warning)
- on fallback success the relay error stays in the result for diagnostics
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

from proxsave_notify.common.errors import ConfigurationError, DeliveryError, ErrCode
from proxsave_notify.common.logging import get_channel_logger
from proxsave_notify.common.time import sleep_unless_cancelled, unix_now
from proxsave_notify.report.model import ProxmoxType, Report
from proxsave_notify.report.report_map import RelayPayload, ReportMap
from proxsave_notify.report.templates import build_subject, render_html, render_text

from ..base import DeliveryResult
from ..http import SleepFn
from ..results import describe_method
from .forwarder import ForwarderTransport
from .mime import build_message
from .process import ProcessRunner, SubprocessRunner
from .recipient import detect_recipient, is_root_recipient, is_valid_email
from .relay import RelayConfig, send_via_relay
from .sendmail import SendmailTransport

METHOD_RELAY = "relay"
METHOD_SENDMAIL = "sendmail"
METHOD_PMF = "pmf"
DELIVERY_METHODS = (METHOD_RELAY, METHOD_SENDMAIL, METHOD_PMF)

DEFAULT_SENDER = "no-reply@proxmox.tis24.it"
NO_RECIPIENT_HINT = "(recipient not set - routed by Proxmox Notifications)"


@dataclass
class EmailConfig:
    enabled: bool = True
    delivery_method: str = METHOD_RELAY
    fallback_to_forwarder: bool = True
    attach_log_file: bool = False
    recipient: str = ""
    sender: str = DEFAULT_SENDER
    subject_override: str = ""
    relay: RelayConfig = field(default_factory=RelayConfig)


@dataclass
class _Message:
    recipient: str
    subject: str
    text: str
    html: str


class EmailChannel:
    name = "email"
    critical = False

    def __init__(
        self,
        config: EmailConfig,
        *,
        proxmox_type: ProxmoxType | str = ProxmoxType.unknown,
        runner: ProcessRunner | None = None,
        sendmail: SendmailTransport | None = None,
        forwarder: ForwarderTransport | None = None,
        sleep: SleepFn = sleep_unless_cancelled,
        log: logging.Logger | None = None,
    ) -> None:
        method = (config.delivery_method or "").strip().lower()
        if config.enabled and method not in DELIVERY_METHODS:
            raise ConfigurationError(
                f"invalid email delivery method: {config.delivery_method} "
                "(must be 'relay', 'sendmail', or 'pmf')"
            )
        config.delivery_method = method
        if not config.sender:
            config.sender = DEFAULT_SENDER

        self.config = config
        self.enabled = config.enabled
        self.proxmox_type = proxmox_type
        self.log = log or get_channel_logger("email")
        self.runner = runner or SubprocessRunner()
        self.sleep = sleep
        self.sendmail = sendmail or SendmailTransport(
            runner=self.runner, sleep=sleep, log=self.log
        )
        self.forwarder = forwarder or ForwarderTransport(runner=self.runner, log=self.log)

    # -------------------------------------------------------------------------
    # Recipient
    # -------------------------------------------------------------------------
    def _log_method(self) -> None:
        method = self.config.delivery_method
        if method == METHOD_RELAY:
            fallback = "pmf enabled" if self.config.fallback_to_forwarder else "disabled"
            text = f"relay (fallback: {fallback})"
        elif method == METHOD_SENDMAIL:
            text = f"sendmail ({self.sendmail.sendmail_path})"
        else:
            text = "pmf (proxmox-mail-forward)"
        self.log.info("email_delivery_method", extra={"payload": {"method": text}})

    def resolve_recipient(self) -> str:
        """
        Raises DeliveryError(resolution) when no usable recipient exists for the method.
        """
        method = self.config.delivery_method
        recipient = (self.config.recipient or "").strip()
        auto_detected = False

        if not recipient:
            try:
                recipient = detect_recipient(self.proxmox_type, self.runner).strip()
                auto_detected = True
            except DeliveryError as e:
                self.log.warning("email_recipient_detect_failed", extra={"payload": {"err": e.message}})
                if method != METHOD_PMF:
                    raise DeliveryError(
                        ErrCode.RESOLUTION, f"no valid email recipient: {e.message}"
                    ) from e
                self.log.info(
                    "email_recipient_optional",
                    extra={"payload": {"reason": "pmf routes via Proxmox Notifications"}},
                )

        if not recipient:
            if method in (METHOD_RELAY, METHOD_SENDMAIL):
                raise DeliveryError(ErrCode.RESOLUTION, "no valid email recipient configured")
            self.log.warning("email_recipient_empty", extra={"payload": {"method": method}})

        if method == METHOD_RELAY and is_root_recipient(recipient):
            self.log.warning(
                "email_recipient_root_blocked",
                extra={"payload": {"recipient": recipient, "auto_detected": auto_detected}},
            )
            raise DeliveryError(
                ErrCode.RESOLUTION,
                f"recipient {recipient} is not allowed (root accounts are blocked)",
            )

        if recipient and not is_valid_email(recipient):
            self.log.warning("email_recipient_invalid_format", extra={"payload": {"recipient": recipient}})
        return recipient

    # -------------------------------------------------------------------------
    # Transports
    # -------------------------------------------------------------------------
    def _mime(self, report: Report, msg: _Message) -> str:
        attach = report.log_file_path if self.config.attach_log_file else None
        message, _ = build_message(
            to=msg.recipient,
            sender=self.config.sender,
            subject=msg.subject,
            text_body=msg.text,
            html_body=msg.html,
            attach_path=attach,
        )
        return message

    def _send_relay(self, report: Report, msg: _Message, cancel: threading.Event) -> None:
        payload = RelayPayload(
            to=msg.recipient,
            subject=msg.subject,
            report=ReportMap.from_report(report),
            t=unix_now(),
            server_mac=report.server_mac,
        )
        send_via_relay(
            self.config.relay,
            payload,
            script_version=report.script_version,
            cancel=cancel,
            log=self.log,
            sleep=self.sleep,
        )

    def _send_forwarder(
        self, report: Report, msg: _Message, result: DeliveryResult, cancel: threading.Event
    ) -> None:
        try:
            backend, path = self.forwarder.send(self._mime(report, msg), cancel=cancel)
        except DeliveryError as e:
            result.meta.update(e.details or {})
            raise
        result.meta["email_backend"] = backend
        result.meta["email_backend_path"] = path

    def _send_sendmail(
        self, report: Report, msg: _Message, result: DeliveryResult, cancel: threading.Event
    ) -> None:
        outcome = self.sendmail.send(
            self._mime(report, msg), recipient=msg.recipient, cancel=cancel
        )
        if outcome.queue_id:
            result.meta["mail_queue_id"] = outcome.queue_id
        result.meta["email_backend"] = outcome.backend
        result.meta["email_backend_path"] = outcome.backend_path

    def _deliver(
        self, report: Report, msg: _Message, result: DeliveryResult, cancel: threading.Event
    ) -> None:
        method = self.config.delivery_method
        if method == METHOD_PMF:
            result.method = "email-pmf"
            self._send_forwarder(report, msg, result, cancel)
            return
        if method == METHOD_SENDMAIL:
            result.method = "email-sendmail"
            self._send_sendmail(report, msg, result, cancel)
            return

        result.method = "email-relay"
        try:
            self._send_relay(report, msg, cancel)
        except DeliveryError as relay_err:
            if not self.config.fallback_to_forwarder or relay_err.code == ErrCode.CANCELLED:
                raise
            self.log.warning("email_relay_failed", extra={"payload": {"err": relay_err.message}})
            self.log.info("email_fallback_attempt", extra={"payload": {"to": "pmf"}})
            result.method = "email-pmf-fallback"
            result.used_fallback = True
            self._send_forwarder(report, msg, result, cancel)
            result.error = relay_err.message
            result.error_code = relay_err.code

    # -------------------------------------------------------------------------
    # Channel
    # -------------------------------------------------------------------------
    def send(self, report: Report, *, cancel: threading.Event) -> DeliveryResult:
        started = time.monotonic()
        result = DeliveryResult(ok=False, provider=self.name, method="email")
        if not self.enabled:
            self.log.debug("email_disabled")
            return result

        self._log_method()
        try:
            recipient = self.resolve_recipient()
            subject = (self.config.subject_override or "").strip() or build_subject(report)
            msg = _Message(
                recipient=recipient,
                subject=subject,
                text=render_text(report),
                html=render_html(report),
            )
            self._deliver(report, msg, result, cancel)
        except DeliveryError as e:
            result.ok = False
            result.error = e.message
            result.error_code = e.code
            result.duration_sec = time.monotonic() - started
            self.log.warning(
                "email_send_failed",
                extra={"payload": {"method": result.method, "err": e.message, "code": e.code}},
            )
            return result

        result.ok = True
        result.duration_sec = time.monotonic() - started
        if result.used_fallback:
            self.log.warning("email_sent_via_fallback", extra={"payload": {"relay_err": result.error}})

        if result.method == "email-relay":
            self.log.info(
                "email_relay_accepted",
                extra={"payload": {"recipient": recipient, "via": describe_method(result.method)}},
            )
        else:
            backend = str(result.meta.get("email_backend") or "").strip() or describe_method(
                result.method
            )
            self.log.info(
                "email_handed_off",
                extra={"payload": {"backend": backend, "recipient": recipient or NO_RECIPIENT_HINT}},
            )
        return result
