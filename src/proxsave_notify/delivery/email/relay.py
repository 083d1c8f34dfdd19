"""
Cloud relay transport: signed JSON POST to the email relay worker.

Notes:
- the body is encoded once and signed once; retries resend the same bytes
- a quota-classified 429 is terminal so the email channel can fall back
- relay credentials must be injected (no built-in defaults)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from proxsave_notify.common.errors import DeliveryError, ErrCode
from proxsave_notify.common.logging import get_channel_logger
from proxsave_notify.common.time import sleep_unless_cancelled
from proxsave_notify.report.report_map import RelayPayload

from ..http import (
    HttpReply,
    SleepFn,
    Verdict,
    is_quota_limit,
    json_detail,
    mask_url,
    send_with_retry,
    sign_body,
)

TARGET = "cloud_relay"
RATE_LIMIT_PAUSE_SEC = 5.0


@dataclass
class RelayConfig:
    url: str = ""
    token: str = ""
    hmac_secret: str = ""
    timeout_sec: float = 30.0
    max_retries: int = 2
    retry_delay_sec: float = 2.0

    def missing(self) -> list[str]:
        out = []
        if not self.url:
            out.append("CLOUD_RELAY_URL")
        if not self.token:
            out.append("CLOUD_RELAY_TOKEN")
        if not self.hmac_secret:
            out.append("CLOUD_RELAY_HMAC_SECRET")
        return out


def relay_policy(reply: HttpReply, attempt: int, max_retries: int) -> Verdict:
    status = reply.status_code
    if 200 <= status < 300:
        return Verdict(action="ok")
    if status == 400:
        detail = json_detail(reply.body, "error")
        return Verdict(action="fail", error=f"bad request (HTTP 400): {detail}")
    if status == 401:
        return Verdict(action="fail", error="authentication failed (HTTP 401): invalid token")
    if status == 403:
        return Verdict(
            action="fail", error="forbidden (HTTP 403): HMAC signature validation failed"
        )
    if status == 404:
        return Verdict(action="fail", error="endpoint not found (HTTP 404)")
    if status == 429:
        detail = json_detail(reply.body, "message", "error") or "no additional details provided"
        if is_quota_limit(detail):
            return Verdict(action="fail", error=f"rate limit exceeded: {detail}", code=ErrCode.QUOTA)
        if attempt >= max_retries:
            return Verdict(
                action="fail", error=f"rate limit exceeded: {detail}", code=ErrCode.RATE_LIMIT
            )
        return Verdict(
            action="retry",
            error="rate limit exceeded",
            code=ErrCode.RATE_LIMIT,
            pause_sec=RATE_LIMIT_PAUSE_SEC,
            skip_next_delay=True,
        )
    if status in (500, 502, 503, 504):
        return Verdict(action="retry", error=f"server error (HTTP {status}): {reply.body}")
    return Verdict(action="retry", error=f"unexpected status (HTTP {status}): {reply.body}")


def relay_headers(
    config: RelayConfig, body: bytes, *, script_version: str, server_mac: str
) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {config.token}",
        "X-Signature": sign_body(body, config.hmac_secret),
        "X-Script-Version": script_version,
        "X-Server-MAC": server_mac,
        "User-Agent": f"proxsave/{script_version}",
    }


def send_via_relay(
    config: RelayConfig,
    payload: RelayPayload,
    *,
    script_version: str,
    cancel: threading.Event | None = None,
    log: logging.Logger | None = None,
    sleep: SleepFn = sleep_unless_cancelled,
) -> None:
    """
    Raises DeliveryError when the relay did not accept the request.
    """
    log = log or get_channel_logger("email")
    missing = config.missing()
    if missing:
        raise DeliveryError(
            ErrCode.CONFIGURATION,
            f"cloud relay is not configured (missing {', '.join(missing)})",
        )

    body = payload.encode()
    headers = relay_headers(
        config, body, script_version=script_version, server_mac=payload.server_mac
    )
    log.debug(
        "relay_request",
        extra={"payload": {"url": mask_url(config.url), "bytes": len(body)}},
    )
    send_with_retry(
        target=TARGET,
        method="POST",
        url=config.url,
        headers=headers,
        body=body,
        timeout=config.timeout_sec,
        max_retries=config.max_retries,
        retry_delay=config.retry_delay_sec,
        policy=relay_policy,
        cancel=cancel,
        log=log,
        exhausted_message="cloud relay failed",
        sleep=sleep,
    )
