"""
Webhook channel: one payload per endpoint, endpoints delivered in parallel.

Notes:
- success when at least one endpoint answers 2xx
- each endpoint runs its own retry loop (WEBHOOK_MAX_RETRIES/WEBHOOK_RETRY_DELAY)
- per-endpoint outcomes are collected in configuration order
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from proxsave_notify.common.errors import ConfigurationError, DeliveryError, ErrCode
from proxsave_notify.common.logging import get_channel_logger
from proxsave_notify.common.time import sleep_unless_cancelled
from proxsave_notify.report.model import Report
from proxsave_notify.report.report_map import encode_document

from ..base import DeliveryResult
from ..http import (
    BODYLESS_METHODS,
    DEFAULT_TIMEOUT_SEC,
    HttpReply,
    SleepFn,
    Verdict,
    auth_headers,
    is_quota_limit,
    json_detail,
    mask_url,
    masked_headers,
    sanitize_headers,
    send_with_retry,
    validate_http_url,
)
from .endpoints import DEFAULT_METHOD, Endpoint
from .payloads import FORMAT_GENERIC, build_payload

TARGET = "webhook"
RATE_LIMIT_PAUSE_SEC = 10.0

_AUTH_TYPES = ("", "none", "bearer", "basic", "hmac", "hmac-sha256")


@dataclass
class WebhookConfig:
    enabled: bool = False
    endpoints: list[Endpoint] = field(default_factory=list)
    default_format: str = FORMAT_GENERIC
    timeout_sec: float = DEFAULT_TIMEOUT_SEC
    max_retries: int = 3
    retry_delay_sec: float = 2.0


@dataclass
class EndpointOutcome:
    name: str
    ok: bool
    error: str | None = None
    status_code: int | None = None


def webhook_policy(reply: HttpReply, attempt: int, max_retries: int) -> Verdict:
    status, body = reply.status_code, reply.body
    if 200 <= status < 300:
        return Verdict(action="ok")
    if status == 400:
        return Verdict(action="fail", error=f"bad request (HTTP 400): {body}")
    if status == 401:
        return Verdict(action="fail", error="authentication failed (HTTP 401)")
    if status == 403:
        return Verdict(action="fail", error=f"forbidden (HTTP 403): {body}")
    if status == 404:
        return Verdict(action="fail", error="endpoint not found (HTTP 404)")
    if status == 429:
        detail = json_detail(body, "message", "error") or body.strip()
        if is_quota_limit(detail):
            return Verdict(action="fail", error=f"rate limit exceeded: {detail}", code=ErrCode.QUOTA)
        return Verdict(
            action="retry",
            error="rate limit exceeded (HTTP 429)",
            code=ErrCode.RATE_LIMIT,
            pause_sec=RATE_LIMIT_PAUSE_SEC,
        )
    if status >= 500:
        return Verdict(action="retry", error=f"server error (HTTP {status}): {body}")
    return Verdict(action="retry", error=f"unexpected status (HTTP {status}): {body}")


class WebhookChannel:
    name = "webhook"
    critical = False

    def __init__(
        self,
        config: WebhookConfig,
        *,
        sleep: SleepFn = sleep_unless_cancelled,
        log: logging.Logger | None = None,
    ) -> None:
        if config.enabled and not config.endpoints:
            raise ConfigurationError("webhook notifications enabled but no endpoints configured")
        for ep in config.endpoints:
            if (ep.auth.type or "").strip().lower() not in _AUTH_TYPES:
                raise ConfigurationError(
                    f"unknown auth type: {ep.auth.type} for endpoint {ep.name}"
                )
        if config.timeout_sec <= 0:
            config.timeout_sec = DEFAULT_TIMEOUT_SEC
        if config.max_retries < 0:
            config.max_retries = 0
        if config.retry_delay_sec <= 0:
            config.retry_delay_sec = 2.0

        self.config = config
        self.enabled = config.enabled and bool(config.endpoints)
        self.sleep = sleep
        self.log = log or get_channel_logger("webhook")

        for i, ep in enumerate(config.endpoints, start=1):
            self.log.debug(
                "webhook_endpoint_configured",
                extra={
                    "payload": {
                        "index": i,
                        "name": ep.name,
                        "url": mask_url(ep.url),
                        "format": ep.format or config.default_format,
                        "method": ep.method,
                        "auth_type": ep.auth.type,
                        "headers": sorted(ep.headers),
                    }
                },
            )

    # -------------------------------------------------------------------------
    # One endpoint
    # -------------------------------------------------------------------------
    def _request_headers(
        self, endpoint: Endpoint, method: str, body: bytes, script_version: str
    ) -> dict[str, str]:
        headers: dict[str, str] = {}
        if method not in BODYLESS_METHODS:
            headers["Content-Type"] = "application/json"
        headers["User-Agent"] = f"proxsave/{script_version}"
        headers.update(sanitize_headers(endpoint.headers, self.log))
        a = endpoint.auth
        try:
            headers.update(
                auth_headers(
                    a.type,
                    body=body,
                    token=a.token,
                    user=a.user,
                    password=a.password,
                    secret=a.secret,
                )
            )
        except DeliveryError as e:
            raise DeliveryError(ErrCode.CONFIGURATION, f"authentication failed: {e.message}") from e
        return headers

    def send_to_endpoint(
        self, endpoint: Endpoint, report: Report, cancel: threading.Event
    ) -> EndpointOutcome:
        fmt = endpoint.format or self.config.default_format or FORMAT_GENERIC
        method = (endpoint.method or "").strip().upper() or DEFAULT_METHOD
        body = encode_document(build_payload(fmt, report, self.log))

        try:
            validate_http_url(endpoint.url, endpoint=endpoint.name)
            headers = self._request_headers(endpoint, method, body, report.script_version)
            self.log.debug(
                "webhook_request",
                extra={
                    "payload": {
                        "endpoint": endpoint.name,
                        "method": method,
                        "url": mask_url(endpoint.url),
                        "format": fmt,
                        "bytes": len(body),
                        "headers": masked_headers(headers),
                    }
                },
            )
            reply = send_with_retry(
                target=TARGET,
                method=method,
                url=endpoint.url,
                headers=headers,
                body=None if method in BODYLESS_METHODS else body,
                timeout=self.config.timeout_sec,
                max_retries=self.config.max_retries,
                retry_delay=self.config.retry_delay_sec,
                policy=webhook_policy,
                cancel=cancel,
                log=self.log,
                exhausted_message="webhook failed",
                sleep=self.sleep,
            )
        except DeliveryError as e:
            self.log.warning(
                "webhook_endpoint_failed",
                extra={"payload": {"endpoint": endpoint.name, "err": e.message, "code": e.code}},
            )
            status_code = (e.details or {}).get("status_code")
            return EndpointOutcome(
                name=endpoint.name, ok=False, error=e.message, status_code=status_code
            )

        self.log.info(
            "webhook_endpoint_sent",
            extra={"payload": {"endpoint": endpoint.name, "status_code": reply.status_code}},
        )
        return EndpointOutcome(name=endpoint.name, ok=True, status_code=reply.status_code)

    # -------------------------------------------------------------------------
    # Channel
    # -------------------------------------------------------------------------
    def send(self, report: Report, *, cancel: threading.Event) -> DeliveryResult:
        started = time.monotonic()
        result = DeliveryResult(ok=False, provider=self.name, method="webhook")
        if not self.enabled:
            self.log.debug("webhook_disabled")
            return result

        endpoints = list(self.config.endpoints)
        with ThreadPoolExecutor(max_workers=len(endpoints), thread_name_prefix="webhook") as pool:
            futures = [pool.submit(self.send_to_endpoint, ep, report, cancel) for ep in endpoints]
            outcomes = [f.result() for f in futures]

        succeeded = [o for o in outcomes if o.ok]
        failed = [o for o in outcomes if not o.ok]
        result.meta.update(
            success_count=len(succeeded),
            failure_count=len(failed),
            endpoints=[{"name": o.name, "ok": o.ok, "error": o.error} for o in outcomes],
        )
        result.duration_sec = time.monotonic() - started

        if succeeded:
            result.ok = True
            return result

        result.error = f"all {len(endpoints)} endpoints failed: {failed[0].error}"
        result.error_code = ErrCode.TRANSPORT
        return result
