"""
Outbound HTTP core shared by relay, telegram, gotify and webhooks.

Purpose:
- single-shot requests with capped body reads
- a retry loop driven by a per-transport status policy
- signing, auth headers, header hygiene, URL/header masking for logs

Notes:
- every attempt observes the cancel event; sleeps end early when it fires
- all calls go through requests.request (tests patch that one entry point)
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

import requests

from proxsave_notify.common.errors import CancelledError, DeliveryError, ErrCode
from proxsave_notify.common.metrics import record_http_attempt
from proxsave_notify.common.time import sleep_unless_cancelled
from proxsave_notify.common.utils import b64_encode, hmac_sha256_hex

DEFAULT_TIMEOUT_SEC = 30.0
HANDSHAKE_TIMEOUT_SEC = 5.0

BODY_READ_CAP = 64 * 1024
SINGLE_SHOT_READ_CAP = 2048
PREVIEW_CAP = 500

MASK = "***MASKED***"
INVALID_URL_MASK = "***INVALID_URL***"

QUOTA_KEYWORDS = ("quota", "per server", "per account", "daily", "write me on github")
BLOCKED_HEADERS = frozenset({"host", "content-length", "content-type", "transfer-encoding"})
_SENSITIVE_HEADER_PARTS = ("auth", "token", "key", "secret")
BODYLESS_METHODS = frozenset({"GET", "HEAD"})

SleepFn = Callable[[float, threading.Event | None], bool]


@dataclass
class HttpReply:
    status_code: int
    body: str


@dataclass
class Verdict:
    """
    What the retry loop does with one response.
    - action: ok | fail | retry
    - pause_sec: extra cooldown taken right away (rate limiting)
    - skip_next_delay: the cooldown replaces the regular inter-retry delay
    """

    action: str
    error: str = ""
    code: str = ErrCode.PROTOCOL
    pause_sec: float = 0.0
    skip_next_delay: bool = False


StatusPolicy = Callable[[HttpReply, int, int], Verdict]


# =============================================================================
# MASKING / HYGIENE
# =============================================================================
def mask_url(raw_url: str) -> str:
    """
    scheme://host kept; path, query and fragment replaced by a placeholder.
    """
    try:
        parts = urlsplit(raw_url)
    except ValueError:
        return INVALID_URL_MASK
    if not parts.scheme or not parts.netloc:
        return INVALID_URL_MASK
    out = f"{parts.scheme}://{parts.netloc}"
    if parts.path:
        out += f"/{MASK}"
    if parts.query:
        out += f"?{MASK}"
    if parts.fragment:
        out += f"#{MASK}"
    return out


def mask_header_value(name: str, value: str) -> str:
    lowered = name.lower()
    if not any(part in lowered for part in _SENSITIVE_HEADER_PARTS):
        return value
    if len(value) > 10:
        return value[:4] + MASK
    return MASK


def masked_headers(headers: dict[str, str]) -> dict[str, str]:
    return {k: mask_header_value(k, v) for k, v in headers.items()}


def sanitize_headers(headers: dict[str, str], log: logging.Logger) -> dict[str, str]:
    """
    Drops empty names and protected transport headers (case-insensitive).
    """
    accepted: dict[str, str] = {}
    for name, value in headers.items():
        key = name.strip()
        if not key:
            log.warning("webhook_header_skipped", extra={"payload": {"reason": "empty_name"}})
            continue
        if key.lower() in BLOCKED_HEADERS:
            log.warning(
                "webhook_header_skipped",
                extra={"payload": {"reason": "protected", "header": key}},
            )
            continue
        accepted[key] = value
    return accepted


def validate_http_url(raw_url: str, *, endpoint: str = "") -> str:
    """
    Returns the scheme; raises DeliveryError for unparsable or non-http(s) URLs.
    """
    try:
        parts = urlsplit(raw_url)
    except ValueError as e:
        raise DeliveryError(ErrCode.CONFIGURATION, f"invalid webhook URL: {e}") from e
    if parts.scheme not in ("http", "https"):
        suffix = f" for endpoint {endpoint}" if endpoint else ""
        raise DeliveryError(
            ErrCode.CONFIGURATION, f"invalid URL scheme {parts.scheme!r}{suffix}"
        )
    return parts.scheme


# =============================================================================
# SIGNING / AUTH
# =============================================================================
def sign_body(body: bytes, secret: str) -> str:
    return hmac_sha256_hex(body, secret)


def auth_headers(
    auth_type: str,
    *,
    body: bytes,
    token: str = "",
    user: str = "",
    password: str = "",
    secret: str = "",
) -> dict[str, str]:
    kind = (auth_type or "").strip().lower()
    if kind in ("", "none"):
        return {}
    if kind == "bearer":
        if not token:
            raise DeliveryError(ErrCode.CONFIGURATION, "bearer token is empty")
        return {"Authorization": f"Bearer {token}"}
    if kind == "basic":
        if not user or not password:
            raise DeliveryError(ErrCode.CONFIGURATION, "basic auth user or password is empty")
        return {"Authorization": "Basic " + b64_encode(f"{user}:{password}".encode())}
    if kind in ("hmac", "hmac-sha256"):
        if not secret:
            raise DeliveryError(ErrCode.CONFIGURATION, "HMAC secret is empty")
        return {"X-Signature": sign_body(body, secret), "X-Signature-Algorithm": "hmac-sha256"}
    raise DeliveryError(ErrCode.CONFIGURATION, f"unknown auth type: {auth_type}")


# =============================================================================
# RESPONSE HELPERS
# =============================================================================
def is_quota_limit(detail: str) -> bool:
    lowered = (detail or "").lower()
    return any(k in lowered for k in QUOTA_KEYWORDS)


def json_detail(body: str, *keys: str) -> str:
    """
    First non-empty string among `keys` of a JSON object body, else "".
    """
    try:
        data = json.loads(body) if body else None
    except ValueError:
        return ""
    if not isinstance(data, dict):
        return ""
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def read_body(response: Any, limit: int = BODY_READ_CAP) -> str:
    """
    Reads at most `limit` bytes and always closes the response.
    """
    buf = bytearray()
    try:
        for chunk in response.iter_content(chunk_size=1024):
            if not chunk:
                continue
            buf.extend(chunk)
            if len(buf) >= limit:
                break
    finally:
        response.close()
    return bytes(buf[:limit]).decode("utf-8", errors="replace")


def preview(body: str, limit: int = PREVIEW_CAP) -> str:
    if len(body) > limit:
        return body[:limit] + "..."
    return body


# =============================================================================
# REQUESTS
# =============================================================================
def request_once(
    *,
    target: str,
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    body: bytes | None = None,
    form: dict[str, str] | None = None,
    timeout: float = DEFAULT_TIMEOUT_SEC,
    read_cap: int = BODY_READ_CAP,
) -> HttpReply:
    """
    One HTTP call; network failures surface as DeliveryError(transport).
    """
    try:
        response = requests.request(
            method,
            url,
            data=form if form is not None else body,
            headers=headers,
            timeout=timeout,
            stream=True,
        )
    except requests.RequestException as e:
        record_http_attempt(target=target, outcome="error")
        raise DeliveryError(ErrCode.TRANSPORT, f"request failed: {e}") from e
    try:
        text = read_body(response, read_cap)
    except requests.RequestException as e:
        record_http_attempt(target=target, outcome="error")
        raise DeliveryError(ErrCode.TRANSPORT, f"failed to read response: {e}") from e
    return HttpReply(status_code=int(response.status_code), body=text)


def send_with_retry(
    *,
    target: str,
    method: str,
    url: str,
    headers: dict[str, str],
    body: bytes | None,
    timeout: float,
    max_retries: int,
    retry_delay: float,
    policy: StatusPolicy,
    cancel: threading.Event | None,
    log: logging.Logger,
    exhausted_message: str,
    sleep: SleepFn = sleep_unless_cancelled,
) -> HttpReply:
    """
    Runs up to max_retries+1 attempts.

    Terminal verdicts raise DeliveryError with the verdict's message; exhausting
    the budget raises "{exhausted_message} after N attempts: {last error}".
    """
    max_retries = max(0, int(max_retries))
    attempts = max_retries + 1
    last = Verdict(action="retry", error="no attempt made", code=ErrCode.TRANSPORT)
    skip_delay = False

    for attempt in range(attempts):
        if attempt > 0:
            if skip_delay:
                skip_delay = False
            elif not sleep(retry_delay, cancel):
                raise CancelledError()
            log.debug(
                "http_retry",
                extra={"payload": {"target": target, "attempt": attempt + 1, "of": attempts}},
            )
        if cancel is not None and cancel.is_set():
            raise CancelledError()

        try:
            reply = request_once(
                target=target,
                method=method,
                url=url,
                headers=headers,
                body=body,
                timeout=timeout,
            )
        except DeliveryError as e:
            last = Verdict(action="retry", error=e.message, code=e.code)
            log.warning(
                "http_request_failed",
                extra={
                    "payload": {
                        "target": target,
                        "url": mask_url(url),
                        "attempt": attempt + 1,
                        "of": attempts,
                        "err": e.message,
                    }
                },
            )
            continue

        verdict = policy(reply, attempt, max_retries)
        log.debug(
            "http_response",
            extra={
                "payload": {
                    "target": target,
                    "status_code": reply.status_code,
                    "body": preview(reply.body),
                }
            },
        )
        if verdict.action == "ok":
            record_http_attempt(target=target, outcome="ok")
            return reply
        if verdict.action == "fail":
            record_http_attempt(target=target, outcome="terminal")
            raise DeliveryError(verdict.code, verdict.error, {"status_code": reply.status_code})

        record_http_attempt(target=target, outcome="retry")
        log.warning(
            "http_retryable_status",
            extra={
                "payload": {
                    "target": target,
                    "status_code": reply.status_code,
                    "attempt": attempt + 1,
                    "of": attempts,
                }
            },
        )
        last = verdict
        if verdict.pause_sec > 0 and attempt < max_retries:
            if not sleep(verdict.pause_sec, cancel):
                raise CancelledError()
            skip_delay = verdict.skip_next_delay

    raise DeliveryError(last.code, f"{exhausted_message} after {attempts} attempts: {last.error}")
