"""
Delivery result helpers.

Purpose:
- build failed results consistently
- short human descriptions for logs and the CLI summary
- severity tokens fed back into the report (email/telegram status)
"""

from __future__ import annotations

from collections.abc import Iterable

from proxsave_notify.common.errors import ErrCode
from proxsave_notify.report.model import Report

from .base import DeliveryResult

_METHOD_LABELS = {
    "email-relay": "cloud relay",
    "email-sendmail": "sendmail",
    "email-pmf": "proxmox-mail-forward",
    "email-pmf-fallback": "proxmox-mail-forward fallback",
}


def fail_result(
    provider: str,
    error: str,
    *,
    code: str = ErrCode.TRANSPORT,
    method: str = "",
    meta: dict | None = None,
) -> DeliveryResult:
    return DeliveryResult(
        ok=False,
        provider=provider,
        method=method,
        error=error,
        error_code=code,
        meta=dict(meta or {}),
    )


def describe_method(method: str) -> str:
    return _METHOD_LABELS.get(method, method)


def describe_result(result: DeliveryResult) -> str:
    if not result.ok:
        return f"failed: {result.error or 'unknown error'}"
    if result.used_fallback:
        return f"sent via {describe_method(result.method)}"
    return f"sent ({describe_method(result.method)})"


def result_severity(result: DeliveryResult | None) -> str:
    """
    ok | warning | error | disabled; the tokens storage_emoji() understands.
    """
    if result is None:
        return "disabled"
    if not result.ok:
        return "error"
    if result.used_fallback:
        return "warning"
    return "ok"


def annotate_report(report: Report, results: Iterable[DeliveryResult]) -> Report:
    """
    Copy of `report` with the email/telegram status tokens filled from `results`.
    """
    by_provider = {r.provider: r for r in results}
    return report.with_channel_status(
        email_status=result_severity(by_provider.get("email")),
        telegram_status=result_severity(by_provider.get("telegram")),
    )
