"""
Base delivery contracts.

Purpose:
- one result shape for every channel (email/telegram/gotify/webhook)
- one channel protocol the dispatcher can fan out over
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from proxsave_notify.report.model import Report


@dataclass
class DeliveryResult:
    """
    Outcome of one channel send.

    Notes:
    - `error` may be set on success when a fallback carried the message
      (the primary transport's error is kept for diagnostics)
    - `meta` holds method specifics: status_code, mail_queue_id, email_backend, ...
    """

    ok: bool
    provider: str
    method: str = ""
    used_fallback: bool = False
    error: str | None = None
    error_code: str | None = None
    duration_sec: float = 0.0
    meta: dict[str, Any] = field(default_factory=dict)


class Channel(Protocol):
    """
    Notification channel contract.
    """

    name: str
    enabled: bool
    critical: bool

    def send(self, report: Report, *, cancel: threading.Event) -> DeliveryResult: ...
