"""
Time helpers.

Purpose:
- one place for "now" (UTC and unix seconds)
- cancellable sleeps for retry delays and verification pauses
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def unix_now() -> int:
    """
    Current unix time in whole seconds.
    """
    return int(utc_now().timestamp())


def sleep_unless_cancelled(seconds: float, cancel: threading.Event | None = None) -> bool:
    """
    Sleeps up to `seconds`; returns False when the cancel event fired first.
    """
    if seconds <= 0:
        return not (cancel is not None and cancel.is_set())
    if cancel is None:
        threading.Event().wait(seconds)
        return True
    return not cancel.wait(seconds)
