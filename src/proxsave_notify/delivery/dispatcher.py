"""
Notification dispatcher.

Algorithm:
- every enabled channel gets its own worker thread and the same frozen report
- results come back in channel order; disabled channels are skipped (no result)
- each dispatch gets its own cancel event, linked to the caller's event when one
  is given; the caller's event is never set here
- the overall deadline turns unfinished channels into timeout failures,
  sets that dispatch's cancel event and returns without waiting for them

Notes:
- no channel error escapes dispatch(); unexpected exceptions become
  failed results with error_code="internal"
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError

from proxsave_notify.common.errors import ErrCode
from proxsave_notify.common.logging import get_channel_logger
from proxsave_notify.common.metrics import record_notification, track_channel_latency
from proxsave_notify.report.model import Report

from .base import Channel, DeliveryResult
from .results import describe_result, fail_result

DEFAULT_DISPATCH_TIMEOUT_SEC = 120.0
LINK_POLL_SEC = 0.05


def _outcome(result: DeliveryResult) -> str:
    if result.error_code == ErrCode.TIMEOUT:
        return "timeout"
    if not result.ok:
        return "failed"
    if result.used_fallback:
        return "fallback"
    return "ok"


def _link_cancel(parent: threading.Event | None, done: threading.Event) -> threading.Event:
    """
    Fresh event that follows `parent` until `done` is set.
    """
    child = threading.Event()
    if parent is None:
        return child
    if parent.is_set():
        child.set()
        return child

    def _follow() -> None:
        while not done.is_set():
            if parent.wait(LINK_POLL_SEC):
                child.set()
                return

    threading.Thread(target=_follow, name="notify-cancel-link", daemon=True).start()
    return child


class Dispatcher:
    def __init__(
        self,
        channels: Sequence[Channel],
        *,
        cancel: threading.Event | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.channels = list(channels)
        self.cancel = cancel
        self.log = log or get_channel_logger("dispatcher")

    def _run_channel(
        self, channel: Channel, report: Report, cancel: threading.Event
    ) -> DeliveryResult:
        self.log.info("channel_start", extra={"payload": {"channel": channel.name}})
        started = time.monotonic()
        with track_channel_latency(channel.name):
            try:
                result = channel.send(report, cancel=cancel)
            except Exception as e:
                self.log.error(
                    "channel_crashed",
                    exc_info=True,
                    extra={"payload": {"channel": channel.name}},
                )
                result = fail_result(channel.name, f"unexpected error: {e}", code=ErrCode.INTERNAL)
        if not result.duration_sec:
            result.duration_sec = time.monotonic() - started
        self._log_result(channel.name, result)
        return result

    def _log_result(self, name: str, result: DeliveryResult) -> None:
        payload = {
            "channel": name,
            "method": result.method,
            "outcome": describe_result(result),
            "duration_sec": round(result.duration_sec, 3),
        }
        if not result.ok:
            payload.update(err=result.error, code=result.error_code)
            self.log.warning("channel_result", extra={"payload": payload})
        elif result.used_fallback:
            payload["primary_err"] = result.error
            self.log.warning("channel_result", extra={"payload": payload})
        else:
            self.log.info("channel_result", extra={"payload": payload})
        record_notification(channel=name, result=_outcome(result))

    def dispatch(
        self, report: Report, *, timeout: float | None = DEFAULT_DISPATCH_TIMEOUT_SEC
    ) -> list[DeliveryResult]:
        active: list[Channel] = []
        for channel in self.channels:
            if not channel.enabled:
                self.log.debug("channel_skipped", extra={"payload": {"channel": channel.name}})
                record_notification(channel=channel.name, result="skipped")
                continue
            active.append(channel)
        if not active:
            self.log.info("no_channels_enabled")
            return []

        done = threading.Event()
        cancel = _link_cancel(self.cancel, done)
        deadline = None if timeout is None else time.monotonic() + timeout
        pool = ThreadPoolExecutor(max_workers=len(active), thread_name_prefix="notify")
        futures: list[tuple[Channel, Future[DeliveryResult]]] = [
            (ch, pool.submit(self._run_channel, ch, report, cancel)) for ch in active
        ]

        results: list[DeliveryResult] = []
        timed_out = False
        try:
            for channel, future in futures:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                try:
                    results.append(future.result(timeout=remaining))
                except FutureTimeoutError:
                    timed_out = True
                    results.append(self._timeout_result(channel, timeout))
        finally:
            if timed_out:
                cancel.set()
            done.set()
            pool.shutdown(wait=not timed_out, cancel_futures=timed_out)
        return results

    def _timeout_result(self, channel: Channel, timeout: float | None) -> DeliveryResult:
        result = fail_result(
            channel.name,
            f"notification timed out after {timeout:g}s",
            code=ErrCode.TIMEOUT,
        )
        result.duration_sec = float(timeout or 0.0)
        self.log.warning(
            "channel_timeout",
            extra={"payload": {"channel": channel.name, "timeout_sec": timeout}},
        )
        record_notification(channel=channel.name, result="timeout")
        return result
