"""
Prometheus metrics for notification dispatch.

Purpose:
- per-channel outcome counters and latency
- per-target HTTP attempt counters (retries become visible)
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Histogram

# =============================================================================
# COUNTERS AND HISTOGRAMS
# =============================================================================

NOTIFICATIONS_TOTAL = Counter(
    "proxsave_notifications_total",
    "Notification outcomes per channel",
    ["channel", "result"],  # result=ok|fallback|failed|skipped|timeout
)

NOTIFICATION_LATENCY_MS = Histogram(
    "proxsave_notification_latency_ms",
    "Channel send latency (ms)",
    ["channel"],
    buckets=(50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000, 120000),
)

HTTP_ATTEMPTS_TOTAL = Counter(
    "proxsave_http_attempts_total",
    "Outbound HTTP attempts",
    ["target", "outcome"],  # outcome=ok|retry|terminal|error
)


@contextmanager
def track_channel_latency(channel: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        NOTIFICATION_LATENCY_MS.labels(channel=channel).observe(elapsed_ms)


def record_notification(*, channel: str, result: str) -> None:
    NOTIFICATIONS_TOTAL.labels(channel=channel, result=result).inc()


def record_http_attempt(*, target: str, outcome: str) -> None:
    HTTP_ATTEMPTS_TOTAL.labels(target=target, outcome=outcome).inc()
