"""
Shared errors and error codes.

Purpose:
- stable codes carried in delivery results and logs
- one exception style across channels and transports
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Setup
    CONFIGURATION = "configuration"
    RESOLUTION = "resolution"

    # Delivery
    TRANSPORT = "transport"
    PROTOCOL = "protocol"
    RATE_LIMIT = "rate_limit"
    QUOTA = "quota"
    FORMAT = "format"
    VERIFICATION = "verification"

    # Dispatch
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


@dataclass
class AppError(Exception):
    """
    Base application error.
    - code: stable error code (ErrCode)
    - message: human readable, safe to log
    - details: extra context (no secrets)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:
        return self.message


class ConfigurationError(AppError):
    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(ErrCode.CONFIGURATION, message, details)


class DeliveryError(AppError):
    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(code, message, details)


class CancelledError(DeliveryError):
    def __init__(self, message: str = "notification cancelled") -> None:
        super().__init__(ErrCode.CANCELLED, message)
