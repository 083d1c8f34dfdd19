"""
Shared utilities.

Rules:
- only genuinely shared helpers live here
- no channel logic
"""

from __future__ import annotations

import base64
import hashlib
import hmac


def b64_encode(data: bytes) -> str:
    """
    base64(bytes) -> str
    """
    return base64.b64encode(data).decode("ascii")


def hmac_sha256_hex(payload: bytes, secret: str) -> str:
    """
    Lowercase hex HMAC-SHA256 of the exact payload bytes.
    """
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def truncate(value: str, max_len: int, suffix: str = "") -> str:
    if max_len <= 0 or len(value) <= max_len:
        return value
    return value[:max_len] + suffix

