"""
Backup report model: the immutable input of every notification channel.

Purpose:
- one frozen value describing a finished backup run
- status derived from the exit code (0 success, 1 warning, anything else failure)
- small formatting helpers shared by templates and payload builders

Notes:
- storage records with enabled=False are kept but always render as "disabled"
- LogCategory counts never exceed the error+warning totals
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Status(str, enum.Enum):
    success = "success"
    warning = "warning"
    failure = "failure"


class ProxmoxType(str, enum.Enum):
    pve = "pve"
    pbs = "pbs"
    unknown = "unknown"


class StorageState(str, enum.Enum):
    ok = "ok"
    warning = "warning"
    error = "error"
    disabled = "disabled"
    skipped = "skipped"


_STATUS_MESSAGES = {
    Status.success: "Backup completed successfully",
    Status.warning: "Backup completed with warnings",
    Status.failure: "Backup failed",
}

_STATUS_EMOJI = {
    Status.success: "✅",
    Status.warning: "⚠️",
    Status.failure: "❌",
}

_STATUS_COLORS = {
    Status.success: "#4CAF50",
    Status.warning: "#FF9800",
    Status.failure: "#F44336",
}

_STORAGE_EMOJI = {
    "ok": "✅",
    "success": "✅",
    "warning": "⚠️",
    "error": "❌",
    "failed": "❌",
    "disabled": "➖",
    "skipped": "➖",
}

UNKNOWN_EMOJI = "❓"
UNKNOWN_COLOR = "#9E9E9E"


# =============================================================================
# STATUS HELPERS
# =============================================================================
def status_from_exit_code(exit_code: int) -> Status:
    if exit_code == 0:
        return Status.success
    if exit_code == 1:
        return Status.warning
    return Status.failure


def status_message(status: Status | str) -> str:
    return _STATUS_MESSAGES.get(_as_status(status), "Backup status unknown")


def status_emoji(status: Status | str | None) -> str:
    return _STATUS_EMOJI.get(_as_status(status), UNKNOWN_EMOJI)


def status_color(status: Status | str | None) -> str:
    return _STATUS_COLORS.get(_as_status(status), UNKNOWN_COLOR)


def storage_emoji(state: str | None) -> str:
    return _STORAGE_EMOJI.get((state or "").strip(), UNKNOWN_EMOJI)


def _as_status(status: Status | str | None) -> Status | None:
    if isinstance(status, Status):
        return status
    try:
        return Status(status)
    except ValueError:
        return None


# =============================================================================
# FORMATTING HELPERS
# =============================================================================
def format_duration(seconds: float) -> str:
    """
    "< 1s", "42s", "3m 5s", "2h 15m 30s" (zero parts are omitted).
    """
    if seconds < 1:
        return "< 1s"
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        parts = [(hours, "h"), (minutes, "m"), (secs, "s")]
    elif minutes > 0:
        parts = [(minutes, "m"), (secs, "s")]
    else:
        parts = [(secs, "s")]
    return " ".join(f"{value}{unit}" for value, unit in parts if value > 0)


def format_bytes_hr(size: int) -> str:
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.2f} {'KMGTP'[exp]}B"


def usage_percent(free_bytes: int, total_bytes: int) -> float:
    if total_bytes <= 0:
        return 0.0
    used = max(0, total_bytes - free_bytes)
    return used / total_bytes * 100.0


def format_percent(percent: float) -> str:
    if percent <= 0:
        return "0%"
    return f"{percent:.1f}%"


def backup_status_summary(policy: str, count: int, limit: int) -> str:
    """
    "X/-" for GFS retention, "X/?" when no limit is known, "X/Y" otherwise.
    """
    if policy == "gfs":
        return f"{count}/-"
    if limit <= 0:
        return f"{max(count, 0)}/?"
    return f"{count}/{limit}"


def value_or_na(value: str | None) -> str:
    text = (value or "").strip()
    return text if text else "N/A"


# =============================================================================
# VALUE TYPES
# =============================================================================
class LogCategory(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    type: str  # ERROR|WARNING
    count: int = Field(default=1, ge=0)
    example: str = ""


class GfsCounters(BaseModel):
    model_config = ConfigDict(frozen=True)

    daily: int = 0
    weekly: int = 0
    monthly: int = 0
    yearly: int = 0


class StorageSnapshot(BaseModel):
    """
    One backup location (local, secondary or cloud).
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    status: str = StorageState.disabled.value
    summary: str = ""
    count: int = 0
    free: str = ""
    used: str = ""
    percent: str = ""
    usage_percent: float = Field(default=0.0, ge=0.0, le=100.0)
    path: str = ""
    retention_policy: str = ""  # simple|gfs
    retention_limit: int = 0
    gfs_limits: GfsCounters = Field(default_factory=GfsCounters)
    gfs_current: GfsCounters = Field(default_factory=GfsCounters)

    @property
    def effective_status(self) -> str:
        if not self.enabled:
            return StorageState.disabled.value
        return self.status

    @property
    def emoji(self) -> str:
        return storage_emoji(self.effective_status)

    @property
    def has_usage(self) -> bool:
        return self.free not in {"", "N/A"}

    @property
    def bar_class(self) -> str:
        return usage_bar_class(self.usage_percent)


def usage_bar_class(percent: float) -> str:
    if percent > 85:
        return "critical"
    if percent > 70:
        return "warning"
    return "normal"


class Report(BaseModel):
    """
    Completed backup run. Built once by the backup pipeline, never mutated.
    """

    model_config = ConfigDict(frozen=True)

    # identity
    hostname: str
    proxmox_type: ProxmoxType = ProxmoxType.unknown
    server_id: str = ""
    server_mac: str = ""
    script_version: str = ""
    exit_code: int = 0

    # outcome
    status: Status = Status.success
    status_message: str = ""

    # backup
    backup_date: datetime
    backup_duration_sec: float = Field(default=0.0, ge=0.0)
    backup_file: str = ""
    backup_file_name: str = ""
    backup_size: int = Field(default=0, ge=0)
    backup_size_hr: str = ""
    compression_type: str = ""
    compression_level: int = 0
    compression_mode: str = ""
    compression_ratio: float = 0.0
    files_included: int = Field(default=0, ge=0)
    files_missing: int = Field(default=0, ge=0)

    # storage
    local: StorageSnapshot = Field(
        default_factory=lambda: StorageSnapshot(enabled=True, status=StorageState.ok.value)
    )
    secondary: StorageSnapshot = Field(default_factory=StorageSnapshot)
    cloud: StorageSnapshot = Field(default_factory=StorageSnapshot)

    # issues
    error_count: int = Field(default=0, ge=0)
    warning_count: int = Field(default=0, ge=0)
    total_issues: int = Field(default=0, ge=0)
    log_file_path: str = ""
    log_categories: tuple[LogCategory, ...] = ()

    # channel cross-talk (informational)
    email_status: str = ""
    telegram_status: str = ""

    @model_validator(mode="before")
    @classmethod
    def _derive_outcome(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        exit_code = int(data.get("exit_code", 0) or 0)
        status = data.get("status") or status_from_exit_code(exit_code)
        data["status"] = status
        if not data.get("status_message"):
            data["status_message"] = status_message(status)
        if not data.get("total_issues"):
            data["total_issues"] = int(data.get("error_count", 0) or 0) + int(
                data.get("warning_count", 0) or 0
            )
        if not data.get("backup_size_hr") and data.get("backup_size"):
            data["backup_size_hr"] = format_bytes_hr(int(data["backup_size"]))
        return data

    @model_validator(mode="after")
    def _check_invariants(self) -> Report:
        expected = status_from_exit_code(self.exit_code)
        if self.status != expected:
            raise ValueError(
                f"status {self.status.value!r} is inconsistent with exit code {self.exit_code}"
            )
        categorized = sum(c.count for c in self.log_categories)
        if categorized > self.error_count + self.warning_count:
            raise ValueError("log category counts exceed error+warning totals")
        return self

    @classmethod
    def from_exit_code(cls, exit_code: int, **fields: Any) -> Report:
        status = status_from_exit_code(exit_code)
        fields.setdefault("status_message", status_message(status))
        return cls(exit_code=exit_code, status=status, **fields)

    # -------------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------------
    @property
    def flavor(self) -> str:
        return self.proxmox_type.value.upper()

    @property
    def status_emoji(self) -> str:
        return status_emoji(self.status)

    @property
    def status_color(self) -> str:
        return status_color(self.status)

    @property
    def duration_human(self) -> str:
        return format_duration(self.backup_duration_sec)

    def storages(self) -> dict[str, StorageSnapshot]:
        return {"local": self.local, "secondary": self.secondary, "cloud": self.cloud}

    def with_channel_status(
        self, *, email_status: str | None = None, telegram_status: str | None = None
    ) -> Report:
        """
        Copy carrying channel status tokens; the original stays untouched.
        """
        update: dict[str, str] = {}
        if email_status is not None:
            update["email_status"] = email_status
        if telegram_status is not None:
            update["telegram_status"] = telegram_status
        return self.model_copy(update=update)
