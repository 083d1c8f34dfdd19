"""
Structured report document shared by the cloud relay and the generic webhook.

Purpose:
- typed sections with a total constructor (ReportMap.from_report)
- one deterministic JSON encoding: compact, keys sorted, HTML-sensitive
  characters escaped as \\u003c/\\u003e/\\u0026, integral floats without ".0"

Notes:
- the relay server recomputes the HMAC over the exact bytes it receives,
  so everything signed must come out of encode_document()
- `Struct` marks mappings whose key order is part of the wire format
  (log categories, the relay envelope) and must not be sorted
"""

from __future__ import annotations

import json
import math
from typing import Any

from pydantic import BaseModel, ConfigDict

from .model import LogCategory, Report, format_duration, status_color, storage_emoji

_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class Struct(dict):
    """Mapping serialized in insertion order."""


def _normalize(value: Any) -> Any:
    if isinstance(value, Struct):
        return {k: _normalize(v) for k, v in value.items()}
    if isinstance(value, dict):
        return {k: _normalize(value[k]) for k in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, float) and math.isfinite(value) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def encode_document(value: Any) -> bytes:
    text = json.dumps(_normalize(value), ensure_ascii=False, separators=(",", ":"))
    for char, escaped in _ESCAPES.items():
        text = text.replace(char, escaped)
    return text.encode("utf-8")


def log_summary_color(errors: int, warnings: int) -> str:
    if errors > 0:
        return "#dc3545"
    if warnings > 0:
        return "#ffc107"
    return "#28a745"


def cloud_path_display(path: str) -> str:
    return path if path else "Not configured"


def category_struct(category: LogCategory) -> Struct:
    out = Struct(label=category.label, type=category.type, count=category.count)
    if category.example:
        out["example"] = category.example
    return out


# =============================================================================
# SECTIONS
# =============================================================================
class _Section(BaseModel):
    model_config = ConfigDict(frozen=True)


class Emojis(_Section):
    primary: str
    secondary: str
    cloud: str
    email: str


class BackupLocation(_Section):
    status: str
    emoji: str
    count: int


class BackupLocations(_Section):
    primary: BackupLocation
    secondary: BackupLocation
    cloud: BackupLocation


class StorageUsage(_Section):
    space: str
    used: str
    free: str
    percent: str
    percent_num: float


class StorageUsageMap(_Section):
    local: StorageUsage
    secondary: StorageUsage | None = None


class Metrics(_Section):
    backup_file_name: str
    files_included: int
    file_missing: int
    backup_duration: str
    backup_size: str
    compression_type: str
    compression_level: str
    compression_mode: str
    compression_ratio: str


class LogSummary(_Section):
    errors: int
    warnings: int
    total: int
    log_file: str
    categories: tuple[LogCategory, ...]
    color: str
    has_categories: bool
    has_entries: bool


class Paths(_Section):
    local: str
    secondary: str
    cloud: str
    cloud_display: str
    has_secondary: bool
    has_cloud: bool


class ReportMap(_Section):
    status: str
    status_message: str
    status_color: str
    proxmox_type: str
    hostname: str
    server_id: str
    server_mac: str
    backup_date: str
    script_version: str
    emojis: Emojis
    backup: BackupLocations
    storage: StorageUsageMap
    metrics: Metrics
    log_summary: LogSummary
    paths: Paths
    exit_code: int

    @classmethod
    def from_report(cls, report: Report) -> ReportMap:
        local, secondary, cloud = report.local, report.secondary, report.cloud

        def _usage(s) -> StorageUsage:
            return StorageUsage(
                space=s.free,
                used=s.used,
                free=s.free,
                percent=s.percent,
                percent_num=s.usage_percent,
            )

        def _location(s) -> BackupLocation:
            return BackupLocation(status=s.summary, emoji=s.emoji, count=s.count)

        return cls(
            status=report.status.value,
            status_message=report.status_message,
            status_color=status_color(report.status),
            proxmox_type=report.proxmox_type.value,
            hostname=report.hostname,
            server_id=report.server_id,
            server_mac=report.server_mac,
            backup_date=report.backup_date.strftime("%Y-%m-%d %H:%M:%S"),
            script_version=report.script_version,
            emojis=Emojis(
                primary=local.emoji,
                secondary=secondary.emoji,
                cloud=cloud.emoji,
                email=storage_emoji(report.email_status),
            ),
            backup=BackupLocations(
                primary=_location(local),
                secondary=_location(secondary),
                cloud=_location(cloud),
            ),
            storage=StorageUsageMap(
                local=_usage(local),
                secondary=_usage(secondary) if secondary.enabled else None,
            ),
            metrics=Metrics(
                backup_file_name=report.backup_file_name,
                files_included=report.files_included,
                file_missing=report.files_missing,
                backup_duration=format_duration(report.backup_duration_sec),
                backup_size=report.backup_size_hr,
                compression_type=report.compression_type,
                compression_level=str(report.compression_level),
                compression_mode=report.compression_mode,
                compression_ratio=f"{report.compression_ratio:.2f}",
            ),
            log_summary=LogSummary(
                errors=report.error_count,
                warnings=report.warning_count,
                total=report.total_issues,
                log_file=report.log_file_path,
                categories=report.log_categories,
                color=log_summary_color(report.error_count, report.warning_count),
                has_categories=bool(report.log_categories),
                has_entries=report.error_count > 0 or report.warning_count > 0,
            ),
            paths=Paths(
                local=local.path,
                secondary=secondary.path,
                cloud=cloud.path,
                cloud_display=cloud_path_display(cloud.path),
                has_secondary=secondary.enabled,
                has_cloud=cloud.enabled,
            ),
            exit_code=report.exit_code,
        )

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump(exclude={"log_summary"})
        if doc["storage"].get("secondary") is None:
            doc["storage"].pop("secondary", None)
        summary = self.log_summary.model_dump(exclude={"categories"})
        # an empty category list is encoded as null
        summary["categories"] = (
            [category_struct(c) for c in self.log_summary.categories]
            if self.log_summary.categories
            else None
        )
        doc["log_summary"] = summary
        return doc


class RelayPayload(_Section):
    to: str
    subject: str
    report: ReportMap
    t: int
    server_mac: str

    def to_document(self) -> Struct:
        return Struct(
            to=self.to,
            subject=self.subject,
            report=self.report.to_document(),
            t=self.t,
            server_mac=self.server_mac,
        )

    def encode(self) -> bytes:
        return encode_document(self.to_document())
