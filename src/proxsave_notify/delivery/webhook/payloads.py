"""
Webhook payload builders (discord | slack | teams | generic).

Every builder returns a plain JSON-able dict; the channel encodes it with
encode_document() so key order and escaping are stable across runs.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from proxsave_notify.report.model import LogCategory, Report, Status, StorageSnapshot

FORMAT_DISCORD = "discord"
FORMAT_SLACK = "slack"
FORMAT_TEAMS = "teams"
FORMAT_GENERIC = "generic"

TOP_ISSUES_LIMIT = 5

_DISCORD_COLORS = {
    Status.success: 3066993,
    Status.warning: 16753920,
    Status.failure: 15158332,
}
_DISCORD_DEFAULT_COLOR = 9807270

_TEAMS_COLORS = {
    Status.success: "2ECC71",
    Status.warning: "FFA500",
    Status.failure: "E74C3C",
}
_TEAMS_DEFAULT_COLOR = "95A5A6"

ADAPTIVE_CARD_SCHEMA = "http://adaptivecards.io/schemas/adaptive-card.json"
ADAPTIVE_CARD_CONTENT_TYPE = "application/vnd.microsoft.card.adaptive"


# =============================================================================
# SHARED PIECES
# =============================================================================
def _date(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _iso(dt: datetime) -> str:
    text = dt.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        return text[: -len("+00:00")] + "Z"
    return text


def _title(report: Report) -> str:
    return f"{report.status_emoji} {report.flavor} Backup Report"


def _description(report: Report) -> str:
    return f"Backup completed with status: **{report.status.value}** on {report.hostname}"


def _storage_line(storage: StorageSnapshot) -> str:
    return f"{storage.emoji} {storage.summary}"


def _optional_storages(report: Report) -> list[tuple[str, StorageSnapshot]]:
    out = []
    if report.secondary.enabled:
        out.append(("Secondary Storage", report.secondary))
    if report.cloud.enabled:
        out.append(("Cloud Storage", report.cloud))
    return out


def _top_issues(
    categories: tuple[LogCategory, ...],
    line: Callable[[LogCategory], str],
    overflow: Callable[[int], str],
) -> str:
    text = ""
    for i, cat in enumerate(categories):
        if i >= TOP_ISSUES_LIMIT:
            text += overflow(len(categories) - TOP_ISSUES_LIMIT)
            break
        text += line(cat)
    return text


# =============================================================================
# DISCORD
# =============================================================================
def build_discord_payload(report: Report) -> dict[str, Any]:
    status_line = f"{report.status_emoji} {report.status.value}"
    fields: list[dict[str, Any]] = [
        {"name": "Hostname", "value": report.hostname, "inline": True},
        {"name": "Status", "value": status_line, "inline": True},
        {"name": "Date", "value": _date(report.backup_date), "inline": True},
        {"name": "Duration", "value": report.duration_human, "inline": True},
        {"name": "Size", "value": report.backup_size_hr, "inline": True},
        {
            "name": "Compression",
            "value": f"{report.compression_type} ({report.compression_ratio:.2f}%)",
            "inline": True,
        },
        {"name": "Local Storage", "value": _storage_line(report.local), "inline": True},
    ]
    for label, storage in _optional_storages(report):
        fields.append({"name": label, "value": _storage_line(storage), "inline": True})
    fields.append(
        {
            "name": "Issues",
            "value": f"Errors: {report.error_count}, Warnings: {report.warning_count}",
            "inline": False,
        }
    )
    if report.log_categories:
        text = _top_issues(
            report.log_categories,
            lambda c: f"[{c.type}] {c.label} (count: {c.count})\n",
            lambda n: f"... and {n} more\n",
        )
        fields.append({"name": "Top Issues", "value": f"```\n{text}```", "inline": False})

    embed = {
        "title": _title(report),
        "description": _description(report),
        "color": _DISCORD_COLORS.get(report.status, _DISCORD_DEFAULT_COLOR),
        "fields": fields,
        "footer": {
            "text": f"Proxmox Backup Script v{report.script_version} • Exit Code: {report.exit_code}"
        },
        "timestamp": _iso(report.backup_date),
    }
    return {"embeds": [embed]}


# =============================================================================
# SLACK
# =============================================================================
def _mrkdwn(text: str) -> dict[str, str]:
    return {"type": "mrkdwn", "text": text}


def build_slack_payload(report: Report) -> dict[str, Any]:
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": _title(report)}},
        {
            "type": "section",
            "fields": [
                _mrkdwn(f"*Hostname:*\n{report.hostname}"),
                _mrkdwn(f"*Status:*\n{report.status_emoji} {report.status.value}"),
                _mrkdwn(f"*Date:*\n{_date(report.backup_date)}"),
                _mrkdwn(f"*Duration:*\n{report.duration_human}"),
            ],
        },
        {"type": "divider"},
        {
            "type": "section",
            "fields": [
                _mrkdwn(f"*Size:*\n{report.backup_size_hr}"),
                _mrkdwn(
                    f"*Compression:*\n{report.compression_type} ({report.compression_ratio:.2f}%)"
                ),
                _mrkdwn(f"*Files:*\n{report.files_included} included"),
                _mrkdwn(f"*Exit Code:*\n{report.exit_code}"),
            ],
        },
        {"type": "divider"},
    ]

    storage_fields = [_mrkdwn(f"*Local Storage:*\n{_storage_line(report.local)}")]
    for label, storage in _optional_storages(report):
        storage_fields.append(_mrkdwn(f"*{label}:*\n{_storage_line(storage)}"))
    blocks.append({"type": "section", "fields": storage_fields})

    if report.error_count > 0 or report.warning_count > 0:
        text = f"*Errors:* {report.error_count} | *Warnings:* {report.warning_count}"
        if report.log_categories:
            text += "\n\n*Top Issues:*\n" + _top_issues(
                report.log_categories,
                lambda c: f"• [{c.type}] {c.label} (×{c.count})\n",
                lambda n: f"_... and {n} more_\n",
            )
        blocks.append({"type": "divider"})
        blocks.append({"type": "section", "text": _mrkdwn(text)})

    blocks.append(
        {
            "type": "context",
            "elements": [_mrkdwn(f"Proxmox Backup Script v{report.script_version}")],
        }
    )
    return {"blocks": blocks}


# =============================================================================
# TEAMS
# =============================================================================
def build_teams_payload(report: Report) -> dict[str, Any]:
    compression = (
        f"{report.compression_type} (level {report.compression_level}, "
        f"ratio {report.compression_ratio:.2f}%)"
    )
    facts = [
        {"title": "Hostname", "value": report.hostname},
        {"title": "Status", "value": f"{report.status_emoji} {report.status.value}"},
        {"title": "Date", "value": _date(report.backup_date)},
        {"title": "Duration", "value": report.duration_human},
        {"title": "Size", "value": report.backup_size_hr},
        {"title": "Compression", "value": compression},
        {"title": "Files Included", "value": str(report.files_included)},
        {"title": "Local Storage", "value": _storage_line(report.local)},
    ]
    for label, storage in _optional_storages(report):
        facts.append({"title": label, "value": _storage_line(storage)})
    facts += [
        {"title": "Errors", "value": str(report.error_count)},
        {"title": "Warnings", "value": str(report.warning_count)},
        {"title": "Exit Code", "value": str(report.exit_code)},
    ]

    body: list[dict[str, Any]] = [
        {"type": "TextBlock", "text": _title(report), "weight": "bolder", "size": "large"},
        {"type": "TextBlock", "text": _description(report), "wrap": True, "style": "default"},
        {"type": "FactSet", "facts": facts},
    ]
    if report.log_categories:
        text = "**Top Issues:**\n\n" + _top_issues(
            report.log_categories,
            lambda c: f"• [{c.type}] {c.label} (×{c.count})\n\n",
            lambda n: f"_... and {n} more_",
        )
        body.append({"type": "TextBlock", "text": text, "wrap": True})

    card = {
        "type": "AdaptiveCard",
        "$schema": ADAPTIVE_CARD_SCHEMA,
        "version": "1.5",
        "body": body,
    }
    return {
        "type": "message",
        "attachments": [{"contentType": ADAPTIVE_CARD_CONTENT_TYPE, "content": card}],
        "themeColor": _TEAMS_COLORS.get(report.status, _TEAMS_DEFAULT_COLOR),
    }


# =============================================================================
# GENERIC
# =============================================================================
def _generic_storage(storage: StorageSnapshot, *, usage: bool) -> dict[str, Any]:
    out: dict[str, Any] = {
        "status": storage.effective_status,
        "status_summary": storage.summary,
        "emoji": storage.emoji,
        "count": storage.count,
    }
    if usage:
        out.update(
            free=storage.free,
            used=storage.used,
            percent=storage.percent,
            percent_num=storage.usage_percent,
        )
    return out


def build_generic_payload(report: Report) -> dict[str, Any]:
    storage = {"local": _generic_storage(report.local, usage=True)}
    if report.secondary.enabled:
        storage["secondary"] = _generic_storage(report.secondary, usage=True)
    if report.cloud.enabled:
        storage["cloud"] = _generic_storage(report.cloud, usage=False)

    payload: dict[str, Any] = {
        "status": report.status.value,
        "status_message": report.status_message,
        "status_emoji": report.status_emoji,
        "exit_code": report.exit_code,
        "hostname": report.hostname,
        "proxmox_type": report.proxmox_type.value,
        "server_id": report.server_id,
        "server_mac": report.server_mac,
        "script_version": report.script_version,
        "timestamp": int(report.backup_date.timestamp()),
        "timestamp_iso": _iso(report.backup_date),
        "backup": {
            "file_name": report.backup_file_name,
            "size_bytes": report.backup_size,
            "size_human": report.backup_size_hr,
            "duration_seconds": report.backup_duration_sec,
            "duration_human": report.duration_human,
            "files_included": report.files_included,
            "files_missing": report.files_missing,
        },
        "compression": {
            "type": report.compression_type,
            "level": report.compression_level,
            "mode": report.compression_mode,
            "ratio": report.compression_ratio,
        },
        "storage": storage,
        "issues": {
            "errors": report.error_count,
            "warnings": report.warning_count,
            "total": report.total_issues,
        },
    }
    if report.log_categories:
        payload["log_categories"] = [
            {"type": c.type, "label": c.label, "count": c.count, "example": c.example}
            for c in report.log_categories
        ]
    return payload


_BUILDERS: dict[str, Callable[[Report], dict[str, Any]]] = {
    FORMAT_DISCORD: build_discord_payload,
    FORMAT_SLACK: build_slack_payload,
    FORMAT_TEAMS: build_teams_payload,
    FORMAT_GENERIC: build_generic_payload,
}

FORMATS = tuple(_BUILDERS)


def build_payload(fmt: str, report: Report, log: logging.Logger) -> dict[str, Any]:
    builder = _BUILDERS.get((fmt or "").strip().lower())
    if builder is None:
        log.warning("webhook_unknown_format", extra={"payload": {"format": fmt}})
        builder = build_generic_payload
    return builder(report)
