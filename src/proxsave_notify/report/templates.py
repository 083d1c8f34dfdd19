"""
Human-readable renderings of a Report: email subject, plain text, HTML, Telegram text.

Purpose:
- one Jinja2 environment over the bundled templates/ directory
- HTML is autoescaped, text templates are not
- every render is a pure function of the Report
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, select_autoescape

from .model import Report, StorageSnapshot, storage_emoji, value_or_na

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

RECOMMENDATION_THRESHOLD = 85.0

_GREEN = "#4CAF50"
_ORANGE = "#FF9800"
_RED = "#F44336"


@lru_cache(maxsize=1)
def _jinja() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        autoescape=select_autoescape(["html", "xml", "html.j2"], default_for_string=False),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters["na"] = value_or_na
    return env


def _render(name: str, **context: Any) -> str:
    return _jinja().get_template(name).render(**context)


# =============================================================================
# CONTEXT
# =============================================================================
def _base_context(report: Report) -> dict[str, Any]:
    return {
        "r": report,
        "flavor": report.flavor,
        "status_emoji": report.status_emoji,
        "status_upper": report.status.value.upper(),
        "date_long": report.backup_date.strftime("%Y-%m-%d %H:%M:%S"),
        "date_short": report.backup_date.strftime("%Y-%m-%d %H:%M"),
        "duration": report.duration_human,
        "compression_ratio": f"{report.compression_ratio:.2f}",
    }


def locations_color(report: Report) -> str:
    states = {s.effective_status for s in report.storages().values()}
    if "error" in states:
        return _RED
    if "warning" in states:
        return _ORANGE
    return _GREEN


def summary_color(report: Report) -> str:
    if report.error_count > 0:
        return _RED
    if report.warning_count > 0:
        return _ORANGE
    return _GREEN


def _location(title: str, storage: StorageSnapshot, show_bar: bool) -> dict[str, Any]:
    return {
        "title": title,
        "emoji": storage.emoji,
        "summary": storage.summary,
        "show_bar": show_bar,
        "used": storage.used,
        "free": storage.free,
        "percent": storage.percent,
        "bar_class": storage.bar_class,
        "width": f"{storage.usage_percent:.1f}",
    }


def _info_rows(report: Report) -> list[tuple[str, str]]:
    rows = [
        ("Backup File", report.backup_file),
        ("File Size", report.backup_size_hr),
        ("Included Files", str(report.files_included)),
        ("Missing Files", str(report.files_missing)),
        ("Duration", report.duration_human),
        ("Compression Ratio", f"{report.compression_ratio:.2f}%"),
        ("Compression Type", f"{report.compression_type} (level: {report.compression_level})"),
        ("Backup Mode", report.compression_mode),
        ("Server MAC Address", report.server_mac),
        ("Server ID", report.server_id),
        ("Telegram Status", report.telegram_status),
        ("Local Path", report.local.path),
    ]
    if report.secondary.enabled and report.secondary.path:
        rows.append(("Secondary Path", report.secondary.path))
    if report.cloud.enabled and report.cloud.path:
        rows.append(("Cloud Storage", report.cloud.path))
    return rows


def _recommendations(report: Report) -> list[tuple[str, str]]:
    out: list[tuple[str, str]] = []
    if report.local.usage_percent > RECOMMENDATION_THRESHOLD:
        out.append(("Local", f"{report.local.usage_percent:.1f}"))
    if report.secondary.enabled and report.secondary.usage_percent > RECOMMENDATION_THRESHOLD:
        out.append(("Secondary", f"{report.secondary.usage_percent:.1f}"))
    return out


# =============================================================================
# RENDERERS
# =============================================================================
def build_subject(report: Report) -> str:
    stamp = report.backup_date.strftime("%Y-%m-%d %H:%M")
    return f"{report.status_emoji} {report.flavor} Backup on {report.hostname} - {stamp}"


def render_text(report: Report) -> str:
    return _render("report.txt.j2", **_base_context(report))


def render_html(report: Report) -> str:
    locations = [
        _location("Local Storage", report.local, report.local.has_usage),
        _location(
            "Secondary Storage",
            report.secondary,
            report.secondary.enabled and report.secondary.has_usage,
        ),
        _location("Cloud Storage", report.cloud, False),
    ]
    html = _render(
        "report.html.j2",
        status_color=report.status_color,
        locations_color=locations_color(report),
        summary_color=summary_color(report),
        locations=locations,
        info_rows=_info_rows(report),
        recommendations=_recommendations(report),
        **_base_context(report),
    )
    return html.rstrip("\n")


def build_telegram_text(report: Report) -> str:
    """
    Compact emoji summary; plain UTF-8, no markup.
    """
    text = _render(
        "telegram.txt.j2",
        email_emoji=storage_emoji(report.email_status),
        **_base_context(report),
    )
    return text.rstrip("\n")
