from __future__ import annotations

import re

from proxsave_notify.report.model import LogCategory, StorageSnapshot
from proxsave_notify.report.templates import (
    build_subject,
    build_telegram_text,
    locations_color,
    render_html,
    render_text,
    summary_color,
)


def test_subject_format(make_report) -> None:
    subject = build_subject(make_report(proxmox_type="pbs"))
    assert re.fullmatch(r"✅ PBS Backup on pve1 - \d{4}-\d{2}-\d{2} \d{2}:\d{2}", subject)
    assert subject.endswith("2025-11-14 10:30")


def test_plain_text_report(make_report) -> None:
    report = make_report(
        1,
        warning_count=1,
        log_file_path="/var/log/proxsave/backup.log",
        log_categories=(
            LogCategory(label="Cloud slow", type="WARNING", count=1, example="rclone 40s"),
        ),
    )
    text = render_text(report)

    assert text.startswith("⚠️ PVE BACKUP REPORT - WARNING\n")
    assert "  Local:     7/7 backups (100 GB free)\n" in text
    assert "Secondary:" not in text
    assert "Compression: zstd (level 6, ratio 42.50%)" in text
    assert "  Log: /var/log/proxsave/backup.log\n" in text
    assert "  - [WARNING] Cloud slow (count: 1)\n    Example: rclone 40s\n" in text
    assert text.rstrip().endswith("Script Version: 1.2.3")


def test_html_is_escaped(make_report) -> None:
    html = render_html(make_report(hostname="<b>evil</b>"))
    assert "&lt;b&gt;evil&lt;/b&gt;" in html
    assert "<b>evil</b>" not in html
    assert not html.endswith("\n")


def test_html_recommends_cleanup_above_threshold(make_report) -> None:
    full = StorageSnapshot(
        enabled=True, status="warning", summary="7/7", free="1 GB", usage_percent=91.2
    )
    html = render_html(make_report(local=full))
    assert "System Recommendations" in html
    assert "91.2" in html


def test_section_colors(make_report) -> None:
    assert summary_color(make_report()) == "#4CAF50"
    assert summary_color(make_report(2, error_count=1)) == "#F44336"
    failing = StorageSnapshot(enabled=True, status="error", summary="0/7")
    assert locations_color(make_report(local=failing)) == "#F44336"
    disabled_error = StorageSnapshot(enabled=False, status="error")
    assert locations_color(make_report(cloud=disabled_error)) == "#4CAF50"


def test_telegram_text(make_report) -> None:
    report = make_report(files_missing=3).with_channel_status(email_status="ok")
    text = build_telegram_text(report)
    lines = text.split("\n")

    assert lines[0] == "✅ Backup pve - pve1"
    assert "✅ Local      (7/7 backups)" in lines
    assert "➖ Secondary  (disabled)" in lines
    assert "➖ Cloud      (disabled)" in lines
    assert "✅ Email" in lines
    assert "⚠️ Missing files: 3" in lines
    assert "📅 Backup date: 2025-11-14 10:30" in lines
    assert lines[-1] == "🔢 Exit code: 0"
