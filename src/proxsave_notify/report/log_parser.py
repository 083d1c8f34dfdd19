"""
Backup log scanner: error/warning totals and categorized issues.

Understands both line styles written by the backup tool:
- "[2025-11-14 10:30:45] WARNING  message"
- "[WARNING] message"
"""

from __future__ import annotations

import re
from pathlib import Path

from proxsave_notify.common.utils import truncate

from .model import LogCategory, Report

_MARKERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("error", ("[ERROR]", "[Error]", "[error]", "ERROR", "Error")),
    ("warning", ("[WARNING]", "[Warning]", "[warning]", "WARNING", "Warning")),
)
_NESTED_TAGS = ("[Warning]", "[warning]", "[Error]", "[error]")
_RE_COUNTER_PREFIX = re.compile(r"^#\d*")

MESSAGE_MAX_LEN = 200
LABEL_MAX_LEN = 120
DEFAULT_CATEGORY_LIMIT = 10


def classify_log_line(line: str) -> tuple[str, str]:
    """
    Returns (entry_type, message); ("", "") for lines without a marker.
    """
    line = line.strip()
    if not line:
        return "", ""
    for entry_type, markers in _MARKERS:
        for marker in markers:
            idx = line.find(marker)
            if idx == -1:
                continue
            message = _sanitize(line[idx + len(marker) :])
            if message:
                return entry_type, message
    return "", ""


def _sanitize(msg: str) -> str:
    msg = msg.strip()
    for tag in _NESTED_TAGS:
        if msg.startswith(tag):
            msg = msg[len(tag) :].strip()
            break
    if msg.startswith("#"):
        msg = _RE_COUNTER_PREFIX.sub("", msg, count=1).strip()
    return msg[:MESSAGE_MAX_LEN]


def split_category(message: str) -> tuple[str, str]:
    label, sep, example = message.partition(" - ")
    label = label.strip() or message
    example = example.strip() if sep else message
    return truncate(label, LABEL_MAX_LEN), truncate(example, LABEL_MAX_LEN)


def _sort_key(category: LogCategory) -> tuple[int, int, str]:
    return (0 if category.type == "ERROR" else 1, -category.count, category.label)


def parse_log_lines(
    lines: list[str], category_limit: int = 0
) -> tuple[list[LogCategory], int, int]:
    errors = warnings = 0
    buckets: dict[tuple[str, str], dict] = {}

    for raw in lines:
        entry_type, message = classify_log_line(raw)
        if not entry_type or not message:
            continue
        if entry_type == "error":
            errors += 1
        else:
            warnings += 1

        label, example = split_category(message)
        if not label:
            continue
        bucket = buckets.get((entry_type, label))
        if bucket is None:
            buckets[(entry_type, label)] = {
                "label": label,
                "type": entry_type.upper(),
                "count": 1,
                "example": example,
            }
            continue
        bucket["count"] += 1
        if not bucket["example"] and example:
            bucket["example"] = example

    categories = sorted((LogCategory(**b) for b in buckets.values()), key=_sort_key)
    if category_limit > 0:
        categories = categories[:category_limit]
    return categories, errors, warnings


def parse_log_counts(
    log_path: str | None, category_limit: int = 0
) -> tuple[list[LogCategory], int, int]:
    """
    Scans a backup log; a missing or unreadable file counts as empty.
    """
    path = (log_path or "").strip()
    if not path:
        return [], 0, 0
    try:
        with Path(path).open(encoding="utf-8", errors="replace") as fh:
            lines = fh.read().splitlines()
    except OSError:
        return [], 0, 0
    return parse_log_lines(lines, category_limit)


def apply_log_counts(report: Report, category_limit: int = DEFAULT_CATEGORY_LIMIT) -> Report:
    """
    Copy of `report` with issues read from its log file.

    Reports that already carry categories, or have no log file, come back as is.
    Parsed totals replace the report's own only when the log has any issue.
    """
    if report.log_categories or not report.log_file_path:
        return report
    categories, errors, warnings = parse_log_counts(report.log_file_path, category_limit)
    if not (errors or warnings):
        return report
    return report.model_copy(
        update={
            "error_count": errors,
            "warning_count": warnings,
            "total_issues": errors + warnings,
            "log_categories": tuple(categories),
        }
    )
