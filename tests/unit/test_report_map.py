from __future__ import annotations

import hashlib
import hmac
import json

from proxsave_notify.common.utils import hmac_sha256_hex
from proxsave_notify.report.model import LogCategory, StorageSnapshot
from proxsave_notify.report.report_map import (
    RelayPayload,
    ReportMap,
    Struct,
    encode_document,
    log_summary_color,
)


def test_encode_document_is_compact_sorted_and_escaped() -> None:
    raw = encode_document({"b": "<a&b>", "a": 1.0, "c": 2.5})
    assert raw == b'{"a":1,"b":"\\u003ca\\u0026b\\u003e","c":2.5}'


def test_struct_keeps_insertion_order() -> None:
    raw = encode_document(Struct(z=1, a=2))
    assert raw == b'{"z":1,"a":2}'


def test_log_summary_color() -> None:
    assert log_summary_color(1, 0) == "#dc3545"
    assert log_summary_color(0, 3) == "#ffc107"
    assert log_summary_color(0, 0) == "#28a745"


def test_report_map_shape(make_report) -> None:
    report = make_report(
        1,
        warning_count=2,
        log_categories=(LogCategory(label="Cloud slow", type="WARNING", count=2),),
        cloud=StorageSnapshot(enabled=True, status="warning", summary="1/3", count=1),
    )
    doc = ReportMap.from_report(report).to_document()

    assert doc["status"] == "warning"
    assert doc["backup_date"] == "2025-11-14 10:30:45"
    assert doc["metrics"]["compression_level"] == "6"
    assert doc["metrics"]["compression_ratio"] == "42.50"
    assert doc["metrics"]["file_missing"] == 0
    assert doc["emojis"] == {"primary": "✅", "secondary": "➖", "cloud": "⚠️", "email": "❓"}
    assert "secondary" not in doc["storage"]
    assert doc["paths"]["cloud_display"] == "Not configured"
    assert doc["paths"]["has_cloud"] is True
    assert doc["log_summary"]["color"] == "#ffc107"
    assert doc["log_summary"]["categories"] == [
        {"label": "Cloud slow", "type": "WARNING", "count": 2}
    ]


def test_empty_categories_encode_as_null(make_report) -> None:
    doc = json.loads(encode_document(ReportMap.from_report(make_report()).to_document()))
    assert doc["log_summary"]["categories"] is None
    assert doc["log_summary"]["has_entries"] is False


def test_relay_payload_envelope_order_and_signature(make_report) -> None:
    payload = RelayPayload(
        to="admin@example.com",
        subject="subject",
        report=ReportMap.from_report(make_report()),
        t=1700000000,
        server_mac="aa:bb:cc:dd:ee:ff",
    )
    body = payload.encode()
    assert body.startswith(b'{"to":"admin@example.com","subject":"subject","report":{')
    assert body.endswith(b',"t":1700000000,"server_mac":"aa:bb:cc:dd:ee:ff"}')

    expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    assert hmac_sha256_hex(body, "s3cret") == expected
