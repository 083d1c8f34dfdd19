from __future__ import annotations

from datetime import UTC, datetime

import pytest

from proxsave_notify.report.model import LogCategory, Report, StorageSnapshot

BACKUP_DATE = datetime(2025, 11, 14, 10, 30, 45, tzinfo=UTC)


@pytest.fixture()
def make_report():
    def _make(exit_code: int = 0, **overrides) -> Report:
        fields = {
            "hostname": "pve1",
            "proxmox_type": "pve",
            "script_version": "1.2.3",
            "server_id": "1234567890",
            "server_mac": "aa:bb:cc:dd:ee:ff",
            "backup_date": BACKUP_DATE,
            "backup_duration_sec": 185,
            "backup_file": "/opt/proxsave/backup/pve1-backup.tar.zst",
            "backup_file_name": "pve1-backup.tar.zst",
            "backup_size": 1536,
            "compression_type": "zstd",
            "compression_level": 6,
            "compression_mode": "standard",
            "compression_ratio": 42.5,
            "files_included": 120,
            "local": StorageSnapshot(
                enabled=True,
                status="ok",
                summary="7/7",
                count=7,
                free="100 GB",
                used="50 GB",
                percent="33.3%",
                usage_percent=33.3,
                path="/opt/proxsave/backup",
            ),
        }
        fields.update(overrides)
        return Report.from_exit_code(exit_code, **fields)

    return _make


@pytest.fixture()
def categories():
    def _make(n: int, type_: str = "WARNING") -> tuple[LogCategory, ...]:
        return tuple(
            LogCategory(label=f"issue {i}", type=type_, count=1, example=f"example {i}")
            for i in range(n)
        )

    return _make
