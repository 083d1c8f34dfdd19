from __future__ import annotations

import pytest

from proxsave_notify.cli import load_report, main, sample_report


@pytest.fixture(autouse=True)
def _quiet_channels(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("SECRETS_PROVIDER", raising=False)
    monkeypatch.setenv("EMAIL_ENABLED", "false")
    monkeypatch.setenv("TELEGRAM_ENABLED", "false")
    monkeypatch.setenv("GOTIFY_ENABLED", "false")
    monkeypatch.setenv("WEBHOOK_ENABLED", "false")


def test_sample_with_no_channels(capsys) -> None:
    assert main(["send", "--sample"]) == 0
    assert "no notification channel enabled" in capsys.readouterr().out


def test_missing_report_file(tmp_path, capsys) -> None:
    assert main(["send", str(tmp_path / "missing.json")]) == 2
    assert "invalid report" in capsys.readouterr().out


def test_report_file_round_trip(tmp_path) -> None:
    path = tmp_path / "report.json"
    report = sample_report("pbs")
    path.write_text(report.model_dump_json(), encoding="utf-8")

    loaded = load_report(str(path))
    assert loaded.hostname == report.hostname
    assert loaded.status == report.status
    assert main(["send", str(path)]) == 0


def test_inconsistent_report_is_rejected(tmp_path) -> None:
    path = tmp_path / "report.json"
    path.write_text('{"exit_code": 0, "status": "failure"}', encoding="utf-8")
    assert main(["send", str(path)]) == 2


def test_send_requires_input(capsys) -> None:
    assert main(["send"]) == 2
    assert "--sample is required" in capsys.readouterr().out


def test_unknown_command() -> None:
    assert main(["bogus"]) == 2


def test_save_writes_channel_statuses(tmp_path) -> None:
    out = tmp_path / "out.json"
    assert main(["send", "--sample", "--save", str(out)]) == 0

    saved = load_report(str(out))
    assert saved.email_status == "disabled"
    assert saved.telegram_status == "disabled"


def test_loaded_report_takes_issues_from_log(tmp_path) -> None:
    log_file = tmp_path / "backup.log"
    log_file.write_text(
        "[ERROR] Upload failed - timeout\n[ERROR] Upload failed - timeout\n", encoding="utf-8"
    )
    path = tmp_path / "report.json"
    report = sample_report("pve").model_copy(
        update={
            "log_file_path": str(log_file),
            "log_categories": (),
            "error_count": 0,
            "warning_count": 0,
        }
    )
    path.write_text(report.model_dump_json(), encoding="utf-8")

    loaded = load_report(str(path))
    assert loaded.error_count == 2
    assert loaded.log_categories[0].label == "Upload failed"
    assert loaded.log_categories[0].count == 2
