"""
proxsave-notify command line.

    proxsave-notify send report.json
    proxsave-notify send --sample
    proxsave-notify send report.json --save report.out.json
    proxsave-notify check-telegram

Exit codes: 0 when the dispatch ran (even if channels failed), 2 on bad input.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from pydantic import ValidationError

from proxsave_notify.common.config import reload_settings
from proxsave_notify.common.logging import get_project_logger, setup_logging
from proxsave_notify.common.time import utc_now
from proxsave_notify.delivery.factory import build_dispatcher
from proxsave_notify.delivery.results import annotate_report, describe_result
from proxsave_notify.delivery.telegram.registration import check_registration
from proxsave_notify.report.log_parser import apply_log_counts
from proxsave_notify.report.model import LogCategory, ProxmoxType, Report, StorageSnapshot

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2

log = get_project_logger()


def sample_report(proxmox_type: str = "pve") -> Report:
    try:
        flavor = ProxmoxType(proxmox_type)
    except ValueError:
        flavor = ProxmoxType.pve
    return Report.from_exit_code(
        1,
        hostname="pve-sample",
        proxmox_type=flavor,
        script_version="0.1.0",
        backup_date=utc_now(),
        backup_duration_sec=754,
        backup_file_name="pve-sample-backup.tar.zst",
        backup_size=1_288_490_189,
        compression_type="zstd",
        compression_level=6,
        compression_mode="standard",
        compression_ratio=61.37,
        files_included=1842,
        local=StorageSnapshot(
            enabled=True,
            status="ok",
            summary="7/7",
            count=7,
            free="210.4 GB",
            used="289.6 GB",
            percent="57.9%",
            usage_percent=57.9,
            path="/opt/proxsave/backup",
        ),
        error_count=0,
        warning_count=2,
        log_categories=(
            LogCategory(
                label="Cloud storage unreachable",
                type="WARNING",
                count=2,
                example="rclone: connection timed out",
            ),
        ),
    )


def load_report(path: str) -> Report:
    raw = Path(path).read_text(encoding="utf-8")
    return apply_log_counts(Report.model_validate(json.loads(raw)))


def cmd_send(args: argparse.Namespace) -> int:
    settings = reload_settings()
    if args.sample:
        report = sample_report(settings.proxmox_type)
    elif args.report:
        try:
            report = load_report(args.report)
        except (OSError, ValueError, ValidationError) as e:
            log.error("report_load_failed", extra={"payload": {"path": args.report, "err": str(e)}})
            print(f"invalid report {args.report}: {e}")
            return EXIT_BAD_INPUT
    else:
        print("either a report file or --sample is required")
        return EXIT_BAD_INPUT

    dispatcher = build_dispatcher(settings)
    timeout = args.timeout if args.timeout is not None else settings.dispatch_timeout_sec
    results = dispatcher.dispatch(report, timeout=timeout)
    if not results:
        print("no notification channel enabled")
    for result in results:
        print(f"{result.provider}: {describe_result(result)}")

    if args.save:
        annotated = annotate_report(report, results)
        Path(args.save).write_text(annotated.model_dump_json(indent=2), encoding="utf-8")
        log.info("report_saved", extra={"payload": {"path": args.save}})
    return EXIT_OK


def cmd_check_telegram(args: argparse.Namespace) -> int:
    settings = reload_settings()
    status = check_registration(settings.telegram_server_api_host, settings.server_id)
    print(status.message)
    if status.error and status.code != 200:
        print(f"detail: {status.error}")
    return EXIT_OK if status.code == 200 else EXIT_FAILED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proxsave-notify", description="Backup report notifications"
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    send_p = sub.add_parser("send", help="Dispatch a backup report to all enabled channels")
    send_p.add_argument("report", nargs="?", help="Path to a report JSON file")
    send_p.add_argument("--sample", action="store_true", help="Send a built-in sample report")
    send_p.add_argument("--timeout", type=float, default=None, help="Overall deadline (seconds)")
    send_p.add_argument(
        "--save", default=None, help="Write the report with channel statuses to this path"
    )
    send_p.set_defaults(func=cmd_send)

    tg_p = sub.add_parser("check-telegram", help="Show the centralized bot registration status")
    tg_p.set_defaults(func=cmd_check_telegram)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_OK if e.code == 0 else EXIT_BAD_INPUT
    setup_logging(level=args.log_level)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
