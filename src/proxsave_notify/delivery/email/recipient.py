"""
Email recipient helpers: root@pam auto-detection and address checks.
"""

from __future__ import annotations

import json
import re

from proxsave_notify.common.errors import DeliveryError, ErrCode
from proxsave_notify.report.model import ProxmoxType

from .process import ProcessRunner

ROOT_USER_ID = "root@pam"

_RE_EMAIL = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

_USER_LIST_COMMANDS = {
    ProxmoxType.pve: ["pveum", "user", "list", "--output-format", "json"],
    ProxmoxType.pbs: ["proxmox-backup-manager", "user", "list", "--output-format", "json"],
}


def is_valid_email(address: str) -> bool:
    return bool(_RE_EMAIL.fullmatch(address))


def is_root_recipient(recipient: str) -> bool:
    """
    True for root@<anything>; the relay refuses to mail root accounts.
    """
    addr = (recipient or "").strip().lower()
    if not addr:
        return False
    parts = addr.split("@", 1)
    if len(parts) != 2:
        return False
    return parts[0] == "root"


def detect_recipient(proxmox_type: ProxmoxType | str, runner: ProcessRunner) -> str:
    """
    Email of root@pam from the Proxmox user list; raises DeliveryError(resolution).
    """
    try:
        flavor = ProxmoxType(proxmox_type)
    except ValueError:
        flavor = ProxmoxType.unknown
    argv = _USER_LIST_COMMANDS.get(flavor)
    if argv is None:
        raise DeliveryError(ErrCode.RESOLUTION, f"unknown Proxmox type: {proxmox_type}")

    res = runner.run(list(argv))
    if not res.ok:
        detail = res.stderr.strip() or f"exit status {res.returncode}"
        raise DeliveryError(ErrCode.RESOLUTION, f"failed to query Proxmox user list: {detail}")

    try:
        users = json.loads(res.stdout)
    except ValueError as e:
        raise DeliveryError(ErrCode.FORMAT, f"failed to parse user list JSON: {e}") from e
    if not isinstance(users, list):
        raise DeliveryError(ErrCode.FORMAT, "failed to parse user list JSON: not an array")

    for user in users:
        if not isinstance(user, dict) or user.get("userid") != ROOT_USER_ID:
            continue
        email = user.get("email")
        if isinstance(email, str) and email:
            return email
        raise DeliveryError(ErrCode.RESOLUTION, "root@pam user exists but has no email configured")
    raise DeliveryError(ErrCode.RESOLUTION, "root@pam user not found in Proxmox configuration")
