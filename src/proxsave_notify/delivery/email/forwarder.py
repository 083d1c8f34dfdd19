"""
Proxmox mail forwarder transport (proxmox-mail-forward).

Routing is done by Proxmox Notifications; the To header is informational only.
"""

from __future__ import annotations

import logging
import threading

from proxsave_notify.common.errors import CancelledError, DeliveryError, ErrCode
from proxsave_notify.common.logging import get_channel_logger

from .process import ProcessRunner, SubprocessRunner

BACKEND = "proxmox-mail-forward"
DEFAULT_CANDIDATES = (
    "/usr/libexec/proxmox-mail-forward",
    "/usr/bin/proxmox-mail-forward",
    "proxmox-mail-forward",
)


class ForwarderTransport:
    def __init__(
        self,
        *,
        candidates: tuple[str, ...] | list[str] = DEFAULT_CANDIDATES,
        runner: ProcessRunner | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.candidates = tuple(candidates)
        self.runner = runner or SubprocessRunner()
        self.log = log or get_channel_logger("email")

    def locate(self) -> str | None:
        for candidate in self.candidates:
            path = self.runner.which(candidate)
            if path:
                return path
        return None

    def send(self, message: str, *, cancel: threading.Event | None = None) -> tuple[str, str]:
        """
        Returns (backend, backend_path); raises DeliveryError on failure.
        """
        path = self.locate()
        if not path:
            raise DeliveryError(
                ErrCode.CONFIGURATION,
                "proxmox-mail-forward not found - please install/configure Proxmox "
                "Notifications or use EMAIL_DELIVERY_METHOD=sendmail or relay",
            )
        if cancel is not None and cancel.is_set():
            raise CancelledError()

        res = self.runner.run([path], input=message)
        if res.stdout.strip():
            self.log.debug("forwarder_stdout", extra={"payload": {"stdout": res.stdout.strip()}})
        if res.stderr.strip():
            self.log.debug("forwarder_stderr", extra={"payload": {"stderr": res.stderr.strip()}})
        if not res.ok:
            raise DeliveryError(
                ErrCode.TRANSPORT,
                f"proxmox-mail-forward failed: exit status {res.returncode} "
                f"(stderr: {res.stderr.strip()})",
                {"email_backend": BACKEND, "email_backend_path": path},
            )
        return BACKEND, path
