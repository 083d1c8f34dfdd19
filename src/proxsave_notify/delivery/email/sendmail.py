"""
Sendmail transport: preflight -> send -> verify around the local MTA.

Purpose:
- hand a composed MIME message to `sendmail -t -oi`
- diagnose the local mail setup before sending (service, config, relayhost, queue)
- after sending, look for evidence of what the MTA did (queue id, mail log status)

Notes:
- exit code 0 only means "accepted for queuing", never "delivered"
- verification never fails the send; it only logs
- every external command goes through the injected ProcessRunner
"""

from __future__ import annotations

import logging
import re
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from proxsave_notify.common.errors import CancelledError, DeliveryError, ErrCode
from proxsave_notify.common.logging import get_channel_logger
from proxsave_notify.common.time import sleep_unless_cancelled
from proxsave_notify.common.utils import truncate

from .process import ProcessRunner, SubprocessRunner

DEFAULT_SENDMAIL_PATH = "/usr/sbin/sendmail"
DEFAULT_MAIL_LOG_PATHS = ("/var/log/mail.log", "/var/log/maillog", "/var/log/mail.err")
DEFAULT_POSTFIX_MAIN_CF = "/etc/postfix/main.cf"

MTA_SERVICES = ("postfix", "sendmail", "exim4")
JOURNAL_UNITS = ("postfix.service", "sendmail.service", "exim4.service")
MAILQ_FALLBACK = "/usr/bin/mailq"

VERIFY_PAUSE_SEC = 0.5
RECENT_LOG_LINES = 50
STATUS_LOG_LINES = 80

_RE_QUEUED_AS = re.compile(r"queued as ([A-Za-z0-9.-]+)")
_RE_QUEUE_ID_LINE = re.compile(r"^[A-Za-z0-9]{5,}[*!]?$")
_RE_REMOTE_ACCEPTED = re.compile(r"Sent\s+\(OK\s+id=([A-Za-z0-9\-]+)\)")
_RE_LOCAL_ACCEPTED_SENT = re.compile(r"Sent\s+\(([A-Za-z0-9\-]+)\s+Message accepted for delivery\)")
_RE_MESSAGE_ACCEPTED = re.compile(r"\b([A-Za-z0-9\-]{5,})\b\s+Message accepted for delivery")
_RE_RELAYHOST = re.compile(r"(?m)^relayhost\s*=\s*(.+)$")

_ERROR_KEYWORDS = ("error", "failed", "rejected", "deferred", "connection refused", "timeout")
_NETWORK_ERRORS = ("connection refused", "host not found", "no route to host", "timeout")
_PROBLEM_STATUSES = {
    "deferred": "status=deferred",
    "bounced": "status=bounced",
    "expired": "status=expired",
    "rejected": "status=rejected",
    "error": "delivery errors",
}


# =============================================================================
# PURE PARSERS
# =============================================================================
def extract_queue_id(*outputs: str) -> str:
    for text in outputs:
        if not text:
            continue
        m = _RE_QUEUED_AS.search(text)
        if m:
            return m.group(1).strip()
    return ""


def count_queue_entries(mailq_output: str) -> int:
    """
    Heuristic queue depth from `mailq` output.
    """
    if "Mail queue is empty" in mailq_output:
        return 0
    count = 0
    for line in mailq_output.split("\n"):
        if len(line) > 10 and "@" in line:
            if "Mail queue" not in line and "Total requests" not in line:
                count += 1
    return count


def find_queue_entry(mailq_output: str, recipient: str) -> tuple[str, str]:
    """
    (queue_id, matching line) of the first queue record addressed to `recipient`.
    """
    wanted = recipient.strip().lower()
    current = ""
    for raw in mailq_output.split("\n"):
        line = raw.strip()
        if not line:
            continue
        first = line.split()[0]
        if _RE_QUEUE_ID_LINE.fullmatch(first):
            current = first.rstrip("*").rstrip("!")
            continue
        if current and wanted and wanted in line.lower():
            return current, line
    return "", ""


def classify_mail_log(lines: list[str], queue_id: str) -> tuple[str, str]:
    """
    (status, matched line) for the most recent relevant log line.

    status is sent|deferred|bounced|expired|rejected|error|unknown, or "" when
    there is nothing to look at.
    """
    relevant = lines
    if queue_id:
        filtered = [ln for ln in lines if queue_id in ln]
        if filtered:
            relevant = filtered

    for raw in reversed(relevant):
        line = raw.strip()
        if not line:
            continue
        lower = line.lower()
        if "status=sent" in lower:
            return "sent", line
        if "status=deferred" in lower:
            return "deferred", line
        if "status=bounced" in lower or "status=softbounce" in lower:
            return "bounced", line
        if "status=expired" in lower:
            return "expired", line
        if "status=rejected" in lower or "rejected " in lower:
            return "rejected", line
        if any(k in lower for k in _NETWORK_ERRORS):
            return "error", line

    if relevant:
        last = relevant[-1].strip()
        if last:
            return "unknown", last
    return "", ""


@dataclass
class TranscriptSummary:
    highlights: list[str] = field(default_factory=list)
    remote_id: str = ""
    local_queue_id: str = ""


def summarize_transcript(transcript: str) -> TranscriptSummary:
    """
    Picks the interesting lines out of a `sendmail -v` SMTP transcript.
    """
    out = TranscriptSummary()
    seen_local = seen_remote = seen_rcpt = seen_close = False

    for raw in transcript.split("\n"):
        line = raw.strip()
        if not line:
            continue
        lower = line.lower()

        if not seen_local and "connecting to" in lower and "via relay" in lower:
            out.highlights.append(f"Local relay connection: {line}")
            seen_local = True
            continue
        if (
            not seen_remote
            and "connecting to" in lower
            and ("via esmtp" in lower or "via smtp" in lower)
            and "via relay" not in lower
        ):
            out.highlights.append(f"Remote relay connection: {line}")
            seen_remote = True
            continue
        if not seen_rcpt and "recipient ok" in lower:
            out.highlights.append(f"Recipient accepted by remote server: {line}")
            seen_rcpt = True
            continue

        if not out.remote_id:
            m = _RE_REMOTE_ACCEPTED.search(line)
            if m:
                out.remote_id = m.group(1)
                out.highlights.append(f"Remote server accepted message (remote_id={out.remote_id})")
                continue
        if not out.local_queue_id:
            m = _RE_LOCAL_ACCEPTED_SENT.search(line) or _RE_MESSAGE_ACCEPTED.search(line)
            if m:
                out.local_queue_id = m.group(1)
                out.highlights.append(f"Local MTA queued message with ID {out.local_queue_id}")
                continue

        if not seen_close and "closing connection" in lower:
            out.highlights.append(f"SMTP session closed: {line}")
            seen_close = True

    return out


# =============================================================================
# TRANSPORT
# =============================================================================
@dataclass
class SendmailOutcome:
    queue_id: str
    backend: str
    backend_path: str


class SendmailTransport:
    def __init__(
        self,
        *,
        sendmail_path: str = DEFAULT_SENDMAIL_PATH,
        mail_log_paths: tuple[str, ...] | list[str] = DEFAULT_MAIL_LOG_PATHS,
        postfix_main_cf: str = DEFAULT_POSTFIX_MAIN_CF,
        runner: ProcessRunner | None = None,
        sleep: Callable[[float, threading.Event | None], bool] = sleep_unless_cancelled,
        log: logging.Logger | None = None,
    ) -> None:
        self.sendmail_path = sendmail_path
        self.mail_log_paths = tuple(mail_log_paths)
        self.postfix_main_cf = postfix_main_cf
        self.runner = runner or SubprocessRunner()
        self.sleep = sleep
        self.log = log or get_channel_logger("email")

    # -------------------------------------------------------------------------
    # Preflight probes
    # -------------------------------------------------------------------------
    def mta_service_active(self) -> tuple[bool, str]:
        if not self.runner.which("systemctl"):
            return False, "systemctl not available"
        for service in MTA_SERVICES:
            if self.runner.run(["systemctl", "is-active", service]).ok:
                return True, service
        return False, "no MTA service active"

    def mta_config(self) -> tuple[bool, str]:
        candidates = (
            (self.postfix_main_cf, "Postfix"),
            ("/etc/mail/sendmail.cf", "Sendmail"),
            ("/etc/exim4/exim4.conf", "Exim4"),
        )
        for path, mta in candidates:
            if Path(path).is_file():
                return True, mta
        return False, "no MTA configuration found"

    def relay_host(self) -> tuple[bool, str]:
        path = Path(self.postfix_main_cf)
        if not path.exists():
            return False, "main.cf not found"
        try:
            content = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return False, "cannot read config"
        m = _RE_RELAYHOST.search(content)
        if m:
            value = m.group(1).strip()
            if value and value != "[]":
                return True, value
        return False, "no relay host"

    def _mailq(self) -> str | None:
        binary = self.runner.which("mailq") or self.runner.which(MAILQ_FALLBACK)
        if not binary:
            self.log.debug("mailq_unavailable", extra={"payload": {"err": "mailq command not found"}})
            return None
        res = self.runner.run([binary])
        if not res.ok:
            self.log.debug("mailq_unavailable", extra={"payload": {"err": res.stderr.strip()}})
            return None
        return res.stdout

    def check_mail_queue(self) -> int | None:
        output = self._mailq()
        if output is None:
            return None
        return count_queue_entries(output)

    def detect_queue_entry(self, recipient: str) -> tuple[str, str]:
        output = self._mailq()
        if output is None:
            return "", ""
        return find_queue_entry(output, recipient)

    # -------------------------------------------------------------------------
    # Mail log
    # -------------------------------------------------------------------------
    def tail_mail_log(self, max_lines: int) -> tuple[list[str], str]:
        """
        Last lines of the first readable mail log, else of the MTA journal.
        """
        for raw_path in self.mail_log_paths:
            path = Path(raw_path)
            if not path.is_file():
                continue
            try:
                with path.open(encoding="utf-8", errors="replace") as fh:
                    lines = [ln.rstrip("\n") for ln in deque(fh, maxlen=max_lines)]
            except OSError:
                continue
            return lines, raw_path

        if self.runner.which("journalctl"):
            argv = ["journalctl", "--no-pager", "-n", str(max_lines)]
            for unit in JOURNAL_UNITS:
                argv += ["-u", unit]
            res = self.runner.run(argv)
            if res.ok and res.stdout:
                return res.stdout.rstrip("\n").split("\n"), "journalctl"
        return [], ""

    def recent_mail_log_errors(self) -> list[str]:
        lines, _ = self.tail_mail_log(RECENT_LOG_LINES)
        return [
            ln.strip() for ln in lines if any(k in ln.lower() for k in _ERROR_KEYWORDS)
        ]

    def inspect_mail_log_status(self, queue_id: str) -> tuple[str, str, str]:
        lines, log_path = self.tail_mail_log(STATUS_LOG_LINES)
        if not lines or not log_path:
            return "", "", log_path
        status, line = classify_mail_log(lines, queue_id)
        return status, line, log_path

    def log_mail_log_status(self, queue_id: str, status: str, line: str, log_path: str) -> None:
        if not queue_id and not status:
            return
        payload = {"queue_id": queue_id or "(unknown)", "status": status, "log": log_path}

        if status == "sent":
            self.log.info("mail_log_status", extra={"payload": payload})
        elif status in _PROBLEM_STATUSES:
            payload["detail"] = _PROBLEM_STATUSES[status]
            self.log.warning("mail_log_status", extra={"payload": payload})
        elif status == "unknown":
            self.log.debug("mail_log_status_inconclusive", extra={"payload": payload})
        else:
            if queue_id and log_path:
                payload["status"] = "pending"
                self.log.info("mail_log_status", extra={"payload": payload})
            return

        if line:
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug("mail_log_entry", extra={"payload": {"line": line}})
            elif status != "sent":
                self.log.info(
                    "mail_log_entry", extra={"payload": {"line": truncate(line, 200, "...")}}
                )

    # -------------------------------------------------------------------------
    # Send
    # -------------------------------------------------------------------------
    def _preflight(self) -> int:
        active, service = self.mta_service_active()
        if active:
            self.log.debug("mta_service_active", extra={"payload": {"service": service}})
        else:
            self.log.warning(
                "mta_service_not_running",
                extra={"payload": {"checked": list(MTA_SERVICES), "reason": service}},
            )

        has_config, mta = self.mta_config()
        if has_config:
            self.log.debug("mta_config_found", extra={"payload": {"mta": mta}})
            if mta == "Postfix":
                has_relay, relay = self.relay_host()
                self.log.debug(
                    "postfix_relayhost",
                    extra={"payload": {"configured": has_relay, "value": relay}},
                )
        else:
            self.log.warning("mta_config_missing", extra={"payload": {"reason": mta}})

        initial = self.check_mail_queue()
        if initial is None:
            return -1
        if initial > 0:
            self.log.warning(
                "mail_queue_not_empty",
                extra={"payload": {"count": initial, "large": initial > 10}},
            )
        return initial

    def send(
        self, message: str, *, recipient: str, cancel: threading.Event | None = None
    ) -> SendmailOutcome:
        if not self.runner.which(self.sendmail_path):
            raise DeliveryError(
                ErrCode.CONFIGURATION,
                f"sendmail not found at {self.sendmail_path} - please install/configure "
                "a local MTA (e.g. postfix) or use EMAIL_DELIVERY_METHOD=relay/pmf",
            )

        initial_queue = self._preflight()

        argv = [self.sendmail_path, "-t", "-oi"]
        if self.log.isEnabledFor(logging.DEBUG):
            argv.append("-v")
        if cancel is not None and cancel.is_set():
            raise CancelledError()
        res = self.runner.run(argv, input=message)

        queue_id = ""
        stdout = res.stdout.strip()
        if stdout:
            summary = summarize_transcript(stdout)
            for item in summary.highlights:
                self.log.debug("smtp_summary", extra={"payload": {"line": item}})
            queue_id = summary.local_queue_id

        stderr = res.stderr.strip()
        if stderr:
            if "warning" in stderr.lower():
                self.log.warning("sendmail_warning", extra={"payload": {"stderr": stderr}})
            else:
                self.log.debug("sendmail_stderr", extra={"payload": {"stderr": stderr}})

        queue_id = extract_queue_id(res.stdout, res.stderr) or queue_id

        if not res.ok:
            raise DeliveryError(
                ErrCode.TRANSPORT,
                f"sendmail failed: exit status {res.returncode} (stderr: {stderr})",
            )

        queue_id = self._verify(queue_id, recipient, initial_queue, cancel)
        self.log.info(
            "sendmail_accepted",
            extra={"payload": {"queue_id": queue_id, "note": "accepted for queuing, not delivered"}},
        )
        return SendmailOutcome(queue_id=queue_id, backend="sendmail", backend_path=self.sendmail_path)

    def _verify(
        self,
        queue_id: str,
        recipient: str,
        initial_queue: int,
        cancel: threading.Event | None,
    ) -> str:
        if not self.sleep(VERIFY_PAUSE_SEC, cancel):
            raise CancelledError()

        after = self.check_mail_queue()
        if after is not None and after > 0 and initial_queue >= 0 and after > initial_queue:
            self.log.warning(
                "mail_queue_grew",
                extra={"payload": {"before": initial_queue, "after": after}},
            )

        recent = self.recent_mail_log_errors()
        if recent:
            self.log.warning("mail_log_recent_errors", extra={"payload": {"count": len(recent)}})
            for line in recent[:5]:
                self.log.debug(
                    "mail_log_recent_error",
                    extra={"payload": {"line": truncate(line, 200, "...")}},
                )

        if not queue_id:
            queue_id, queue_line = self.detect_queue_entry(recipient)
            if not queue_id:
                self.log.debug("mail_queue_entry_not_found", extra={"payload": {"recipient": recipient}})
                return ""
            self.log.info(
                "mail_queue_entry_detected",
                extra={"payload": {"queue_id": queue_id, "recipient": recipient}},
            )
            if queue_line:
                self.log.debug("mail_queue_entry", extra={"payload": {"line": queue_line}})

        status, line, log_path = self.inspect_mail_log_status(queue_id)
        self.log_mail_log_status(queue_id, status, line, log_path)
        return queue_id
