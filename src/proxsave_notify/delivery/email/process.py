"""
Subprocess seam for local mail tooling (sendmail, mailq, systemctl, journalctl, ...).

Tests inject a fake ProcessRunner; production uses SubprocessRunner.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from typing import Protocol

DEFAULT_PROCESS_TIMEOUT_SEC = 60.0

EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = 124


@dataclass
class ProcessResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ProcessRunner(Protocol):
    def which(self, name: str) -> str | None: ...

    def run(
        self, argv: list[str], *, input: str | None = None, timeout: float | None = None
    ) -> ProcessResult: ...


class SubprocessRunner:
    """
    Runs commands with the current environment and PATH.
    Launch failures and timeouts come back as results, never as exceptions.
    Output is decoded as UTF-8 with invalid bytes replaced.
    """

    def __init__(self, timeout_sec: float = DEFAULT_PROCESS_TIMEOUT_SEC) -> None:
        self.timeout_sec = timeout_sec

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def run(
        self, argv: list[str], *, input: str | None = None, timeout: float | None = None
    ) -> ProcessResult:
        limit = timeout if timeout is not None else self.timeout_sec
        try:
            proc = subprocess.run(
                argv,
                input=input,
                check=False,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=limit,
            )
        except subprocess.TimeoutExpired:
            return ProcessResult(EXIT_TIMEOUT, stderr=f"{argv[0]} timed out after {limit:g}s")
        except OSError as e:
            return ProcessResult(EXIT_NOT_FOUND, stderr=str(e))
        return ProcessResult(proc.returncode, proc.stdout or "", proc.stderr or "")
