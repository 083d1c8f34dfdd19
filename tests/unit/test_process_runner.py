from __future__ import annotations

import sys

from proxsave_notify.delivery.email.process import EXIT_NOT_FOUND, EXIT_TIMEOUT, SubprocessRunner


def test_invalid_utf8_output_is_replaced() -> None:
    script = (
        "import sys; "
        "sys.stdout.buffer.write(b'Q1 \\xff\\n'); "
        "sys.stderr.buffer.write(b'\\xfe')"
    )
    res = SubprocessRunner().run([sys.executable, "-c", script])

    assert res.ok
    assert res.stdout == "Q1 \ufffd\n"
    assert res.stderr == "\ufffd"


def test_stdin_is_passed_through() -> None:
    script = "import sys; sys.stdout.write(sys.stdin.read().upper())"
    res = SubprocessRunner().run([sys.executable, "-c", script], input="to: ops\n")
    assert res.stdout == "TO: OPS\n"


def test_missing_binary_becomes_result() -> None:
    res = SubprocessRunner().run(["/nonexistent/proxsave-test-binary"])
    assert res.returncode == EXIT_NOT_FOUND
    assert not res.ok


def test_timeout_becomes_result() -> None:
    res = SubprocessRunner().run([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)
    assert res.returncode == EXIT_TIMEOUT
    assert "timed out after 0.2s" in res.stderr
