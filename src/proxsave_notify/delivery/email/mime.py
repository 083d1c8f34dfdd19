"""
MIME composer for locally delivered mail (sendmail / proxmox-mail-forward).

Layout:
- headers: To (defaults to "root"), From, RFC 2047 base64 Subject, MIME-Version
- multipart/alternative (text + html, 8bit UTF-8)
- multipart/mixed when the backup log is attached (base64, 76-column lines)

Boundaries are fixed strings; MTAs and the forwarder accept them as-is.
"""

from __future__ import annotations

from pathlib import Path

from proxsave_notify.common.logging import get_channel_logger
from proxsave_notify.common.utils import b64_encode

ALT_BOUNDARY = "boundary42"
MIXED_BOUNDARY = "mixed_boundary_42"
NESTED_ALT_BOUNDARY = "alt_boundary_42"
DEFAULT_ATTACHMENT_NAME = "backup.log"
BASE64_LINE_LEN = 76

log = get_channel_logger("email")


def encode_subject(subject: str) -> str:
    return f"=?UTF-8?B?{b64_encode(subject.encode('utf-8'))}?="


def _headers(to: str, sender: str, subject: str) -> list[str]:
    return [
        f"To: {to}\n",
        f"From: {sender}\n",
        f"Subject: {encode_subject(subject)}\n",
        "MIME-Version: 1.0\n",
    ]


def _alternative(boundary: str, text_body: str, html_body: str) -> list[str]:
    out: list[str] = []
    for content_type, body in (("text/plain", text_body), ("text/html", html_body)):
        out += [
            f"--{boundary}\n",
            f"Content-Type: {content_type}; charset=UTF-8\n",
            "Content-Transfer-Encoding: 8bit\n",
            "\n",
            body,
            "\n\n",
        ]
    out.append(f"--{boundary}--\n")
    return out


def _wrap_base64(data: bytes) -> list[str]:
    encoded = b64_encode(data)
    return [
        encoded[i : i + BASE64_LINE_LEN] + "\n" for i in range(0, len(encoded), BASE64_LINE_LEN)
    ]


def build_message(
    *,
    to: str,
    sender: str,
    subject: str,
    text_body: str,
    html_body: str,
    attach_path: str | None = None,
) -> tuple[str, str]:
    """
    Returns (message, to_header).

    An attachment that cannot be read is dropped with a warning; the message
    is then the plain alternative form.
    """
    to_header = (to or "").strip() or "root"
    parts = _headers(to_header, sender, subject)

    content: bytes | None = None
    path = (attach_path or "").strip()
    if path:
        try:
            content = Path(path).read_bytes()
        except OSError as e:
            log.warning(
                "email_attachment_unreadable",
                extra={"payload": {"path": path, "err": str(e)}},
            )

    if content is None:
        parts.append(f'Content-Type: multipart/alternative; boundary="{ALT_BOUNDARY}"\n')
        parts.append("\n")
        parts += _alternative(ALT_BOUNDARY, text_body, html_body)
        return "".join(parts), to_header

    filename = Path(path).name or DEFAULT_ATTACHMENT_NAME
    parts += [
        f'Content-Type: multipart/mixed; boundary="{MIXED_BOUNDARY}"\n',
        "\n",
        f"--{MIXED_BOUNDARY}\n",
        f'Content-Type: multipart/alternative; boundary="{NESTED_ALT_BOUNDARY}"\n',
        "\n",
    ]
    parts += _alternative(NESTED_ALT_BOUNDARY, text_body, html_body)
    parts += [
        "\n",
        f"--{MIXED_BOUNDARY}\n",
        f'Content-Type: text/plain; charset=UTF-8; name="{filename}"\n',
        f'Content-Disposition: attachment; filename="{filename}"\n',
        "Content-Transfer-Encoding: base64\n",
        "\n",
    ]
    parts += _wrap_base64(content)
    parts += ["\n", f"--{MIXED_BOUNDARY}--\n"]
    return "".join(parts), to_header
