"""
Webhook endpoint configuration.

Endpoints are named in WEBHOOK_ENDPOINTS; each name maps to a group of
WEBHOOK_<NAME>_* variables (dashes become underscores, upper case):

    WEBHOOK_<NAME>_URL          required, endpoints without it are skipped
    WEBHOOK_<NAME>_FORMAT       discord|slack|teams|generic (default: WEBHOOK_FORMAT)
    WEBHOOK_<NAME>_METHOD       default POST
    WEBHOOK_<NAME>_HEADERS      "Key1:Value1,Key2:Value2"
    WEBHOOK_<NAME>_AUTH_TYPE    none|bearer|basic|hmac
    WEBHOOK_<NAME>_AUTH_TOKEN / _AUTH_USER / _AUTH_PASS / _AUTH_SECRET
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

FORMAT_GENERIC = "generic"
DEFAULT_METHOD = "POST"
AUTH_NONE = "none"


@dataclass
class EndpointAuth:
    type: str = AUTH_NONE
    token: str = ""
    user: str = ""
    password: str = ""
    secret: str = ""


@dataclass
class Endpoint:
    name: str
    url: str
    format: str = ""
    method: str = DEFAULT_METHOD
    headers: dict[str, str] = field(default_factory=dict)
    auth: EndpointAuth = field(default_factory=EndpointAuth)


def env_prefix(name: str) -> str:
    return f"WEBHOOK_{name.replace('-', '_').upper()}_"


def parse_headers(raw: str | None) -> dict[str, str]:
    headers: dict[str, str] = {}
    for pair in (raw or "").split(","):
        key, sep, value = pair.strip().partition(":")
        if sep:
            headers[key.strip()] = value.strip()
    return headers


def load_endpoints(
    names: Iterable[str], env: Mapping[str, str], *, default_format: str = FORMAT_GENERIC
) -> list[Endpoint]:
    endpoints: list[Endpoint] = []
    for raw_name in names:
        name = (raw_name or "").strip()
        if not name:
            continue
        prefix = env_prefix(name)
        url = env.get(prefix + "URL", "")
        if not url:
            continue
        endpoints.append(
            Endpoint(
                name=name,
                url=url,
                format=env.get(prefix + "FORMAT", default_format),
                method=env.get(prefix + "METHOD", DEFAULT_METHOD),
                headers=parse_headers(env.get(prefix + "HEADERS", "")),
                auth=EndpointAuth(
                    type=env.get(prefix + "AUTH_TYPE", AUTH_NONE),
                    token=env.get(prefix + "AUTH_TOKEN", ""),
                    user=env.get(prefix + "AUTH_USER", ""),
                    password=env.get(prefix + "AUTH_PASS", ""),
                    secret=env.get(prefix + "AUTH_SECRET", ""),
                ),
            )
        )
    return endpoints
