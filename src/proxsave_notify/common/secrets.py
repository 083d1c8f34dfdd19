"""
External secrets loader (HashiCorp Vault).

Fills relay/telegram/gotify/webhook credentials into the environment before
Settings are built, so tokens and HMAC secrets never have to live in .env.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import requests

_log = logging.getLogger("proxsave-notify")


@dataclass
class VaultSource:
    addr: str
    token: str
    mount: str
    path: str
    namespace: str | None = None
    verify: bool = True
    timeout_sec: int = 5
    kv_version: str = "2"
    field_map: dict[str, str] = field(default_factory=dict)

    def secret_url(self) -> str:
        if self.kv_version == "2":
            return f"{self.addr}/v1/{self.mount}/data/{self.path}"
        return f"{self.addr}/v1/{self.mount}/{self.path}"

    def headers(self) -> dict[str, str]:
        headers = {"X-Vault-Token": self.token}
        if self.namespace:
            headers["X-Vault-Namespace"] = self.namespace
        return headers


def maybe_load_external_secrets() -> None:
    provider = (os.getenv("SECRETS_PROVIDER") or "").strip().lower()
    if provider in {"", "none"}:
        return
    if provider == "vault":
        _load_vault(_vault_source_from_env())
        return
    raise RuntimeError(f"Unsupported SECRETS_PROVIDER={provider}")


def _read_token_file(path: str | None) -> str:
    if not path:
        return ""
    try:
        return Path(path).read_text(encoding="utf-8").strip()
    except OSError as e:
        _log.error(
            "vault_token_file_read_failed",
            extra={"payload": {"path": path, "error": str(e)[:200]}},
        )
        raise


def parse_field_map(raw: str | None) -> dict[str, str]:
    """ENV_KEY=secret_key pairs separated by commas or newlines."""
    mapping: dict[str, str] = {}
    for item in re.split(r"[\n,]+", raw or ""):
        env_key, sep, secret_key = item.strip().partition("=")
        if not sep:
            continue
        env_key, secret_key = env_key.strip(), secret_key.strip()
        if env_key and secret_key:
            mapping[env_key] = secret_key
    return mapping


def _vault_source_from_env() -> VaultSource:
    token = (os.getenv("VAULT_TOKEN") or "").strip() or _read_token_file(
        os.getenv("VAULT_TOKEN_FILE")
    )
    source = VaultSource(
        addr=(os.getenv("VAULT_ADDR") or "").strip().rstrip("/"),
        token=token,
        mount=(os.getenv("VAULT_KV_MOUNT") or "secret").strip().strip("/"),
        path=(os.getenv("VAULT_SECRET_PATH") or "").strip().strip("/"),
        namespace=(os.getenv("VAULT_NAMESPACE") or "").strip() or None,
        verify=(os.getenv("VAULT_SKIP_VERIFY") or "").strip().lower() not in {"1", "true"},
        timeout_sec=int(os.getenv("VAULT_TIMEOUT_SEC") or 5),
        kv_version=(os.getenv("VAULT_KV_VERSION") or "2").strip(),
        field_map=parse_field_map(os.getenv("VAULT_FIELD_MAP")),
    )
    if not source.addr or not source.token or not source.path:
        raise RuntimeError("Vault secrets require VAULT_ADDR, VAULT_TOKEN and VAULT_SECRET_PATH")
    if source.kv_version not in {"1", "2"}:
        raise RuntimeError("VAULT_KV_VERSION must be '1' or '2'")
    if not source.field_map:
        raise RuntimeError("VAULT_FIELD_MAP is required to map secret fields to env")
    return source


def _load_vault(source: VaultSource) -> None:
    try:
        resp = requests.get(
            source.secret_url(),
            headers=source.headers(),
            timeout=source.timeout_sec,
            verify=source.verify,
        )
        resp.raise_for_status()
        data: Any = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise RuntimeError(f"Vault secrets fetch failed: {e}") from e

    secret_data = (data or {}).get("data", {})
    if source.kv_version == "2" and isinstance(secret_data, dict):
        secret_data = secret_data.get("data", {})
    if not isinstance(secret_data, dict):
        raise RuntimeError("Vault secrets payload is not a dict")

    updated = 0
    for env_key, secret_key in source.field_map.items():
        if os.environ.get(env_key, "").strip():
            continue
        value = secret_data.get(secret_key)
        if value is None:
            continue
        os.environ[env_key] = json.dumps(value) if isinstance(value, (dict, list)) else str(value)
        updated += 1

    _log.info(
        "vault_secrets_loaded",
        extra={"payload": {"updated": updated, "path": source.path, "mount": source.mount}},
    )
