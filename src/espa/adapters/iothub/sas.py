"""Shared access signature helpers for IoT Hub style endpoints."""
from __future__ import annotations

import base64
import hashlib
import hmac
import time
from dataclasses import dataclass
from urllib.parse import quote

__all__ = ["HubConnection", "parse_connection_string", "connection_string_key", "generate_sas_token"]


@dataclass(slots=True, frozen=True)
class HubConnection:
    host_name: str
    key: str
    key_name: str | None = None
    device_id: str | None = None

    @property
    def hub_name(self) -> str:
        return self.host_name.split(".", 1)[0]


def _fields(connection_string: str) -> dict[str, str]:
    parts: dict[str, str] = {}
    for chunk in connection_string.strip().split(";"):
        if not chunk:
            continue
        name, sep, value = chunk.partition("=")
        if not sep:
            raise ValueError(f"malformed connection string segment: {name!r}")
        parts[name.strip()] = value.strip()
    return parts


def parse_connection_string(connection_string: str) -> HubConnection:
    parts = _fields(connection_string)
    host = parts.get("HostName")
    key = parts.get("SharedAccessKey")
    if not host or not key:
        raise ValueError("connection string needs HostName and SharedAccessKey")
    return HubConnection(
        host_name=host,
        key=key,
        key_name=parts.get("SharedAccessKeyName"),
        device_id=parts.get("DeviceId"),
    )


def connection_string_key(connection_string: str) -> str | None:
    return _fields(connection_string).get("SharedAccessKey") or None


def generate_sas_token(
    resource_uri: str,
    signing_key: str,
    *,
    policy_name: str | None = None,
    ttl_seconds: int = 3600,
    now: float | None = None,
) -> str:
    """Return ``SharedAccessSignature sr=..&sig=..&se=..`` for ``resource_uri``."""

    encoded_uri = quote(resource_uri, safe="")
    expiry = int(now if now is not None else time.time()) + int(ttl_seconds)
    to_sign = f"{encoded_uri}\n{expiry}".encode("utf-8")
    digest = hmac.new(base64.b64decode(signing_key), to_sign, hashlib.sha256).digest()
    signature = quote(base64.b64encode(digest).decode("ascii"), safe="")
    token = f"SharedAccessSignature sr={encoded_uri}&sig={signature}&se={expiry}"
    if policy_name:
        token += f"&skn={policy_name}"
    return token
