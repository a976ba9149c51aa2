# src/espa/adapters/iothub/transport.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

import httpx

from .sas import HubConnection, generate_sas_token, parse_connection_string

__all__ = [
    "DeviceTransport",
    "DirectMethodResult",
    "RegistrationResult",
    "DeviceInfo",
    "TransportError",
    "DeviceNotFound",
    "IoTHubTransport",
]

_log = logging.getLogger("espa.iothub")


class TransportError(RuntimeError):
    """Raised when the device messaging backend rejects or fails a call."""

    def __init__(self, message: str, *, status_code: int | None = None, error_code: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class DeviceNotFound(TransportError):
    pass


@dataclass(slots=True)
class DirectMethodResult:
    status: int
    payload: Any = None


@dataclass(slots=True)
class RegistrationResult:
    device_id: str
    connection_string: str
    status: str
    created: bool
    mock: bool = False


@dataclass(slots=True)
class DeviceInfo:
    device_id: str
    status: str
    connection_state: str | None = None
    last_activity_time: str | None = None
    mock: bool = False
    extra: dict[str, Any] = field(default_factory=dict)


class DeviceTransport(Protocol):
    """Low-latency and durable delivery channels towards a player."""

    async def invoke_direct(
        self,
        device_id: str,
        method: str,
        payload: Mapping[str, Any],
        *,
        response_timeout: float,
        connect_timeout: float,
    ) -> DirectMethodResult: ...

    async def enqueue_durable(self, device_id: str, message: Mapping[str, Any], *, message_id: str) -> None: ...

    async def register_device(self, device_id: str) -> RegistrationResult: ...

    async def get_device(self, device_id: str) -> DeviceInfo: ...

    async def aclose(self) -> None: ...


class IoTHubTransport:
    """Talks to the IoT Hub service REST API with a hub-level SAS token."""

    def __init__(
        self,
        connection_string: str,
        *,
        api_version: str = "2021-04-12",
        sas_ttl_seconds: int = 3600,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._conn: HubConnection = parse_connection_string(connection_string)
        self._api_version = api_version
        self._sas_ttl = sas_ttl_seconds
        self._client = client or httpx.AsyncClient(base_url=f"https://{self._conn.host_name}")

    @property
    def hub_name(self) -> str:
        return self._conn.hub_name

    def _headers(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        token = generate_sas_token(
            self._conn.host_name,
            self._conn.key,
            policy_name=self._conn.key_name,
            ttl_seconds=self._sas_ttl,
        )
        headers = {"Authorization": token, "Content-Type": "application/json"}
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                path,
                params={"api-version": self._api_version},
                json=json,
                headers=self._headers(headers),
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.RequestError as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc
        if response.status_code == 404:
            raise DeviceNotFound(f"{path} not found", status_code=404, error_code=_error_code(response))
        if response.status_code >= 400:
            raise TransportError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                error_code=_error_code(response),
            )
        return response

    async def invoke_direct(
        self,
        device_id: str,
        method: str,
        payload: Mapping[str, Any],
        *,
        response_timeout: float,
        connect_timeout: float,
    ) -> DirectMethodResult:
        body = {
            "methodName": method,
            "responseTimeoutInSeconds": int(response_timeout),
            "connectTimeoutInSeconds": int(connect_timeout),
            "payload": dict(payload),
        }
        response = await self._request(
            "POST",
            f"/twins/{device_id}/methods",
            json=body,
            timeout=response_timeout + connect_timeout,
        )
        data = response.json()
        return DirectMethodResult(status=int(data.get("status", response.status_code)), payload=data.get("payload"))

    async def enqueue_durable(self, device_id: str, message: Mapping[str, Any], *, message_id: str) -> None:
        await self._request(
            "POST",
            f"/devices/{device_id}/messages/deviceBound",
            json=dict(message),
            headers={"iothub-messageid": message_id, "iothub-ack": "full"},
        )
        _log.info("c2d message %s queued for %s", message_id, device_id)

    async def register_device(self, device_id: str) -> RegistrationResult:
        created = False
        try:
            response = await self._request("GET", f"/devices/{device_id}")
            _log.info("device %s already exists in IoT Hub", device_id)
        except DeviceNotFound:
            _log.info("creating device %s in IoT Hub", device_id)
            response = await self._request(
                "PUT",
                f"/devices/{device_id}",
                json={"deviceId": device_id, "status": "enabled", "capabilities": {"iotEdge": False}},
            )
            created = True
        data = response.json()
        try:
            key = data["authentication"]["symmetricKey"]["primaryKey"]
        except (KeyError, TypeError) as exc:
            raise TransportError(f"device {device_id} has no symmetric key") from exc
        return RegistrationResult(
            device_id=device_id,
            connection_string=f"HostName={self._conn.host_name};DeviceId={device_id};SharedAccessKey={key}",
            status=str(data.get("status", "enabled")),
            created=created,
        )

    async def get_device(self, device_id: str) -> DeviceInfo:
        data = (await self._request("GET", f"/devices/{device_id}")).json()
        return DeviceInfo(
            device_id=str(data.get("deviceId", device_id)),
            status=str(data.get("status", "unknown")),
            connection_state=data.get("connectionState"),
            last_activity_time=data.get("lastActivityTime"),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_code(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        code = data.get("errorCode") or data.get("ErrorCode")
        return str(code) if code is not None else None
    return None
