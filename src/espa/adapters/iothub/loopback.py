"""In-process device transport used when no IoT Hub is configured.

Players that are "online" get a handler that answers direct calls; every other
device behaves as offline, so commands end up in the durable queue.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Mapping, Union

from .transport import DeviceInfo, DeviceNotFound, DirectMethodResult, RegistrationResult, TransportError

__all__ = ["LoopbackTransport"]

_log = logging.getLogger("espa.iothub")

DirectHandler = Callable[[str, Mapping[str, Any]], Union[DirectMethodResult, Awaitable[DirectMethodResult]]]


class LoopbackTransport:
    hub_name = "espa-tv-iot-hub"

    def __init__(self, *, hub_name: str | None = None, queue_size: int = 100) -> None:
        if hub_name:
            self.hub_name = hub_name
        self.handlers: dict[str, DirectHandler] = {}
        # per device, oldest messages drop first once full
        self.queues: dict[str, deque[tuple[str, dict[str, Any]]]] = {}
        self._queue_size = queue_size
        self.registered: dict[str, RegistrationResult] = {}
        self.fail_enqueue = False

    def connect(self, device_id: str, handler: DirectHandler | None = None) -> None:
        """Mark ``device_id`` online; ``handler`` answers its direct calls."""

        self.handlers[device_id] = handler or (lambda method, payload: DirectMethodResult(status=200, payload={"ok": True}))

    def disconnect(self, device_id: str) -> None:
        self.handlers.pop(device_id, None)

    async def invoke_direct(
        self,
        device_id: str,
        method: str,
        payload: Mapping[str, Any],
        *,
        response_timeout: float,
        connect_timeout: float,
    ) -> DirectMethodResult:
        handler = self.handlers.get(device_id)
        if handler is None:
            raise TransportError(f"device {device_id} is not online", status_code=404, error_code="DeviceNotOnline")
        result = handler(method, payload)
        if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
            result = await result
        return result

    async def enqueue_durable(self, device_id: str, message: Mapping[str, Any], *, message_id: str) -> None:
        if self.fail_enqueue:
            raise TransportError(f"queue for {device_id} unavailable", status_code=503)
        self.queues.setdefault(device_id, deque(maxlen=self._queue_size)).append((message_id, dict(message)))
        _log.info("[MOCK] queued %s for device %s", message_id, device_id)

    async def register_device(self, device_id: str) -> RegistrationResult:
        _log.info("[MOCK] registering device %s", device_id)
        key = base64.b64encode(f"mock-key-{device_id}".encode("utf-8")).decode("ascii")
        result = RegistrationResult(
            device_id=device_id,
            connection_string=f"HostName={self.hub_name}.azure-devices.net;DeviceId={device_id};SharedAccessKey={key}",
            status="enabled",
            created=device_id not in self.registered,
            mock=True,
        )
        self.registered[device_id] = result
        return result

    async def get_device(self, device_id: str) -> DeviceInfo:
        if device_id not in self.registered:
            raise DeviceNotFound(f"device {device_id} not found", status_code=404)
        return DeviceInfo(
            device_id=device_id,
            status="enabled",
            connection_state="Connected" if device_id in self.handlers else "Disconnected",
            mock=True,
        )

    async def aclose(self) -> None:
        pass
