# src/espa/services/control/dispatcher.py
"""Two-stage command delivery to a player.

A command is first tried as a direct method call (fast, needs the player
online).  When that fails or times out the command is queued as a durable
cloud-to-device message that the player drains once it reconnects.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, TypeVar

from espa.adapters.iothub import DeviceTransport, DirectMethodResult

from .enums import Command, DispatchMode, DispatchState
from .errors import DependencyFailure, ValidationError
from .ids import direct_message_id, durable_message_id
from .models import format_time

__all__ = ["CommandDispatcher", "DispatchResult", "validate_command", "VALID_COMMANDS"]

_log = logging.getLogger("espa.dispatch")

T = TypeVar("T")

VALID_COMMANDS = frozenset(command.value for command in Command)


class _RaceLost(Exception):
    """The timeout task finished before the operation did."""


async def _race(operation: Awaitable[T], timeout: float) -> T:
    """Run ``operation`` against a sleep of ``timeout`` seconds; cancel the loser."""

    task = asyncio.ensure_future(operation)
    timer = asyncio.ensure_future(asyncio.sleep(timeout))
    try:
        done, _ = await asyncio.wait({task, timer}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (task, timer):
            if not pending.done():
                pending.cancel()
    if task not in done:
        raise _RaceLost(f"no answer within {timeout}s")
    return task.result()


def validate_command(command: str) -> Command:
    if command not in VALID_COMMANDS:
        raise ValidationError(
            f"Invalid command. Valid: {', '.join(command.value for command in Command)}",
            code="invalid_command",
        )
    return Command(command)


@dataclass(slots=True)
class DispatchResult:
    device_id: str
    command: Command
    payload: dict[str, Any]
    message_id: str
    mode: DispatchMode
    sent: datetime
    method_status: int | None = None
    method_payload: Any = None
    trail: list[DispatchState] = field(default_factory=list)

    def as_payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ok": True,
            "deviceId": self.device_id,
            "command": self.command.value,
            "payload": self.payload,
            "messageId": self.message_id,
            "sent": True,
            "sentAt": format_time(self.sent),
            "mode": self.mode.value,
        }
        if self.method_status is not None:
            data["methodStatus"] = self.method_status
            data["methodPayload"] = self.method_payload
        return data


class CommandDispatcher:
    def __init__(
        self,
        transport: DeviceTransport,
        *,
        response_timeout: float = 15.0,
        connect_timeout: float = 5.0,
        fallback_timeout: float = 15.0,
        source: str = "espa-control",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._transport = transport
        self._response_timeout = response_timeout
        self._connect_timeout = connect_timeout
        self._fallback_timeout = fallback_timeout
        self._source = source
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    async def dispatch(self, device_id: str, command: str, payload: Mapping[str, Any] | None = None) -> DispatchResult:
        checked = validate_command(command)
        body = dict(payload or {})
        trail = [DispatchState.REQUESTED, DispatchState.DIRECT_ATTEMPT]

        direct = await self._try_direct(device_id, checked, body)
        if direct is not None:
            trail += [DispatchState.DIRECT_SUCCEEDED, DispatchState.REPORTED]
            sent = self._clock()
            _log.info("%s delivered to %s via direct method (status %s)", checked, device_id, direct.status)
            return DispatchResult(
                device_id=device_id,
                command=checked,
                payload=body,
                message_id=direct_message_id(sent),
                mode=DispatchMode.DIRECT,
                sent=sent,
                method_status=direct.status,
                method_payload=direct.payload,
                trail=trail,
            )

        trail += [DispatchState.DIRECT_FAILED, DispatchState.FALLBACK_ATTEMPT]
        sent = self._clock()
        message_id = durable_message_id(checked.value, device_id, sent)
        message = {
            "command": checked.value,
            "payload": body,
            "timestamp": format_time(sent),
            "source": self._source,
        }
        try:
            await _race(
                self._transport.enqueue_durable(device_id, message, message_id=message_id),
                self._fallback_timeout,
            )
        except Exception as exc:
            trail.append(DispatchState.FALLBACK_FAILED)
            _log.error("fallback delivery of %s to %s failed", checked, device_id, exc_info=True)
            raise DependencyFailure("Failed to send command", code="dispatch_failed") from exc

        trail += [DispatchState.FALLBACK_SUCCEEDED, DispatchState.REPORTED]
        _log.info("%s queued for %s as %s", checked, device_id, message_id)
        return DispatchResult(
            device_id=device_id,
            command=checked,
            payload=body,
            message_id=message_id,
            mode=DispatchMode.C2D,
            sent=sent,
            trail=trail,
        )

    async def _try_direct(self, device_id: str, command: Command, payload: dict[str, Any]) -> DirectMethodResult | None:
        try:
            result = await _race(
                self._transport.invoke_direct(
                    device_id,
                    command.value,
                    payload,
                    response_timeout=self._response_timeout,
                    connect_timeout=self._connect_timeout,
                ),
                self._response_timeout,
            )
        except Exception as exc:
            _log.warning("direct method %s on %s failed: %s", command, device_id, exc)
            return None
        if result.status >= 400:
            _log.warning("direct method %s on %s answered %s", command, device_id, result.status)
            return None
        return result
