from __future__ import annotations

import asyncio

import pytest

from espa.adapters.iothub import DirectMethodResult, LoopbackTransport
from espa.services.control import DependencyFailure, ValidationError
from espa.services.control.dispatcher import CommandDispatcher
from espa.services.control.enums import DispatchMode, DispatchState


def _dispatcher(transport, clock, **kwargs) -> CommandDispatcher:
    options = {"response_timeout": 0.2, "connect_timeout": 0.1, "fallback_timeout": 0.2}
    options.update(kwargs)
    return CommandDispatcher(transport, clock=clock, source="tests", **options)


def _ms(clock) -> int:
    return int(clock().timestamp() * 1000)


def test_online_player_gets_direct_method(clock):
    transport = LoopbackTransport()
    calls = []

    def handler(method, payload):
        calls.append((method, dict(payload)))
        return DirectMethodResult(status=200, payload={"playing": True})

    transport.connect("pi-1", handler)
    result = asyncio.run(_dispatcher(transport, clock).dispatch("pi-1", "play", {"track": 2}))

    assert calls == [("play", {"track": 2})]
    assert result.mode is DispatchMode.DIRECT
    assert result.message_id == f"direct-{_ms(clock)}"
    assert result.trail[-2:] == [DispatchState.DIRECT_SUCCEEDED, DispatchState.REPORTED]
    payload = result.as_payload()
    assert payload["ok"] is True
    assert payload["sent"] is True
    assert payload["sentAt"] == "2025-03-01T12:00:00Z"
    assert payload["mode"] == "direct"
    assert payload["methodStatus"] == 200
    assert payload["methodPayload"] == {"playing": True}
    assert transport.queues == {}


def test_offline_player_falls_back_to_queue(clock):
    transport = LoopbackTransport()
    result = asyncio.run(_dispatcher(transport, clock).dispatch("pi-1", "pause", None))

    assert result.mode is DispatchMode.C2D
    assert result.message_id == f"pause-pi-1-{_ms(clock)}"
    assert result.trail == [
        DispatchState.REQUESTED,
        DispatchState.DIRECT_ATTEMPT,
        DispatchState.DIRECT_FAILED,
        DispatchState.FALLBACK_ATTEMPT,
        DispatchState.FALLBACK_SUCCEEDED,
        DispatchState.REPORTED,
    ]
    [(message_id, message)] = transport.queues["pi-1"]
    assert message_id == result.message_id
    assert message == {"command": "pause", "payload": {}, "timestamp": "2025-03-01T12:00:00Z", "source": "tests"}
    assert "methodStatus" not in result.as_payload()


def test_error_status_counts_as_direct_failure(clock):
    transport = LoopbackTransport()
    transport.connect("pi-1", lambda method, payload: DirectMethodResult(status=501, payload=None))
    result = asyncio.run(_dispatcher(transport, clock).dispatch("pi-1", "status"))
    assert result.mode is DispatchMode.C2D
    assert len(transport.queues["pi-1"]) == 1


def test_slow_direct_call_loses_the_race_and_is_cancelled(clock):
    transport = LoopbackTransport()
    cancelled = []

    async def slow(method, payload):
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            cancelled.append(method)
            raise
        return DirectMethodResult(status=200)

    transport.connect("pi-1", slow)
    result = asyncio.run(_dispatcher(transport, clock, response_timeout=0.05).dispatch("pi-1", "restart"))
    assert result.mode is DispatchMode.C2D
    assert cancelled == ["restart"]


def test_fallback_failure_is_reported_not_hidden(clock):
    transport = LoopbackTransport()
    transport.fail_enqueue = True
    with pytest.raises(DependencyFailure) as excinfo:
        asyncio.run(_dispatcher(transport, clock).dispatch("pi-1", "play"))
    assert excinfo.value.envelope.code == "dispatch_failed"


class _StuckQueue(LoopbackTransport):
    async def enqueue_durable(self, device_id, message, *, message_id):
        await asyncio.sleep(5)


def test_fallback_timeout_is_a_failure(clock):
    with pytest.raises(DependencyFailure):
        asyncio.run(_dispatcher(_StuckQueue(), clock, fallback_timeout=0.05).dispatch("pi-1", "play"))


def test_invalid_command_never_reaches_transport(clock):
    transport = LoopbackTransport()
    calls = []
    transport.connect("pi-1", lambda method, payload: calls.append(method) or DirectMethodResult(status=200))
    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(_dispatcher(transport, clock).dispatch("pi-1", "reboot"))
    assert excinfo.value.envelope.code == "invalid_command"
    assert calls == []
    assert transport.queues == {}
