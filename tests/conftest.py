from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from espa.adapters.db import MemoryTableService
from espa.adapters.iothub import LoopbackTransport
from espa.adapters.mail import LogMailer
from espa.config.settings import AuthSettings, Settings
from espa.services.control import ControlContext


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings() -> Settings:
    return Settings(auth=AuthSettings(jwt_secret="test-secret", device_jwt_secret="test-device-secret", bcrypt_rounds=4))


@pytest.fixture()
def transport() -> LoopbackTransport:
    return LoopbackTransport()


@pytest.fixture()
def mailer() -> LogMailer:
    return LogMailer()


@pytest.fixture()
def ctx(settings, clock, transport, mailer) -> ControlContext:
    return ControlContext.from_settings(
        settings,
        clock=clock,
        transport=transport,
        mailer=mailer,
        tables=MemoryTableService(),
    )
