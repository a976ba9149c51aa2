# src/espa/services/control/context.py
"""Wiring of stores, adapters and services into one object per process."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from espa.adapters.db import MemoryTableService, SQLiteTableService, TableService
from espa.adapters.iothub import DeviceTransport, IoTHubTransport, LoopbackTransport
from espa.adapters.mail import Mailer, build_mailer
from espa.config.const import TABLE_DEVICES, TABLE_ENTRIES, TABLE_PERMISSIONS, TABLE_USERS
from espa.config.settings import Settings, load_settings

from .auth import AuthService
from .devices import DeviceService
from .dispatcher import CommandDispatcher
from .entries import EntryService
from .guard import AccessGuard
from .locks import KeyedLock
from .rate_limit import RateLimiter
from .stores import CredentialStore, DeviceRegistry, EntryStore, PermissionStore
from .tokens import TokenSigner

__all__ = ["ControlContext"]

_log = logging.getLogger("espa.context")


@dataclass(slots=True)
class ControlContext:
    settings: Settings
    tables: TableService
    transport: DeviceTransport
    mailer: Mailer
    tokens: TokenSigner
    limiter: RateLimiter
    guard: AccessGuard
    auth: AuthService
    devices: DeviceService
    entries: EntryService

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
        transport: DeviceTransport | None = None,
        mailer: Mailer | None = None,
        tables: TableService | None = None,
        limiter: RateLimiter | None = None,
    ) -> "ControlContext":
        settings = settings or load_settings()
        clock = clock or (lambda: datetime.now(tz=timezone.utc))

        if tables is None:
            if settings.storage.sqlite_path:
                tables = SQLiteTableService(settings.storage.sqlite_path)
            else:
                tables = MemoryTableService()

        if transport is None:
            if settings.iot_hub.enabled:
                transport = IoTHubTransport(
                    settings.iot_hub.connection_string or "",
                    api_version=settings.iot_hub.api_version,
                    sas_ttl_seconds=settings.iot_hub.sas_ttl_minutes * 60,
                )
            else:
                _log.warning("no IoT Hub connection string configured; commands stay in process (mock mode)")
                transport = LoopbackTransport(hub_name=settings.iot_hub.hub_name)

        mailer = mailer or build_mailer(settings.mail)
        limiter = limiter or RateLimiter(
            max_requests=settings.rate_limit.max_requests,
            window_ms=settings.rate_limit.window_ms,
        )

        auth_cfg = settings.auth
        tokens = TokenSigner(
            secret=auth_cfg.jwt_secret,
            device_secret=auth_cfg.device_jwt_secret,
            setup_ttl=timedelta(seconds=auth_cfg.setup_token_ttl_seconds),
            session_ttl=timedelta(days=auth_cfg.session_token_ttl_days),
            device_ttl=timedelta(days=auth_cfg.device_token_ttl_days),
            clock=clock,
        )
        credentials = CredentialStore(tables.table(TABLE_USERS))
        permissions = PermissionStore(tables.table(TABLE_PERMISSIONS))
        devices = DeviceRegistry(tables.table(TABLE_DEVICES))
        entries = EntryStore(tables.table(TABLE_ENTRIES))

        device_locks = KeyedLock()
        guard = AccessGuard(tokens=tokens, permissions=permissions, devices=devices, clock=clock, locks=device_locks)
        dispatch_cfg = settings.dispatch
        dispatcher = CommandDispatcher(
            transport,
            response_timeout=dispatch_cfg.response_timeout_seconds,
            connect_timeout=dispatch_cfg.connect_timeout_seconds,
            fallback_timeout=dispatch_cfg.fallback_timeout_seconds,
            source=dispatch_cfg.source,
            clock=clock,
        )
        return cls(
            settings=settings,
            tables=tables,
            transport=transport,
            mailer=mailer,
            tokens=tokens,
            limiter=limiter,
            guard=guard,
            auth=AuthService(
                credentials=credentials,
                tokens=tokens,
                mailer=mailer,
                settings=auth_cfg,
                mail_settings=settings.mail,
                clock=clock,
            ),
            devices=DeviceService(
                devices=devices,
                permissions=permissions,
                guard=guard,
                tokens=tokens,
                transport=transport,
                dispatcher=dispatcher,
                limiter=limiter,
                hub_name=getattr(transport, "hub_name", settings.iot_hub.hub_name),
                settings=dispatch_cfg,
                iot_settings=settings.iot_hub,
                clock=clock,
                locks=device_locks,
            ),
            entries=EntryService(entries=entries, guard=guard, clock=clock),
        )

    async def aclose(self) -> None:
        await self.transport.aclose()
        self.tables.close()
