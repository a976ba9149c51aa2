# src/espa/services/control/devices.py
"""Device lifecycle: claiming, sharing, announcements and command delivery.

Mastership lives on the device record (``masterEmail``) and is mirrored by a
``master`` permission.  Both are always written through
:meth:`DeviceService._write_mastership` so a failed permission write restores
the previous device record.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from espa.adapters.iothub import (
    DeviceNotFound,
    DeviceTransport,
    RegistrationResult,
    TransportError,
    connection_string_key,
    generate_sas_token,
)
from espa.config.settings import DispatchSettings, IoTHubSettings

from .auth import normalize_email
from .dispatcher import CommandDispatcher, validate_command
from .enums import AnnounceStatus, Role, TokenPurpose
from .errors import DependencyFailure, Forbidden, NotFound, RateLimited, ValidationError
from .guard import AccessGuard, Principal
from .locks import KeyedLock
from .models import Device, Permission, format_time
from .rate_limit import RateLimiter
from .stores import DeviceRegistry, PermissionStore
from .tokens import TokenError, TokenSigner

__all__ = ["DeviceService"]

_log = logging.getLogger("espa.devices")

CLAIM_ADDED_BY = "user-claim"
ANNOUNCE_ADDED_BY = "pi-announcement"


class DeviceService:
    def __init__(
        self,
        *,
        devices: DeviceRegistry,
        permissions: PermissionStore,
        guard: AccessGuard,
        tokens: TokenSigner,
        transport: DeviceTransport,
        dispatcher: CommandDispatcher,
        limiter: RateLimiter,
        hub_name: str,
        settings: DispatchSettings | None = None,
        iot_settings: IoTHubSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self._devices = devices
        self._permissions = permissions
        self._guard = guard
        self._tokens = tokens
        self._transport = transport
        self._dispatcher = dispatcher
        self._limiter = limiter
        self._hub_name = hub_name
        self._settings = settings or DispatchSettings()
        self._iot = iot_settings or IoTHubSettings()
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._locks = locks if locks is not None else KeyedLock()

    def _write_mastership(self, device: Device, previous: Device | None, added_by: str) -> None:
        self._devices.put(device)
        try:
            self._permissions.put(
                Permission(email=device.master_email or "", device_id=device.device_id, role=Role.MASTER, added_by=added_by)
            )
        except DependencyFailure:
            _log.error("master permission write failed for %s, restoring device record", device.device_id)
            try:
                if previous is None:
                    self._devices.delete(device.device_id)
                else:
                    self._devices.put(previous)
            except DependencyFailure:
                _log.error("could not restore device record %s", device.device_id, exc_info=True)
            raise

    # ------------------------------------------------------------------
    # listing / claiming
    # ------------------------------------------------------------------
    def list_devices(self, principal: Principal) -> list[dict[str, Any]]:
        result = []
        for permission in self._permissions.for_user(principal.email):
            device = self._devices.get(permission.device_id)
            if device is None:
                result.append(
                    {
                        "id": permission.device_id,
                        "role": permission.role.value,
                        "friendlyName": permission.device_id,
                        "masterEmail": principal.email if permission.role is Role.MASTER else "unknown",
                    }
                )
                continue
            result.append(
                {
                    "id": device.device_id,
                    "role": permission.role.value,
                    "friendlyName": device.friendly_name or device.device_id,
                    "masterEmail": device.master_email,
                }
            )
        return result

    def claim(self, principal: Principal, device_id: str, friendly_name: str | None = None) -> dict[str, Any]:
        device_id = (device_id or "").strip()
        if not device_id:
            raise ValidationError("deviceId required", code="missing_device_id")
        with self._locks.hold(device_id):
            existing = self._devices.get(device_id)
            if existing is not None and existing.master_email and existing.master_email != principal.email:
                _log.warning("%s tried to claim %s owned by another user", principal.email, device_id)
                raise Forbidden("Device already claimed by another user", code="already_claimed")
            name = (friendly_name or "").strip() or device_id
            if existing is None:
                device = Device(device_id=device_id, friendly_name=name, master_email=principal.email, created_at=self._clock())
            else:
                device = replace(existing, friendly_name=name, master_email=principal.email)
            self._write_mastership(device, existing, CLAIM_ADDED_BY)
        _log.info("device %s claimed by %s", device_id, principal.email)
        return {"ok": True, "deviceId": device_id}

    # ------------------------------------------------------------------
    # sharing
    # ------------------------------------------------------------------
    def list_shares(self, principal: Principal, device_id: str) -> list[dict[str, Any]]:
        self._guard.require_master(principal, device_id, action="manage shares of")
        return [
            {"email": permission.email, "role": permission.role.value, "addedBy": permission.added_by}
            for permission in self._permissions.for_device(device_id)
        ]

    def share(self, principal: Principal, device_id: str, email: str | None) -> dict[str, Any]:
        target = (email or "").strip().lower()
        if "@" not in target:
            raise ValidationError("Valid email required", code="invalid_email")
        with self._locks.hold(device_id):
            _, device = self._guard.require_master(principal, device_id, action="share")
            if target == device.master_email:
                raise ValidationError("The master already owns this device", code="cannot_share_with_master")
            self._permissions.put(
                Permission(email=target, device_id=device_id, role=Role.CONTRIBUTOR, added_by=principal.email)
            )
        _log.info("%s shared %s with %s", principal.email, device_id, target)
        return {"ok": True}

    def unshare(self, principal: Principal, device_id: str, email: str) -> dict[str, Any]:
        target = (email or "").strip().lower()
        with self._locks.hold(device_id):
            _, device = self._guard.require_master(principal, device_id, action="manage shares of")
            if target == device.master_email:
                raise ValidationError("Cannot remove the master user", code="cannot_remove_master")
            self._permissions.delete(target, device_id)
        _log.info("%s removed %s from %s", principal.email, target, device_id)
        return {"ok": True}

    # ------------------------------------------------------------------
    # release / rename
    # ------------------------------------------------------------------
    def release(self, principal: Principal, device_id: str) -> dict[str, Any]:
        with self._locks.hold(device_id):
            self._guard.require_master(principal, device_id, action="release")
            revoked = self._permissions.revoke_all(device_id)
            self._devices.delete(device_id)
        _log.info("device %s released by %s (%d permissions revoked)", device_id, principal.email, len(revoked))
        return {"ok": True}

    def rename(self, principal: Principal, device_id: str, friendly_name: str | None) -> dict[str, Any]:
        name = (friendly_name or "").strip()
        if not name:
            raise ValidationError("friendlyName required", code="missing_friendly_name")
        with self._locks.hold(device_id):
            _, device = self._guard.require_master(principal, device_id, action="rename")
            device.friendly_name = name
            self._devices.put(device)
        return {"ok": True}

    # ------------------------------------------------------------------
    # player announcements
    # ------------------------------------------------------------------
    def _is_default_name(self, name: str, device_id: str) -> bool:
        return name.startswith(self._settings.default_name_prefix) or name == device_id

    def announce(self, device_id: str, email: str, friendly_name: str) -> dict[str, Any]:
        """Register or refresh a player under ``email`` without user auth.

        A different email than the current master transfers the device: every
        prior permission is revoked before the new master is written.
        """

        device_id = (device_id or "").strip()
        friendly_name = (friendly_name or "").strip()
        if not device_id or not email or not friendly_name:
            raise ValidationError("Missing fields", code="missing_fields")
        email = normalize_email(email)

        with self._locks.hold(device_id):
            existing = self._devices.get(device_id)
            owner_changed = existing is not None and existing.master_email != email
            if existing is not None and existing.master_email and owner_changed:
                _log.info("device %s changing hands from %s to %s", device_id, existing.master_email, email)
                revoked = self._permissions.revoke_all(device_id)
                _log.info("revoked %d permissions on %s", len(revoked), device_id)

            name = friendly_name
            if (
                existing is not None
                and not owner_changed
                and self._is_default_name(friendly_name, device_id)
                and existing.friendly_name
                and not existing.friendly_name.startswith(self._settings.default_name_prefix)
            ):
                name = existing.friendly_name

            now = self._clock()
            device_token = self._tokens.issue_device(device_id, email)
            if existing is None:
                device = Device(device_id=device_id, friendly_name=name, master_email=email, created_at=now)
            else:
                device = replace(existing, friendly_name=name, master_email=email)
            device.last_announced_at = now
            device.device_token_issued_at = now
            self._write_mastership(device, existing, ANNOUNCE_ADDED_BY)

        if existing is None:
            status = AnnounceStatus.REGISTERED
        elif owner_changed:
            status = AnnounceStatus.TRANSFERRED
        else:
            status = AnnounceStatus.UPDATED
        _log.info("device %s announced by %s: %s", device_id, email, status)
        return {"ok": True, "status": status.value, "deviceToken": device_token}

    # ------------------------------------------------------------------
    # commands and the dispatch backend
    # ------------------------------------------------------------------
    async def send_command(
        self,
        principal: Principal,
        device_id: str,
        command: str,
        payload: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        await asyncio.to_thread(self._guard.require_master, principal, device_id, action="send commands to")
        validate_command(command)
        admitted = self._limiter.admit((principal.email, device_id))
        if not admitted.allowed:
            _log.warning("rate limit hit by %s on %s", principal.email, device_id)
            raise RateLimited(
                "Rate limit exceeded. Too many commands.",
                retry_after=admitted.retry_after_seconds,
            )
        _log.info("%s sends %s to %s", principal.email, command, device_id)
        result = await self._dispatcher.dispatch(device_id, command, payload)
        return result.as_payload()

    def _record_registration(self, device: Device, registration: RegistrationResult, now: datetime) -> None:
        with self._locks.hold(device.device_id):
            current = self._devices.get(device.device_id) or device
            current.dispatch_connection_string = registration.connection_string
            current.dispatch_status = registration.status
            current.dispatch_registered_at = now
            current.device_token_issued_at = now
            self._devices.put(current)

    async def register_for_dispatch(self, principal: Principal, device_id: str) -> dict[str, Any]:
        _, device = await asyncio.to_thread(self._guard.require_master, principal, device_id, action="register")
        try:
            registration = await self._transport.register_device(device_id)
        except TransportError as exc:
            _log.error("IoT Hub registration of %s failed", device_id, exc_info=True)
            raise DependencyFailure("IoT Hub registration failed", code="registration_failed") from exc

        now = self._clock()
        device_token = self._tokens.issue_device(device_id, device.master_email or principal.email)
        await asyncio.to_thread(self._record_registration, device, registration, now)
        _log.info("device %s registered with the dispatch backend (created=%s)", device_id, registration.created)
        return {
            "ok": True,
            "deviceId": device_id,
            "iotHubStatus": registration.status,
            "registered": registration.created,
            "mock": registration.mock,
            "deviceToken": device_token,
        }

    async def dispatch_status(self, principal: Principal, device_id: str) -> dict[str, Any]:
        await asyncio.to_thread(self._guard.require_master, principal, device_id, action="check the status of")
        try:
            info = await self._transport.get_device(device_id)
        except DeviceNotFound as exc:
            raise NotFound("Device not registered with IoT Hub", code="not_registered") from exc
        except TransportError as exc:
            _log.error("IoT Hub status lookup for %s failed", device_id, exc_info=True)
            raise DependencyFailure("Failed to get IoT Hub status", code="status_failed") from exc
        return {
            "deviceId": device_id,
            "iotHubStatus": info.status,
            "connectionState": info.connection_state,
            "lastActivityTime": info.last_activity_time,
            "mock": info.mock,
        }

    def dispatch_connection(self, device_id: str, device_token: str | None) -> dict[str, Any]:
        """Mint a device-scoped SAS token for a player holding a device token."""

        if not device_token:
            raise ValidationError("Device authentication token required", code="missing_token")
        try:
            claims = self._tokens.verify(device_token, TokenPurpose.DEVICE)
        except TokenError as exc:
            _log.warning("invalid device token presented for %s", device_id)
            raise Forbidden("Invalid device authentication token", code="invalid_device_token") from exc
        if claims.device_id != device_id:
            raise Forbidden("Token not valid for this device", code="device_mismatch")

        device = self._devices.get(device_id)
        if device is None or not device.dispatch_connection_string:
            raise NotFound("Device not registered with IoT Hub", code="not_registered")
        key = connection_string_key(device.dispatch_connection_string)
        if key is None:
            raise DependencyFailure("Invalid connection string format", code="invalid_connection_string")

        ttl = timedelta(minutes=self._iot.device_sas_ttl_minutes)
        sas_token = generate_sas_token(
            f"{self._hub_name}.azure-devices.net/devices/{device_id}",
            key,
            ttl_seconds=int(ttl.total_seconds()),
            now=self._clock().timestamp(),
        )
        return {
            "deviceId": device_id,
            "hubName": self._hub_name,
            "sasToken": sas_token,
            "expiresIn": _describe_ttl(ttl),
            "iotHubStatus": device.dispatch_status,
            "registeredAt": format_time(device.dispatch_registered_at) if device.dispatch_registered_at else None,
        }


def _describe_ttl(ttl: timedelta) -> str:
    minutes = int(ttl.total_seconds() // 60)
    if minutes % 60 == 0:
        return f"{minutes // 60} hours"
    return f"{minutes} minutes"
