# src/espa/services/control/guard.py
"""Access control for device operations.

Management operations trust ``Device.masterEmail`` only.  Membership
operations (posting and reading content) trust the permission table, with the
legacy rule that a user may always act on the device named after their own
email.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from .enums import Role, TokenPurpose
from .errors import Forbidden, NotFound, Unauthenticated
from .locks import KeyedLock
from .models import Device, Permission
from .stores import DeviceRegistry, PermissionStore
from .tokens import TokenError, TokenPurposeMismatch, TokenSigner

__all__ = ["AccessGuard", "Grant", "Principal", "MEMBER_ROLES", "MASTER_ONLY"]

_log = logging.getLogger("espa.guard")

MEMBER_ROLES = frozenset({Role.MASTER, Role.CONTRIBUTOR})
MASTER_ONLY = frozenset({Role.MASTER})

LEGACY_ADDED_BY = "system-legacy"


@dataclass(slots=True, frozen=True)
class Principal:
    email: str
    is_admin: bool = False


@dataclass(slots=True, frozen=True)
class Grant:
    email: str
    device_id: str
    role: Role
    is_admin: bool = False


class AccessGuard:
    def __init__(
        self,
        *,
        tokens: TokenSigner,
        permissions: PermissionStore,
        devices: DeviceRegistry,
        clock: Callable[[], datetime] | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self._tokens = tokens
        self._permissions = permissions
        self._devices = devices
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._locks = locks if locks is not None else KeyedLock()

    def authenticate(self, token: str | None) -> Principal:
        if not token:
            raise Unauthenticated("Authentication required", code="missing_token")
        try:
            claims = self._tokens.verify(token, TokenPurpose.SESSION)
        except TokenPurposeMismatch as exc:
            raise Forbidden("Token not valid for this operation", code="wrong_token_purpose") from exc
        except TokenError as exc:
            raise Unauthenticated("Invalid or expired token", code="invalid_token") from exc
        if not claims.email:
            raise Unauthenticated("Invalid or expired token", code="invalid_token")
        return Principal(email=claims.email, is_admin=claims.is_admin)

    def authorize(
        self,
        credential: str | Principal | None,
        device_id: str,
        required_roles: Iterable[Role] = MEMBER_ROLES,
        *,
        auto_provision: bool = True,
    ) -> Grant:
        principal = credential if isinstance(credential, Principal) else self.authenticate(credential)
        required = frozenset(required_roles)
        if required == MASTER_ONLY:
            grant, _ = self.require_master(principal, device_id)
            return grant

        permission = self._permissions.get(principal.email, device_id)
        if permission is None:
            if auto_provision and device_id == principal.email:
                self._provision_legacy(principal.email)
                return Grant(principal.email, device_id, Role.MASTER, principal.is_admin)
            if principal.is_admin:
                return Grant(principal.email, device_id, Role.ADMIN, True)
            _log.warning("%s is not a member of %s", principal.email, device_id)
            raise Forbidden("No permission for this device: not a member", code="not_a_member")
        if permission.role not in required:
            if principal.is_admin:
                return Grant(principal.email, device_id, Role.ADMIN, True)
            raise Forbidden("Insufficient permissions", code="insufficient_permissions")
        return Grant(principal.email, device_id, permission.role, principal.is_admin)

    def require_master(self, principal: Principal, device_id: str, *, action: str = "manage") -> tuple[Grant, Device]:
        """Resolve mastership against the device record, not the permissions."""

        device = self._devices.get(device_id)
        if device is None:
            raise NotFound("Device not found", code="device_not_found")
        if device.master_email == principal.email:
            return Grant(principal.email, device_id, Role.MASTER, principal.is_admin), device
        if principal.is_admin:
            return Grant(principal.email, device_id, Role.ADMIN, True), device
        _log.warning("%s tried to %s %s without being master", principal.email, action, device_id)
        raise Forbidden(f"Only the device master can {action} this device", code="not_master")

    def _provision_legacy(self, email: str) -> None:
        # same per-device lock table as DeviceService
        with self._locks.hold(email):
            device = self._devices.get(email)
            if device is not None and device.master_email not in (None, email):
                raise Forbidden("No permission for this device: not a member", code="not_a_member")
            if device is None:
                self._devices.create(
                    Device(
                        device_id=email,
                        friendly_name=f"Legacy Device ({email})",
                        master_email=email,
                        created_at=self._clock(),
                    )
                )
            elif device.master_email is None:
                device.master_email = email
                self._devices.put(device)
            self._permissions.put(Permission(email=email, device_id=email, role=Role.MASTER, added_by=LEGACY_ADDED_BY))
        _log.info("auto-provisioned legacy device %s", email)
