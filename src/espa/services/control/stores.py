"""Typed access to the entity tables used by the control core."""
from __future__ import annotations

import functools
import heapq
import logging
from typing import Callable, TypeVar

from espa.adapters.db import Table, TableError
from espa.config.const import SYSTEM_PARTITION

from .errors import DependencyFailure
from .models import CODE_ROW, DEVICE_ROW, PROFILE_ROW, Device, Entry, PendingCode, Permission, UserProfile

__all__ = ["CredentialStore", "PermissionStore", "DeviceRegistry", "EntryStore"]

_log = logging.getLogger("espa.storage")

T = TypeVar("T")

ADMIN_MARKER_ROW = "admin-assigned"


def _storage_call(func: Callable[..., T]) -> Callable[..., T]:
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except TableError as exc:
            _log.error("storage call %s failed", func.__qualname__, exc_info=True)
            raise DependencyFailure("Storage unavailable", code="storage_failure") from exc

    return wrapper


class CredentialStore:
    """User profiles, pending one-time codes and the admin marker."""

    def __init__(self, table: Table) -> None:
        self._table = table

    @_storage_call
    def get_profile(self, email: str) -> UserProfile | None:
        entity = self._table.get(email, PROFILE_ROW)
        if entity is None or not entity.get("pinHash"):
            return None
        return UserProfile.from_entity(entity)

    @_storage_call
    def any_profile_exists(self) -> bool:
        profiles = (row for row in self._table.query(row_key=PROFILE_ROW) if row.get("pinHash"))
        return next(profiles, None) is not None

    @_storage_call
    def save_profile(self, profile: UserProfile) -> None:
        self._table.upsert(profile.to_entity())

    @_storage_call
    def update_login_state(self, profile: UserProfile) -> None:
        entity = profile.to_entity()
        self._table.merge(
            {
                "partitionKey": entity["partitionKey"],
                "rowKey": entity["rowKey"],
                "failedAttempts": entity["failedAttempts"],
                "lockedUntil": entity["lockedUntil"],
            }
        )

    @_storage_call
    def put_code(self, pending: PendingCode) -> None:
        self._table.upsert(pending.to_entity())

    @_storage_call
    def get_code(self, email: str) -> PendingCode | None:
        entity = self._table.get(email, CODE_ROW)
        return PendingCode.from_entity(entity) if entity is not None else None

    @_storage_call
    def delete_code(self, email: str) -> None:
        self._table.delete(email, CODE_ROW)

    @_storage_call
    def claim_admin(self, email: str) -> bool:
        """Atomically record ``email`` as the admin unless someone already is."""

        return self._table.insert({"partitionKey": SYSTEM_PARTITION, "rowKey": ADMIN_MARKER_ROW, "email": email})

    @_storage_call
    def admin_holder(self) -> str | None:
        entity = self._table.get(SYSTEM_PARTITION, ADMIN_MARKER_ROW)
        return str(entity["email"]) if entity and entity.get("email") else None


class PermissionStore:
    """One record per (email, device) pair; partitioned by email."""

    def __init__(self, table: Table) -> None:
        self._table = table

    @_storage_call
    def get(self, email: str, device_id: str) -> Permission | None:
        entity = self._table.get(email, device_id)
        return Permission.from_entity(entity) if entity is not None else None

    @_storage_call
    def for_user(self, email: str) -> list[Permission]:
        return [Permission.from_entity(row) for row in self._table.query(partition_key=email)]

    @_storage_call
    def for_device(self, device_id: str) -> list[Permission]:
        return [Permission.from_entity(row) for row in self._table.query(row_key=device_id)]

    @_storage_call
    def put(self, permission: Permission) -> None:
        self._table.upsert(permission.to_entity())

    @_storage_call
    def delete(self, email: str, device_id: str) -> None:
        self._table.delete(email, device_id)

    def revoke_all(self, device_id: str) -> list[Permission]:
        revoked = self.for_device(device_id)
        for permission in revoked:
            self.delete(permission.email, permission.device_id)
        return revoked


class DeviceRegistry:
    def __init__(self, table: Table) -> None:
        self._table = table

    @_storage_call
    def get(self, device_id: str) -> Device | None:
        entity = self._table.get(device_id, DEVICE_ROW)
        return Device.from_entity(entity) if entity is not None else None

    @_storage_call
    def put(self, device: Device) -> None:
        self._table.upsert(device.to_entity())

    @_storage_call
    def create(self, device: Device) -> bool:
        return self._table.insert(device.to_entity())

    @_storage_call
    def delete(self, device_id: str) -> None:
        self._table.delete(device_id, DEVICE_ROW)


class EntryStore:
    """Content posted to a device, partitioned by device id."""

    def __init__(self, table: Table) -> None:
        self._table = table

    @_storage_call
    def add(self, entry: Entry) -> None:
        self._table.upsert(entry.to_entity())

    @_storage_call
    def latest(self, key: str, limit: int = 10) -> list[Entry]:
        rows = self._table.query(partition_key=key)
        return heapq.nlargest(
            limit,
            (Entry.from_entity(row) for row in rows),
            key=lambda entry: (entry.timestamp, entry.entry_id),
        )
