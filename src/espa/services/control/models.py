"""Dataclasses capturing the entity schema of the control service."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

from .enums import Role

__all__ = [
    "format_time",
    "parse_time",
    "UserProfile",
    "PendingCode",
    "Device",
    "Permission",
    "Entry",
    "PROFILE_ROW",
    "CODE_ROW",
    "DEVICE_ROW",
]

PROFILE_ROW = "profile"
CODE_ROW = "otp"
DEVICE_ROW = "metadata"


def format_time(moment: datetime) -> str:
    instant = moment.astimezone(timezone.utc)
    return instant.replace(microsecond=instant.microsecond // 1000 * 1000).isoformat().replace("+00:00", "Z")


def parse_time(value: Any) -> datetime | None:
    """Parse a stored timestamp; ``0``/empty mean "not set"."""

    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        # legacy rows keep epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def _optional_time(moment: datetime | None) -> str | None:
    return format_time(moment) if moment is not None else None


@dataclass(slots=True)
class UserProfile:
    email: str
    pin_hash: str
    is_admin: bool = False
    failed_attempts: int = 0
    locked_until: datetime | None = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and now < self.locked_until

    @classmethod
    def from_entity(cls, entity: Mapping[str, Any]) -> "UserProfile":
        return cls(
            email=str(entity["partitionKey"]),
            pin_hash=str(entity.get("pinHash") or ""),
            is_admin=bool(entity.get("isAdmin")),
            failed_attempts=int(entity.get("failedAttempts") or 0),
            locked_until=parse_time(entity.get("lockedUntil")),
        )

    def to_entity(self) -> dict[str, Any]:
        return {
            "partitionKey": self.email,
            "rowKey": PROFILE_ROW,
            "pinHash": self.pin_hash,
            "isAdmin": self.is_admin,
            "failedAttempts": self.failed_attempts,
            "lockedUntil": _optional_time(self.locked_until) or 0,
        }


@dataclass(slots=True)
class PendingCode:
    email: str
    code: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    @classmethod
    def from_entity(cls, entity: Mapping[str, Any]) -> "PendingCode":
        expires_at = parse_time(entity.get("expires"))
        if expires_at is None:
            expires_at = datetime.fromtimestamp(0, tz=timezone.utc)
        return cls(email=str(entity["partitionKey"]), code=str(entity.get("code", "")), expires_at=expires_at)

    def to_entity(self) -> dict[str, Any]:
        return {
            "partitionKey": self.email,
            "rowKey": CODE_ROW,
            "code": self.code,
            "expires": format_time(self.expires_at),
        }


@dataclass(slots=True)
class Device:
    device_id: str
    friendly_name: str
    master_email: str | None
    created_at: datetime
    last_announced_at: datetime | None = None
    dispatch_connection_string: str | None = None
    dispatch_status: str | None = None
    dispatch_registered_at: datetime | None = None
    device_token_issued_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: Mapping[str, Any]) -> "Device":
        device_id = str(entity["partitionKey"])
        return cls(
            device_id=device_id,
            friendly_name=str(entity.get("friendlyName") or device_id),
            master_email=entity.get("masterEmail") or None,
            created_at=parse_time(entity.get("createdAt")) or datetime.fromtimestamp(0, tz=timezone.utc),
            last_announced_at=parse_time(entity.get("lastAnnouncedAt")),
            dispatch_connection_string=entity.get("iotHubConnectionString") or None,
            dispatch_status=entity.get("iotHubStatus") or None,
            dispatch_registered_at=parse_time(entity.get("iotHubRegisteredAt")),
            device_token_issued_at=parse_time(entity.get("deviceTokenIssuedAt")),
        )

    def to_entity(self) -> dict[str, Any]:
        entity: dict[str, Any] = {
            "partitionKey": self.device_id,
            "rowKey": DEVICE_ROW,
            "friendlyName": self.friendly_name,
            "masterEmail": self.master_email,
            "createdAt": format_time(self.created_at),
        }
        optional = {
            "lastAnnouncedAt": _optional_time(self.last_announced_at),
            "iotHubConnectionString": self.dispatch_connection_string,
            "iotHubStatus": self.dispatch_status,
            "iotHubRegisteredAt": _optional_time(self.dispatch_registered_at),
            "deviceTokenIssuedAt": _optional_time(self.device_token_issued_at),
        }
        entity.update({key: value for key, value in optional.items() if value is not None})
        return entity


@dataclass(slots=True)
class Permission:
    email: str
    device_id: str
    role: Role
    added_by: str

    @classmethod
    def from_entity(cls, entity: Mapping[str, Any]) -> "Permission":
        return cls(
            email=str(entity["partitionKey"]),
            device_id=str(entity["rowKey"]),
            role=Role(entity.get("role", Role.CONTRIBUTOR.value)),
            added_by=str(entity.get("addedBy") or ""),
        )

    def to_entity(self) -> dict[str, Any]:
        return {
            "partitionKey": self.email,
            "rowKey": self.device_id,
            "role": self.role.value,
            "addedBy": self.added_by,
        }


@dataclass(slots=True)
class Entry:
    key: str
    entry_id: str
    timestamp: datetime
    value1: str
    value2: str = ""
    created_by: str = ""
    game_group: str | None = None
    event_type: str | None = None
    opponent: str | None = None
    is_home: bool = False
    score_home: int | None = None
    score_away: int | None = None

    @classmethod
    def from_entity(cls, entity: Mapping[str, Any]) -> "Entry":
        return cls(
            key=str(entity["partitionKey"]),
            entry_id=str(entity["rowKey"]),
            timestamp=parse_time(entity.get("timestamp")) or datetime.fromtimestamp(0, tz=timezone.utc),
            value1=str(entity.get("value1", "")),
            value2=str(entity.get("value2") or ""),
            created_by=str(entity.get("createdBy") or ""),
            game_group=entity.get("gameGroup"),
            event_type=entity.get("eventType"),
            opponent=entity.get("opponent"),
            is_home=bool(entity.get("isHome")),
            score_home=entity.get("scoreHome"),
            score_away=entity.get("scoreAway"),
        )

    def to_entity(self) -> dict[str, Any]:
        return {
            "partitionKey": self.key,
            "rowKey": self.entry_id,
            "timestamp": format_time(self.timestamp),
            "value1": self.value1,
            "value2": self.value2,
            "createdBy": self.created_by,
            "gameGroup": self.game_group,
            "eventType": self.event_type,
            "opponent": self.opponent,
            "isHome": self.is_home,
            "scoreHome": self.score_home,
            "scoreAway": self.score_away,
        }

    def as_public(self) -> dict[str, Any]:
        data = self.to_entity()
        data.pop("partitionKey")
        data["entryId"] = data.pop("rowKey")
        data.pop("createdBy")
        return data
