"""Enumerations for roles, commands, token purposes and dispatch states."""
from __future__ import annotations

from enum import Enum

__all__ = [
    "Role",
    "Command",
    "TokenPurpose",
    "DispatchMode",
    "DispatchState",
    "AnnounceStatus",
]


class _StrEnum(str, Enum):
    """Simple ``str``-backed enum compatible with Python 3.10."""

    def __str__(self) -> str:  # pragma: no cover - convenience for logging only
        return str(self.value)


class Role(_StrEnum):
    MASTER = "master"
    CONTRIBUTOR = "contributor"
    # only ever reported on a grant, never stored on a permission
    ADMIN = "admin"


class Command(_StrEnum):
    PLAY = "play"
    PAUSE = "pause"
    FULLSCREEN = "fullscreen"
    CHANGE_TRACK = "change-track"
    STATUS = "status"
    RESTART = "restart"


class TokenPurpose(_StrEnum):
    SETUP = "setup"
    SESSION = "session"
    DEVICE = "device-auth"


class DispatchMode(_StrEnum):
    DIRECT = "direct"
    C2D = "c2d"


class DispatchState(_StrEnum):
    REQUESTED = "requested"
    DIRECT_ATTEMPT = "direct_attempt"
    DIRECT_SUCCEEDED = "direct_succeeded"
    DIRECT_FAILED = "direct_failed"
    FALLBACK_ATTEMPT = "fallback_attempt"
    FALLBACK_SUCCEEDED = "fallback_succeeded"
    FALLBACK_FAILED = "fallback_failed"
    REPORTED = "reported"


class AnnounceStatus(_StrEnum):
    REGISTERED = "registered"
    UPDATED = "updated"
    TRANSFERRED = "transferred"
