"""Access control and command dispatch for ESPA TV players."""
from .context import ControlContext
from .errors import (
    ControlError,
    DependencyFailure,
    ErrorEnvelope,
    Forbidden,
    Locked,
    NotFound,
    RateLimited,
    Unauthenticated,
    ValidationError,
)
from .guard import MASTER_ONLY, MEMBER_ROLES, AccessGuard, Grant, Principal

__all__ = [
    "ControlContext",
    "ControlError",
    "DependencyFailure",
    "ErrorEnvelope",
    "Forbidden",
    "Locked",
    "NotFound",
    "RateLimited",
    "Unauthenticated",
    "ValidationError",
    "AccessGuard",
    "Grant",
    "Principal",
    "MASTER_ONLY",
    "MEMBER_ROLES",
]
