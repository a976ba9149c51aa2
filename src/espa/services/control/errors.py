"""Error taxonomy of the control core.

Every failure leaves the core as a :class:`ControlError` carrying an
:class:`ErrorEnvelope`; the HTTP layer renders the envelope and uses
``status_code`` verbatim.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

__all__ = [
    "ErrorEnvelope",
    "ControlError",
    "ValidationError",
    "Unauthenticated",
    "Forbidden",
    "NotFound",
    "RateLimited",
    "Locked",
    "DependencyFailure",
]


@dataclass(slots=True)
class ErrorEnvelope:
    code: str
    message: str
    retry_after: int | None = None

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.retry_after is not None:
            data["retryAfter"] = self.retry_after
        return data


class ControlError(RuntimeError):
    """Base class; subclasses pin the HTTP status and a default code."""

    status_code: ClassVar[int] = 500
    default_code: ClassVar[str] = "error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.envelope = ErrorEnvelope(
            code=code or self.default_code,
            message=message,
            retry_after=retry_after,
        )

    @property
    def code(self) -> str:
        return self.envelope.code

    @property
    def retry_after(self) -> int | None:
        return self.envelope.retry_after


class ValidationError(ControlError):
    status_code = 400
    default_code = "invalid_request"


class Unauthenticated(ControlError):
    status_code = 401
    default_code = "unauthenticated"


class Forbidden(ControlError):
    status_code = 403
    default_code = "forbidden"


class NotFound(ControlError):
    status_code = 404
    default_code = "not_found"


class RateLimited(ControlError):
    status_code = 429
    default_code = "rate_limited"


class Locked(ControlError):
    status_code = 429
    default_code = "account_locked"


class DependencyFailure(ControlError):
    status_code = 500
    default_code = "dependency_failure"
