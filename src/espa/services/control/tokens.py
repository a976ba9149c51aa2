"""Signed, stateless tokens: setup, session and device credentials."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import jwt

from .enums import TokenPurpose

__all__ = ["TokenClaims", "TokenError", "TokenExpired", "TokenPurposeMismatch", "TokenSigner"]

_ALGORITHM = "HS256"


class TokenError(Exception):
    """Signature or structure of a token is invalid."""


class TokenExpired(TokenError):
    pass


class TokenPurposeMismatch(TokenError):
    """The token is genuine but was issued for another purpose."""


@dataclass(slots=True, frozen=True)
class TokenClaims:
    purpose: TokenPurpose
    expires_at: datetime
    email: str | None = None
    is_admin: bool = False
    device_id: str | None = None


class TokenSigner:
    def __init__(
        self,
        *,
        secret: str,
        device_secret: str,
        setup_ttl: timedelta = timedelta(minutes=15),
        session_ttl: timedelta = timedelta(days=180),
        device_ttl: timedelta = timedelta(days=365),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._secret = secret
        self._device_secret = device_secret
        self._ttls = {
            TokenPurpose.SETUP: setup_ttl,
            TokenPurpose.SESSION: session_ttl,
            TokenPurpose.DEVICE: device_ttl,
        }
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def _key(self, purpose: TokenPurpose) -> str:
        return self._device_secret if purpose is TokenPurpose.DEVICE else self._secret

    def _encode(self, purpose: TokenPurpose, claims: dict[str, Any]) -> str:
        now = self._clock()
        payload = dict(claims)
        payload["purpose"] = purpose.value
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int((now + self._ttls[purpose]).timestamp())
        return jwt.encode(payload, self._key(purpose), algorithm=_ALGORITHM)

    def issue_setup(self, email: str) -> str:
        return self._encode(TokenPurpose.SETUP, {"email": email})

    def issue_session(self, email: str, *, is_admin: bool) -> str:
        return self._encode(TokenPurpose.SESSION, {"email": email, "isAdmin": bool(is_admin)})

    def issue_device(self, device_id: str, master_email: str) -> str:
        return self._encode(
            TokenPurpose.DEVICE,
            {"deviceId": device_id, "masterEmail": master_email, "type": TokenPurpose.DEVICE.value},
        )

    def verify(self, token: str, purpose: TokenPurpose) -> TokenClaims:
        """Validate signature, expiry and purpose of ``token``.

        Expiry is checked against the injected clock rather than PyJWT's wall
        clock so tests can move time.
        """

        if not token:
            raise TokenError("empty token")
        try:
            payload = jwt.decode(
                token,
                self._key(purpose),
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False, "require": ["exp"]},
            )
        except jwt.InvalidTokenError as exc:
            raise TokenError(str(exc)) from exc

        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        if self._clock() >= expires_at:
            raise TokenExpired("token expired")
        if payload.get("purpose") != purpose.value:
            raise TokenPurposeMismatch(f"expected {purpose.value} token")
        return TokenClaims(
            purpose=purpose,
            expires_at=expires_at,
            email=payload.get("email") or payload.get("masterEmail"),
            is_admin=bool(payload.get("isAdmin")),
            device_id=payload.get("deviceId"),
        )
