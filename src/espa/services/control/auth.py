# src/espa/services/control/auth.py
"""Passwordless enrollment and PIN login.

Flow: ``lookup`` decides between ``login`` (known user) and the one-time-code
branch (``send_code`` -> ``verify_code`` -> ``set_pin``).  Forgetting the PIN
simply re-enters the code branch.  Being authenticated means holding a valid
session token; nothing is kept server side.
"""
from __future__ import annotations

import logging
import math
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import bcrypt

from espa.adapters.mail import MailError, Mailer
from espa.config.settings import AuthSettings, MailSettings

from .enums import TokenPurpose
from .errors import DependencyFailure, Forbidden, Locked, NotFound, Unauthenticated, ValidationError
from .locks import KeyedLock
from .models import PendingCode, UserProfile
from .stores import CredentialStore
from .tokens import TokenError, TokenSigner

__all__ = ["AuthService", "SessionGrant", "normalize_email", "generate_code"]

_log = logging.getLogger("espa.auth")

_PIN_PATTERN = re.compile(r"^\d{4}$")


def normalize_email(email: str | None) -> str:
    value = (email or "").strip().lower()
    if not value:
        raise ValidationError("Email required", code="missing_email")
    return value


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


@dataclass(slots=True, frozen=True)
class SessionGrant:
    token: str
    email: str
    is_admin: bool

    def as_payload(self) -> dict[str, Any]:
        return {"ok": True, "token": self.token, "email": self.email, "isAdmin": self.is_admin}


class AuthService:
    def __init__(
        self,
        *,
        credentials: CredentialStore,
        tokens: TokenSigner,
        mailer: Mailer,
        settings: AuthSettings | None = None,
        mail_settings: MailSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._credentials = credentials
        self._tokens = tokens
        self._mailer = mailer
        self._settings = settings or AuthSettings()
        self._mail = mail_settings or MailSettings()
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._locks = KeyedLock()

    # ------------------------------------------------------------------
    # lookup / one-time code
    # ------------------------------------------------------------------
    def lookup(self, email: str) -> dict[str, Any]:
        email = normalize_email(email)
        profile = self._credentials.get_profile(email)
        if profile is None:
            return {"exists": False}
        return {"exists": True, "isAdmin": profile.is_admin}

    async def send_code(self, email: str) -> None:
        email = normalize_email(email)
        pending = PendingCode(
            email=email,
            code=generate_code(),
            expires_at=self._clock() + timedelta(seconds=self._settings.code_ttl_seconds),
        )
        self._credentials.put_code(pending)
        body = self._mail.body_template.format(code=pending.code)
        try:
            await self._mailer.send_mail(email, self._mail.subject, body)
        except MailError as exc:
            raise DependencyFailure("Failed to send OTP", code="mail_failure") from exc
        _log.info("one-time code issued for %s", email)

    def verify_code(self, email: str, code: str) -> str:
        email = normalize_email(email)
        if not str(code or "").strip():
            raise ValidationError("Missing fields", code="missing_code")
        pending = self._credentials.get_code(email)
        if pending is None or pending.code != str(code).strip():
            _log.warning("invalid one-time code for %s", email)
            raise Unauthenticated("Invalid code", code="invalid_code")
        if pending.is_expired(self._clock()):
            raise Unauthenticated("Code expired", code="code_expired")
        setup_token = self._tokens.issue_setup(email)
        self._credentials.delete_code(email)
        return setup_token

    # ------------------------------------------------------------------
    # PIN
    # ------------------------------------------------------------------
    def _hash_pin(self, pin: str) -> str:
        salt = bcrypt.gensalt(rounds=self._settings.bcrypt_rounds)
        return bcrypt.hashpw(pin.encode("utf-8"), salt).decode("utf-8")

    def _pin_matches(self, pin: str, pin_hash: str) -> bool:
        try:
            return bcrypt.checkpw(pin.encode("utf-8"), pin_hash.encode("utf-8"))
        except ValueError as exc:
            raise DependencyFailure("Stored PIN hash is unreadable", code="storage_failure") from exc

    def _resolve_admin(self, email: str, existing: UserProfile | None) -> bool:
        if existing is not None and existing.is_admin:
            return True
        holder = self._credentials.admin_holder()
        if holder is not None:
            return holder == email
        if self._credentials.any_profile_exists():
            return False
        # two enrollments racing here: only one insert of the marker succeeds
        return self._credentials.claim_admin(email)

    def set_pin(self, pin: str, setup_token: str) -> SessionGrant:
        if not pin or not setup_token:
            raise ValidationError("Missing fields", code="missing_fields")
        if not _PIN_PATTERN.match(pin):
            raise ValidationError("PIN must be 4 digits", code="invalid_pin_format")
        try:
            claims = self._tokens.verify(setup_token, TokenPurpose.SETUP)
        except TokenError as exc:
            _log.warning("set-pin rejected: %s", exc)
            raise Forbidden("Invalid or expired token", code="invalid_token") from exc
        email = normalize_email(claims.email)

        pin_hash = self._hash_pin(pin)
        with self._locks.hold(email):
            existing = self._credentials.get_profile(email)
            is_admin = self._resolve_admin(email, existing)
            self._credentials.save_profile(
                UserProfile(email=email, pin_hash=pin_hash, is_admin=is_admin, failed_attempts=0, locked_until=None)
            )
        _log.info("PIN set for %s (admin=%s)", email, is_admin)
        return SessionGrant(token=self._tokens.issue_session(email, is_admin=is_admin), email=email, is_admin=is_admin)

    def login(self, email: str, pin: str) -> SessionGrant:
        email = normalize_email(email)
        if not pin:
            raise ValidationError("Missing fields", code="missing_fields")
        # failed-attempt counting is a read-modify-write of the profile
        with self._locks.hold(email):
            return self._check_pin(email, pin)

    def _check_pin(self, email: str, pin: str) -> SessionGrant:
        profile = self._credentials.get_profile(email)
        if profile is None:
            raise NotFound("User not found", code="user_not_found")

        now = self._clock()
        if profile.is_locked(now):
            remaining = (profile.locked_until - now).total_seconds()
            minutes = math.ceil(remaining / 60)
            raise Locked(
                f"Account locked. Try again in {minutes} minutes.",
                retry_after=math.ceil(remaining),
            )

        dirty = profile.failed_attempts > 0 or profile.locked_until is not None
        if profile.locked_until is not None:
            # lock has elapsed; the next run of mismatches starts from zero
            profile.failed_attempts = 0
            profile.locked_until = None

        if not self._pin_matches(pin, profile.pin_hash):
            profile.failed_attempts += 1
            if profile.failed_attempts >= self._settings.max_failed_attempts:
                profile.locked_until = now + timedelta(seconds=self._settings.lockout_seconds)
                self._credentials.update_login_state(profile)
                _log.warning("account %s locked after %d failed attempts", email, profile.failed_attempts)
                raise Locked(
                    "Locked. Too many failed attempts.",
                    retry_after=self._settings.lockout_seconds,
                )
            self._credentials.update_login_state(profile)
            _log.warning("invalid PIN for %s (%d)", email, profile.failed_attempts)
            raise Unauthenticated("Invalid PIN", code="invalid_pin")

        if dirty:
            profile.failed_attempts = 0
            profile.locked_until = None
            self._credentials.update_login_state(profile)
        return SessionGrant(
            token=self._tokens.issue_session(email, is_admin=profile.is_admin),
            email=email,
            is_admin=profile.is_admin,
        )
