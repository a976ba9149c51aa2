from __future__ import annotations

from datetime import timedelta

import jwt
import pytest

from espa.services.control.enums import TokenPurpose
from espa.services.control.tokens import TokenError, TokenExpired, TokenPurposeMismatch, TokenSigner


@pytest.fixture()
def signer(clock):
    return TokenSigner(secret="s3cret", device_secret="dev1ce", clock=clock)


def test_session_claims(signer, clock):
    claims = signer.verify(signer.issue_session("alice@example.com", is_admin=True), TokenPurpose.SESSION)
    assert claims.email == "alice@example.com"
    assert claims.is_admin is True
    assert claims.expires_at == clock() + timedelta(days=180)


def test_purposes_are_not_interchangeable(signer):
    setup = signer.issue_setup("alice@example.com")
    with pytest.raises(TokenPurposeMismatch):
        signer.verify(setup, TokenPurpose.SESSION)


def test_device_tokens_use_their_own_secret(signer):
    token = signer.issue_device("pi-1", "alice@example.com")
    payload = jwt.decode(token, "dev1ce", algorithms=["HS256"], options={"verify_exp": False})
    assert payload["type"] == "device-auth"
    assert payload["deviceId"] == "pi-1"
    with pytest.raises(jwt.InvalidSignatureError):
        jwt.decode(token, "s3cret", algorithms=["HS256"], options={"verify_exp": False})
    # and a user token can never pass as a device token
    with pytest.raises(TokenError):
        signer.verify(signer.issue_session("alice@example.com", is_admin=False), TokenPurpose.DEVICE)


def test_expiry_uses_injected_clock(signer, clock):
    token = signer.issue_setup("alice@example.com")
    clock.advance(minutes=14)
    assert signer.verify(token, TokenPurpose.SETUP).email == "alice@example.com"
    clock.advance(minutes=1)
    with pytest.raises(TokenExpired):
        signer.verify(token, TokenPurpose.SETUP)


def test_foreign_signature_rejected(signer):
    other = TokenSigner(secret="other", device_secret="other", clock=signer._clock)
    with pytest.raises(TokenError):
        signer.verify(other.issue_session("alice@example.com", is_admin=True), TokenPurpose.SESSION)
