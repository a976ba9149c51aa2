# src/espa/apps/api/deps.py
from __future__ import annotations

from fastapi import Depends, Header, Request

from espa.services.control import ControlContext, Principal


def get_context(request: Request) -> ControlContext:
    return request.app.state.control


def bearer_token(authorization: str | None = Header(default=None)) -> str | None:
    """Extract ``<token>`` from ``Authorization: Bearer <token>``."""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def current_principal(
    token: str | None = Depends(bearer_token),
    ctx: ControlContext = Depends(get_context),
) -> Principal:
    return ctx.guard.authenticate(token)
