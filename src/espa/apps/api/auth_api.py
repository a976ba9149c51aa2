# src/espa/apps/api/auth_api.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from espa.services.control import ControlContext

from .deps import get_context
from .schemas import EmailBody, LoginBody, SetPinBody, VerifyCodeBody

router = APIRouter(prefix="/auth", tags=["auth"])


def _text(value: str | int | None) -> str:
    # codes typed into number inputs arrive as JSON numbers
    return "" if value is None else str(value)


@router.post("/lookup")
def lookup(body: EmailBody, ctx: ControlContext = Depends(get_context)) -> dict[str, Any]:
    return ctx.auth.lookup(body.email or "")


@router.post("/send-otp")
async def send_otp(body: EmailBody, ctx: ControlContext = Depends(get_context)) -> dict[str, Any]:
    await ctx.auth.send_code(body.email or "")
    return {"ok": True, "message": "OTP sent"}


@router.post("/verify-otp")
def verify_otp(body: VerifyCodeBody, ctx: ControlContext = Depends(get_context)) -> dict[str, Any]:
    setup_token = ctx.auth.verify_code(body.email or "", _text(body.code))
    return {"ok": True, "setupToken": setup_token}


@router.post("/set-pin")
def set_pin(body: SetPinBody, ctx: ControlContext = Depends(get_context)) -> dict[str, Any]:
    return ctx.auth.set_pin(body.pin or "", body.setup_token or "").as_payload()


@router.post("/login")
def login(body: LoginBody, ctx: ControlContext = Depends(get_context)) -> dict[str, Any]:
    return ctx.auth.login(body.email or "", body.pin or "").as_payload()
