# src/espa/apps/api/device_api.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query

from espa.services.control import ControlContext, Principal

from .deps import current_principal, get_context
from .schemas import AnnounceBody, ClaimBody, EmailBody, RenameBody

router = APIRouter(prefix="/devices", tags=["devices"])


@router.get("")
def list_devices(
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.devices.list_devices(principal)


# fixed paths go before the /{device_id} routes
@router.post("/claim")
def claim(
    body: ClaimBody,
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.devices.claim(principal, body.device_id or "", body.friendly_name)


@router.post("/announce")
def announce(body: AnnounceBody, ctx: ControlContext = Depends(get_context)) -> dict[str, Any]:
    return ctx.devices.announce(body.device_id or "", body.email or "", body.friendly_name or "")


@router.get("/{device_id}/shares")
def list_shares(
    device_id: str,
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.devices.list_shares(principal, device_id)


@router.post("/{device_id}/share")
def share(
    device_id: str,
    body: EmailBody,
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.devices.share(principal, device_id, body.email)


@router.delete("/{device_id}/share/{email}")
def unshare(
    device_id: str,
    email: str,
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.devices.unshare(principal, device_id, email)


@router.delete("/{device_id}")
def release(
    device_id: str,
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.devices.release(principal, device_id)


@router.patch("/{device_id}")
def rename(
    device_id: str,
    body: RenameBody,
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.devices.rename(principal, device_id, body.friendly_name)


@router.post("/{device_id}/register-iot")
async def register_iot(
    device_id: str,
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> dict[str, Any]:
    return await ctx.devices.register_for_dispatch(principal, device_id)


@router.get("/{device_id}/iot-status")
async def iot_status(
    device_id: str,
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> dict[str, Any]:
    return await ctx.devices.dispatch_status(principal, device_id)


@router.get("/{device_id}/iot-connection")
def iot_connection(
    device_id: str,
    token: str | None = Query(default=None),
    ctx: ControlContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.devices.dispatch_connection(device_id, token)


@router.post("/{device_id}/commands/{command}")
async def send_command(
    device_id: str,
    command: str,
    payload: dict[str, Any] | None = Body(default=None),
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> dict[str, Any]:
    return await ctx.devices.send_command(principal, device_id, command, payload)
