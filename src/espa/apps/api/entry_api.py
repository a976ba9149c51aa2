# src/espa/apps/api/entry_api.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status

from espa.services.control import ControlContext, Principal

from .deps import current_principal, get_context
from .schemas import EntryBody

router = APIRouter(tags=["entries"])


@router.post("/entry", status_code=status.HTTP_201_CREATED)
def post_entry(
    body: EntryBody,
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.entries.post(principal, body.key or "", body.value1 or "", body.value2, body.extras())


@router.get("/entries/{key}")
def latest_entries(
    key: str,
    principal: Principal = Depends(current_principal),
    ctx: ControlContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.entries.latest(principal, key)
