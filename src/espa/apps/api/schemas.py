# src/espa/apps/api/schemas.py
"""Request bodies of the HTTP API.

Fields are optional on purpose: presence and format checks happen in the
services so every failure carries the same error envelope.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EmailBody(_Body):
    email: str | None = None


class VerifyCodeBody(_Body):
    email: str | None = None
    code: str | int | None = None


class SetPinBody(_Body):
    pin: str | None = None
    setup_token: str | None = Field(default=None, alias="setupToken")


class LoginBody(_Body):
    email: str | None = None
    pin: str | None = None


class ClaimBody(_Body):
    device_id: str | None = Field(default=None, alias="deviceId")
    friendly_name: str | None = Field(default=None, alias="friendlyName")


class AnnounceBody(_Body):
    device_id: str | None = Field(default=None, alias="deviceId")
    email: str | None = None
    friendly_name: str | None = Field(default=None, alias="friendlyName")


class RenameBody(_Body):
    friendly_name: str | None = Field(default=None, alias="friendlyName")


class EntryBody(_Body):
    key: str | None = None
    value1: str | None = None
    value2: str | None = None
    game_group: str | None = Field(default=None, alias="gameGroup")
    event_type: str | None = Field(default=None, alias="eventType")
    opponent: str | None = None
    is_home: bool = Field(default=False, alias="isHome")
    score_home: Any = Field(default=None, alias="scoreHome")
    score_away: Any = Field(default=None, alias="scoreAway")

    def extras(self) -> dict[str, Any]:
        return self.model_dump(
            by_alias=True,
            include={"game_group", "event_type", "opponent", "is_home", "score_home", "score_away"},
        )
