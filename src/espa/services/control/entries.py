"""Content posted to a display by its members."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from .errors import ValidationError
from .guard import MEMBER_ROLES, AccessGuard, Principal
from .ids import generate_entry_id
from .models import Entry, format_time
from .stores import EntryStore

__all__ = ["EntryService"]

_log = logging.getLogger("espa.entries")


def _optional_int(value: Any, field_name: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field_name} must be a number", code="invalid_score") from exc


def _optional_str(value: Any) -> str | None:
    return str(value) if value is not None else None


class EntryService:
    def __init__(
        self,
        *,
        entries: EntryStore,
        guard: AccessGuard,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._entries = entries
        self._guard = guard
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def post(
        self,
        principal: Principal,
        key: str,
        value1: str,
        value2: str | None = None,
        extras: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not key or not value1:
            raise ValidationError("key and value1 required", code="missing_fields")
        self._guard.authorize(principal, key, MEMBER_ROLES)

        extras = extras or {}
        now = self._clock()
        entry = Entry(
            key=key,
            entry_id=generate_entry_id(now),
            timestamp=now,
            value1=str(value1),
            value2=value2.strip() if isinstance(value2, str) else "",
            created_by=principal.email,
            game_group=_optional_str(extras.get("gameGroup")),
            event_type=_optional_str(extras.get("eventType")),
            opponent=_optional_str(extras.get("opponent")),
            is_home=bool(extras.get("isHome")),
            score_home=_optional_int(extras.get("scoreHome"), "scoreHome"),
            score_away=_optional_int(extras.get("scoreAway"), "scoreAway"),
        )
        self._entries.add(entry)
        _log.info("entry %s posted to %s by %s", entry.entry_id, key, principal.email)
        return {"ok": True, "timestamp": format_time(now), "entryId": entry.entry_id}

    def latest(self, principal: Principal, key: str, limit: int = 10) -> list[dict[str, Any]]:
        if not key:
            raise ValidationError("key is required", code="missing_key")
        self._guard.authorize(principal, key, MEMBER_ROLES)
        return [entry.as_public() for entry in self._entries.latest(key, limit=limit)]
