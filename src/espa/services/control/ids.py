"""Identifier helpers for the control service.

Content entries must sort by creation time inside a device partition, so they
use UUID version 7.  Python does not ship a UUIDv7 generator before 3.14, hence
the small implementation below (draft-ietf-uuidrev-rfc4122bis section 5.2).
"""
from __future__ import annotations

import secrets
import time
import uuid
from datetime import datetime
from typing import NewType

__all__ = [
    "EntryId",
    "MessageId",
    "generate_entry_id",
    "direct_message_id",
    "durable_message_id",
    "uuid7",
]

EntryId = NewType("EntryId", str)
MessageId = NewType("MessageId", str)


_UUID7_MASK_48 = (1 << 48) - 1
_UUID7_VERSION_BITS = 0x7
_UUID7_VARIANT_BITS = 0b10


def uuid7(ts: float | None = None) -> uuid.UUID:
    """Return a UUID version 7 value.

    Args:
        ts: Optional timestamp (seconds). When omitted the current time is used.
    """

    if ts is None:
        ts = time.time()
    unix_ts_ms = int(ts * 1000)
    if unix_ts_ms < 0 or unix_ts_ms > _UUID7_MASK_48:
        raise ValueError("timestamp out of range for UUIDv7")

    value = (unix_ts_ms & _UUID7_MASK_48) << 80
    value |= _UUID7_VERSION_BITS << 76
    value |= secrets.randbits(12) << 64
    value |= _UUID7_VARIANT_BITS << 62
    value |= secrets.randbits(62)
    return uuid.UUID(int=value)


def _epoch_ms(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def generate_entry_id(moment: datetime | None = None) -> EntryId:
    return EntryId(str(uuid7(moment.timestamp() if moment is not None else None)))


def direct_message_id(moment: datetime) -> MessageId:
    return MessageId(f"direct-{_epoch_ms(moment)}")


def durable_message_id(command: str, device_id: str, moment: datetime) -> MessageId:
    return MessageId(f"{command}-{device_id}-{_epoch_ms(moment)}")
