from __future__ import annotations

import pytest

from espa.services.control import Forbidden, Principal, ValidationError

ALICE = Principal("alice@example.com")
BOB = Principal("bob@example.com")


def test_member_posts_and_reads_newest_first(ctx, clock):
    ctx.devices.claim(ALICE, "pi-1", "Lobby")
    ctx.devices.share(ALICE, "pi-1", "bob@example.com")
    for index in range(12):
        clock.advance(seconds=1)
        poster = ALICE if index % 2 else BOB
        ctx.entries.post(poster, "pi-1", f"https://video/{index}", f"  Title {index} ")

    latest = ctx.entries.latest(BOB, "pi-1")
    assert len(latest) == 10
    assert latest[0]["value1"] == "https://video/11"
    assert latest[0]["value2"] == "Title 11"
    assert latest[-1]["value1"] == "https://video/2"
    assert "createdBy" not in latest[0]


def test_latest_is_newest_first_in_a_long_history(ctx, clock):
    ctx.devices.claim(ALICE, "pi-1", "Lobby")
    for index in range(205):
        clock.advance(seconds=1)
        ctx.entries.post(ALICE, "pi-1", f"v{index}")

    latest = ctx.entries.latest(ALICE, "pi-1")
    assert [entry["value1"] for entry in latest] == [f"v{index}" for index in range(204, 194, -1)]


def test_post_result_and_extras(ctx):
    ctx.devices.claim(ALICE, "pi-1", "Lobby")
    result = ctx.entries.post(
        ALICE,
        "pi-1",
        "https://video/1",
        None,
        {"gameGroup": "P12", "isHome": 1, "scoreHome": "3", "scoreAway": ""},
    )
    assert result["ok"] is True
    assert result["timestamp"] == "2025-03-01T12:00:00Z"
    [entry] = ctx.entries.latest(ALICE, "pi-1")
    assert entry["entryId"] == result["entryId"]
    assert entry["gameGroup"] == "P12"
    assert entry["isHome"] is True
    assert entry["scoreHome"] == 3
    assert entry["scoreAway"] is None


def test_post_rejects_bad_scores(ctx):
    ctx.devices.claim(ALICE, "pi-1", "Lobby")
    with pytest.raises(ValidationError):
        ctx.entries.post(ALICE, "pi-1", "https://video/1", "", {"scoreHome": "three"})


def test_post_requires_key_and_value(ctx):
    with pytest.raises(ValidationError):
        ctx.entries.post(ALICE, "pi-1", "")


def test_non_member_cannot_post_or_read(ctx):
    ctx.devices.claim(ALICE, "pi-1", "Lobby")
    with pytest.raises(Forbidden):
        ctx.entries.post(BOB, "pi-1", "https://video/1")
    with pytest.raises(Forbidden):
        ctx.entries.latest(BOB, "pi-1")


def test_posting_to_own_email_provisions_legacy_device(ctx):
    ctx.entries.post(ALICE, "alice@example.com", "https://video/1")
    [device] = ctx.devices.list_devices(ALICE)
    assert device["id"] == "alice@example.com"
    assert device["role"] == "master"
