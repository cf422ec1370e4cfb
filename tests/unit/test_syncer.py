"""Tests for the DefaultSyncer listener dispatch."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from matrix_sync_client.errors import (
    NetworkError,
    ProtocolError,
    RespError,
    SyncProcessingError,
)
from matrix_sync_client.events import Event
from matrix_sync_client.syncer import DEFAULT_FILTER, DefaultSyncer
from matrix_sync_client.types import RespSync

ME = "@bot:example.org"


def message(body: str, sender: str = "@carol:example.org") -> dict[str, Any]:
    return {"type": "m.room.message", "sender": sender, "content": {"msgtype": "m.text", "body": body}}


def member(user_id: str, membership: str) -> dict[str, Any]:
    return {
        "type": "m.room.member",
        "sender": user_id,
        "state_key": user_id,
        "content": {"membership": membership},
    }


def make_batch(**rooms: Any) -> RespSync:
    return RespSync.model_validate({"next_batch": "s2", "rooms": rooms})


class TestDispatch:
    """Events reach listeners registered for their type."""

    @pytest.mark.asyncio
    async def test_joined_room_events_get_room_id(self) -> None:
        syncer = DefaultSyncer(ME)
        seen: list[Event] = []
        syncer.on_event_type("m.room.message", seen.append)

        batch = make_batch(join={"!r:example.org": {"timeline": {"events": [message("hi")]}}})
        await syncer.on_batch(batch, "s1")

        assert [e.body() for e in seen] == ["hi"]
        assert seen[0].room_id == "!r:example.org"

    @pytest.mark.asyncio
    async def test_async_listener_awaited(self) -> None:
        syncer = DefaultSyncer(ME)
        seen: list[str] = []

        async def listener(event: Event) -> None:
            seen.append(event.body() or "")

        syncer.on_event_type("m.room.message", listener)
        await syncer.on_batch(make_batch(join={"!r:x": {"timeline": {"events": [message("a")]}}}), "s1")
        assert seen == ["a"]

    @pytest.mark.asyncio
    async def test_initial_sync_skipped(self) -> None:
        syncer = DefaultSyncer(ME)
        seen: list[Event] = []
        syncer.on_event_type("m.room.message", seen.append)

        await syncer.on_batch(make_batch(join={"!r:x": {"timeline": {"events": [message("old")]}}}), None)
        assert seen == []

    @pytest.mark.asyncio
    async def test_initial_sync_processed_when_enabled(self) -> None:
        syncer = DefaultSyncer(ME, process_initial_sync=True)
        seen: list[Event] = []
        syncer.on_event_type("m.room.message", seen.append)

        await syncer.on_batch(make_batch(join={"!r:x": {"timeline": {"events": [message("old")]}}}), None)
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_rejoined_room_dropped(self) -> None:
        """A timeline containing our own join is not replayed."""
        syncer = DefaultSyncer(ME)
        seen: list[Event] = []
        syncer.on_event_type("m.room.message", seen.append)

        batch = make_batch(
            join={
                "!rejoined:x": {"timeline": {"events": [message("history"), member(ME, "join")]}},
                "!other:x": {"timeline": {"events": [message("fresh"), member("@dave:x", "join")]}},
            }
        )
        await syncer.on_batch(batch, "s1")

        assert [e.body() for e in seen] == ["fresh"]

    @pytest.mark.asyncio
    async def test_invite_and_leave_sections(self) -> None:
        syncer = DefaultSyncer(ME)
        seen: list[Event] = []
        syncer.on_event_type("m.room.member", seen.append)

        batch = make_batch(
            invite={"!inv:x": {"invite_state": {"events": [member(ME, "invite")]}}},
            leave={"!left:x": {"timeline": {"events": [member(ME, "leave"), message("ignored")]}}},
        )
        await syncer.on_batch(batch, "s1")

        assert [(e.room_id, e.content["membership"]) for e in seen] == [
            ("!inv:x", "invite"),
            ("!left:x", "leave"),
        ]

    @pytest.mark.asyncio
    async def test_listener_failure_wrapped(self) -> None:
        syncer = DefaultSyncer(ME)

        def broken(event: Event) -> None:
            raise KeyError("boom")

        syncer.on_event_type("m.room.message", broken)

        with pytest.raises(SyncProcessingError) as exc_info:
            await syncer.on_batch(make_batch(join={"!r:x": {"timeline": {"events": [message("x")]}}}), "s1")
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert exc_info.value.event_type == "m.room.message"


class TestFailurePolicy:
    """Retry decisions."""

    @pytest.mark.asyncio
    async def test_default_delay(self) -> None:
        syncer = DefaultSyncer(ME)
        err = NetworkError("GET", "/sync", httpx.ConnectError("refused"))
        assert await syncer.on_failure(None, err) == 10.0

    @pytest.mark.asyncio
    async def test_rate_limit_uses_retry_after(self) -> None:
        syncer = DefaultSyncer(ME)
        err = ProtocolError(
            429, "GET", "/sync", b"", RespError(errcode="M_LIMIT_EXCEEDED", retry_after_ms=2500)
        )
        assert await syncer.on_failure(None, err) == 2.5

    @pytest.mark.asyncio
    async def test_unknown_token_is_fatal(self) -> None:
        syncer = DefaultSyncer(ME)
        err = ProtocolError(401, "GET", "/sync", b"", RespError(errcode="M_UNKNOWN_TOKEN"))
        with pytest.raises(ProtocolError):
            await syncer.on_failure(None, err)

    def test_filter_spec(self) -> None:
        assert DefaultSyncer(ME).filter_spec(ME) == DEFAULT_FILTER
        custom = {"room": {"timeline": {"limit": 5}}}
        assert DefaultSyncer(ME, filter_definition=custom).filter_spec(ME) == custom
