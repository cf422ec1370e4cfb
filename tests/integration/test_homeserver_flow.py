"""Integration tests against an in-process fake homeserver.

The fake homeserver is a small Starlette app mounted on httpx.ASGITransport,
so requests go through the real client, transport and sync engine:
- Filter bootstrap and the first /sync without a since token
- Token persistence before batch delivery
- Matrix error bodies decoded from non-2xx replies
- Stop and cancellation of a running sync
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest
from conftest import USER_ID, RecordingProcessor, RecordingStore, wait_for
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from matrix_sync_client import MatrixClient
from matrix_sync_client.errors import ProtocolError
from matrix_sync_client.events import Event
from matrix_sync_client.sync import SyncState
from matrix_sync_client.syncer import DefaultSyncer

HOMESERVER = "http://homeserver.test"
TOKEN = "syt_integration"


class FakeHomeserver:
    """Serves scripted /sync replies and records what the client sent.

    When the script runs out, /sync blocks like a long-poll with no news.
    """

    def __init__(self) -> None:
        self.sync_script: list[tuple[int, dict[str, Any]]] = []
        self.sync_queries: list[dict[str, str]] = []
        self.filters: list[dict[str, Any]] = []
        self.app = Starlette(
            routes=[
                Route("/_matrix/client/r0/user/{user_id}/filter", self.create_filter, methods=["POST"]),
                Route("/_matrix/client/r0/sync", self.sync),
            ]
        )

    @staticmethod
    def _authorized(request: Request) -> bool:
        return request.headers.get("authorization") == f"Bearer {TOKEN}"

    async def create_filter(self, request: Request) -> JSONResponse:
        if not self._authorized(request):
            return JSONResponse({"errcode": "M_MISSING_TOKEN", "error": "Missing token"}, status_code=401)
        self.filters.append(json.loads(await request.body()))
        return JSONResponse({"filter_id": f"f{len(self.filters)}"})

    async def sync(self, request: Request) -> JSONResponse:
        if not self._authorized(request):
            return JSONResponse({"errcode": "M_UNKNOWN_TOKEN", "error": "Unknown token"}, status_code=401)
        self.sync_queries.append(dict(request.query_params))
        if not self.sync_script:
            await asyncio.Event().wait()
        status, body = self.sync_script.pop(0)
        return JSONResponse(body, status_code=status)


def timeline(room_id: str, *bodies: str) -> dict[str, Any]:
    events = [
        {
            "type": "m.room.message",
            "sender": "@carol:example.org",
            "event_id": f"${i}",
            "origin_server_ts": 1700000000000 + i,
            "content": {"msgtype": "m.text", "body": body},
        }
        for i, body in enumerate(bodies)
    ]
    return {"join": {room_id: {"timeline": {"events": events}}}}


@pytest.fixture
def server() -> FakeHomeserver:
    return FakeHomeserver()


def make_client(server: FakeHomeserver, token: str = TOKEN, **kwargs: Any) -> MatrixClient:
    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=server.app))
    return MatrixClient(HOMESERVER, USER_ID, token, http_client=http_client, **kwargs)


# =============================================================================
# Tests: Sync lifecycle
# =============================================================================


class TestFirstRun:
    """A fresh store bootstraps a filter and starts without a since token."""

    @pytest.mark.asyncio
    async def test_bootstrap_and_persist_before_delivery(
        self, server: FakeHomeserver, store: RecordingStore, processor: RecordingProcessor
    ) -> None:
        server.sync_script = [(200, {"next_batch": "s1"}), (200, {"next_batch": "s2"})]
        client = make_client(server, store=store, processor=processor)
        processor.on_batch_hook = lambda batch: client.stop_sync()

        async with client:
            await asyncio.wait_for(client.sync(), timeout=5)

        assert server.filters == [processor.filter]
        assert "since" not in server.sync_queries[0]
        assert server.sync_queries[0]["filter"] == "f1"
        assert processor.batches == [("s1", None)]
        assert processor.tokens_at_delivery == ["s1"]
        # The poll already in flight at stop time is persisted, then discarded
        assert server.sync_queries[1]["since"] == "s1"
        assert store.load_token(USER_ID) == "s2"
        assert client.sync_state is SyncState.STOPPED

    @pytest.mark.asyncio
    async def test_restart_resumes_from_store(
        self, server: FakeHomeserver, store: RecordingStore, processor: RecordingProcessor
    ) -> None:
        store.save_filter_id(USER_ID, "existing")
        store.save_token(USER_ID, "s9")
        server.sync_script = [(200, {"next_batch": "s10"}), (200, {"next_batch": "s11"})]
        client = make_client(server, store=store, processor=processor)
        processor.on_batch_hook = lambda batch: client.stop_sync()

        async with client:
            await asyncio.wait_for(client.sync(), timeout=5)

        assert server.filters == []
        assert server.sync_queries[0]["since"] == "s9"
        assert server.sync_queries[0]["filter"] == "existing"
        assert processor.batches == [("s10", "s9")]


class TestFailures:
    """Errors reported by the homeserver."""

    @pytest.mark.asyncio
    async def test_rate_limit_decoded_then_retried(
        self, server: FakeHomeserver, store: RecordingStore, processor: RecordingProcessor
    ) -> None:
        server.sync_script = [
            (429, {"errcode": "M_LIMIT_EXCEEDED", "error": "too fast"}),
            (200, {"next_batch": "s1"}),
            (200, {"next_batch": "s2"}),
        ]
        client = make_client(server, store=store, processor=processor)
        processor.on_batch_hook = lambda batch: client.stop_sync()

        async with client:
            await asyncio.wait_for(client.sync(), timeout=5)

        assert len(processor.failures) == 1
        err = processor.failures[0]
        assert isinstance(err, ProtocolError)
        assert err.code == 429
        assert err.errcode == "M_LIMIT_EXCEEDED"
        assert err.message == "too fast"
        assert json.loads(err.contents) == {"errcode": "M_LIMIT_EXCEEDED", "error": "too fast"}
        # The retry reused the token the failed poll was sent with
        assert "since" not in server.sync_queries[1]
        assert processor.batches == [("s1", None)]

    @pytest.mark.asyncio
    async def test_unknown_token_ends_default_syncer_run(self, server: FakeHomeserver) -> None:
        store = RecordingStore()
        store.save_filter_id(USER_ID, "existing")
        client = make_client(server, token="syt_revoked", store=store)

        async with client:
            with pytest.raises(ProtocolError) as exc_info:
                await asyncio.wait_for(client.sync(), timeout=5)

        assert exc_info.value.errcode == "M_UNKNOWN_TOKEN"
        assert store.load_token(USER_ID) is None
        assert client.sync_state is SyncState.STOPPED


class TestDefaultSyncerFlow:
    """Listeners see live events but not the initial sync."""

    @pytest.mark.asyncio
    async def test_listener_receives_new_messages(self, server: FakeHomeserver) -> None:
        server.sync_script = [
            (200, {"next_batch": "s1", "rooms": timeline("!room:example.org", "old")}),
            (200, {"next_batch": "s2", "rooms": timeline("!room:example.org", "new", "newer")}),
            (200, {"next_batch": "s3"}),
        ]
        client = make_client(server)
        received: list[Event] = []

        async def on_message(event: Event) -> None:
            received.append(event)
            if len(received) == 2:
                client.stop_sync()

        assert isinstance(client.processor, DefaultSyncer)
        client.processor.on_event_type("m.room.message", on_message)

        async with client:
            await asyncio.wait_for(client.sync(), timeout=5)

        assert [e.body() for e in received] == ["new", "newer"]
        assert {e.room_id for e in received} == {"!room:example.org"}
        assert received[0].timestamp == 1700000000000


class TestStopAndCancel:
    """Stopping and cancelling runs."""

    @pytest.mark.asyncio
    async def test_stop_while_idle(self, server: FakeHomeserver) -> None:
        client = make_client(server)
        async with client:
            client.stop_sync()
            assert client.sync_state is SyncState.IDLE
            assert client.sync_engine.generation == 1

    @pytest.mark.asyncio
    async def test_aclose_cancels_inflight_poll(
        self, server: FakeHomeserver, store: RecordingStore, processor: RecordingProcessor
    ) -> None:
        client = make_client(server, store=store, processor=processor)
        task = client.start_sync()

        await wait_for(lambda: len(server.sync_queries) == 1)
        assert client.sync_state is SyncState.POLLING

        await client.aclose()

        assert task.cancelled()
        assert processor.batches == []
        assert store.load_token(USER_ID) is None
        assert client.sync_state is SyncState.STOPPED

    @pytest.mark.asyncio
    async def test_aclose_cancels_every_background_run(self, server: FakeHomeserver) -> None:
        client = make_client(server)
        first = client.start_sync()
        await wait_for(lambda: len(server.sync_queries) == 1)
        second = client.start_sync()
        await wait_for(lambda: len(server.sync_queries) == 2)

        await client.aclose()

        assert first.done()
        assert second.done()
        assert second.cancelled()
