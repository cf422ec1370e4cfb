"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from matrix_sync_client.store import InMemoryStore
from matrix_sync_client.syncer import BatchProcessor
from matrix_sync_client.types import RespSync

HOMESERVER = "https://hs.example.org"
USER_ID = "@alice:example.org"
TOKEN = "syt_secret"


def json_response(status: int, body: Any) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(body).encode(), headers={"Content-Type": "application/json"})


def sync_body(next_batch: str, **extra: Any) -> dict[str, Any]:
    return {"next_batch": next_batch, **extra}


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until predicate() is true."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0)


class RecordingStore(InMemoryStore):
    """InMemoryStore that logs every call in order."""

    def __init__(self, log: list[tuple[str, Any]] | None = None) -> None:
        super().__init__()
        self.log: list[tuple[str, Any]] = log if log is not None else []

    def save_token(self, user_id: str, token: str) -> None:
        self.log.append(("save_token", token))
        super().save_token(user_id, token)

    def save_filter_id(self, user_id: str, filter_id: str) -> None:
        self.log.append(("save_filter_id", filter_id))
        super().save_filter_id(user_id, filter_id)


class RecordingProcessor(BatchProcessor):
    """Processor that records batches and scripted failure decisions."""

    def __init__(
        self,
        store: InMemoryStore | None = None,
        *,
        retry_delay: float = 0.0,
        log: list[tuple[str, Any]] | None = None,
    ) -> None:
        self.store = store
        self.retry_delay = retry_delay
        self.log: list[tuple[str, Any]] = log if log is not None else []
        self.batches: list[tuple[str, str | None]] = []
        self.tokens_at_delivery: list[str | None] = []
        self.failures: list[Exception] = []
        self.fail_on_failure: Exception | None = None
        self.fail_on_batch: Exception | None = None
        self.on_batch_hook: Callable[[RespSync], None] | None = None
        self.filter = {"room": {"timeline": {"limit": 10}}}

    def filter_spec(self, user_id: str) -> dict[str, Any]:
        return self.filter

    async def on_failure(self, response: RespSync | None, error: Exception) -> float:
        self.failures.append(error)
        self.log.append(("on_failure", type(error).__name__))
        if self.fail_on_failure is not None:
            raise self.fail_on_failure
        return self.retry_delay

    async def on_batch(self, batch: RespSync, since: str | None) -> None:
        self.log.append(("on_batch", batch.next_batch))
        self.batches.append((batch.next_batch, since))
        if self.store is not None:
            self.tokens_at_delivery.append(self.store.load_token(USER_ID))
        if self.on_batch_hook is not None:
            self.on_batch_hook(batch)
        if self.fail_on_batch is not None:
            raise self.fail_on_batch


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def processor(store: RecordingStore) -> RecordingProcessor:
    return RecordingProcessor(store, log=store.log)
