"""Long-poll sync engine.

One SyncEngine drives the /sync loop for one client. Each call to run()
starts a new generation; at most one generation is live at a time.

Lifecycle of a run:

    IDLE -> BOOTSTRAPPING -> POLLING <-> DELIVERING
                                  \\-> STOPPED (superseded, stopped or fatal)

Per successful poll the continuation token is saved to the store first,
then the run checks whether it is still the live generation, and only then
hands the batch to the processor. A run that finds itself superseded
returns None; its token write stands.

Supersession is cooperative: it is noticed only after a poll (or a retry
delay) completes. To abort an in-flight long-poll immediately, cancel the
task running run(); asyncio.CancelledError propagates through the
transport and the retry sleep.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from .config import DEFAULT_SYNC_TIMEOUT_MS
from .errors import FilterCreationError, HTTPError, MatrixClientError

if TYPE_CHECKING:
    from .filter import Filter
    from .store import TokenStore
    from .syncer import BatchProcessor
    from .types import RespCreateFilter, RespSync

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    """Sync engine state machine."""

    IDLE = "idle"
    BOOTSTRAPPING = "bootstrapping"
    POLLING = "polling"
    DELIVERING = "delivering"
    STOPPED = "stopped"


class SyncAPI(Protocol):
    """The two homeserver calls the engine needs."""

    user_id: str

    async def create_filter(self, filter_definition: dict[str, Any] | Filter) -> RespCreateFilter: ...

    async def sync_request(
        self,
        timeout_ms: int,
        since: str | None = None,
        filter_id: str | None = None,
        full_state: bool = False,
        set_presence: str | None = None,
    ) -> RespSync: ...


class SyncEngine:
    """Coordinates long-poll runs against a shared generation counter.

    Contract:
    - Inputs: a SyncAPI, a TokenStore and a BatchProcessor
    - Outputs: run() returns None when superseded or stopped
    - Side Effects: token/filter writes to the store, processor callbacks
    - Errors: FilterCreationError on bootstrap failure; whatever the
      processor raises from on_failure/on_batch; RequestError and
      ResponseDecodeError from the poll itself (never retried)
    """

    def __init__(
        self,
        client: SyncAPI,
        store: TokenStore,
        processor: BatchProcessor,
        *,
        timeout_ms: int = DEFAULT_SYNC_TIMEOUT_MS,
        set_presence: str | None = None,
        full_state: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.processor = processor
        self.timeout_ms = timeout_ms
        self.set_presence = set_presence
        self.full_state = full_state
        self._sleep = sleep

        # Only the counter needs mutual exclusion. The lock is never held
        # across an await.
        self._generation = 0
        self._generation_lock = threading.Lock()

        self._state = SyncState.IDLE
        self._state_generation = 0

    # =========================================================================
    # Generation counter
    # =========================================================================

    def _next_generation(self) -> int:
        with self._generation_lock:
            self._generation += 1
            return self._generation

    @property
    def generation(self) -> int:
        """Current generation. Starts at 0, only ever incremented."""
        with self._generation_lock:
            return self._generation

    def is_current(self, generation: int) -> bool:
        return self.generation == generation

    @property
    def state(self) -> SyncState:
        """State of the live generation."""
        if self._state is SyncState.IDLE:
            return SyncState.IDLE
        if self._state_generation != self.generation:
            return SyncState.STOPPED
        return self._state

    def _set_state(self, generation: int, state: SyncState) -> None:
        if self.is_current(generation):
            self._state_generation = generation
            self._state = state

    def stop(self) -> None:
        """Retire the live run at its next check.

        Increments the generation and does nothing else. An in-flight poll
        is left to complete and its batch is discarded.
        """
        generation = self._next_generation()
        logger.info(f"Sync stop requested (generation now {generation})")

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self) -> None:
        """Run the sync loop until superseded, stopped or a fatal error.

        Returns:
            None when the run was superseded by a newer run or stop()

        Raises:
            FilterCreationError: If the filter could not be created
            Exception: Whatever the processor raises to abort
        """
        generation = self._next_generation()
        user_id = self.client.user_id
        logger.info(f"Starting sync for {user_id} (generation {generation})")
        try:
            await self._run(generation, user_id)
        finally:
            self._set_state(generation, SyncState.STOPPED)

    async def _run(self, generation: int, user_id: str) -> None:
        self._set_state(generation, SyncState.BOOTSTRAPPING)
        since = self.store.load_token(user_id) or None
        filter_id = self.store.load_filter_id(user_id) or None
        if filter_id is None:
            filter_id = await self._create_filter(user_id)

        while True:
            self._set_state(generation, SyncState.POLLING)
            try:
                batch = await self.client.sync_request(
                    self.timeout_ms,
                    since=since,
                    filter_id=filter_id,
                    full_state=self.full_state,
                    set_presence=self.set_presence,
                )
            except HTTPError as e:
                delay = await self.processor.on_failure(None, e)
                if delay < 0:
                    logger.warning(f"Processor returned negative retry delay {delay}, using 0")
                    delay = 0
                logger.warning(f"Sync request failed, retrying in {delay}s: {e}")
                await self._sleep(delay)
                if not self.is_current(generation):
                    logger.info(f"Sync generation {generation} superseded during retry delay")
                    return
                continue

            # Saved before the supersession check, even if the batch is then discarded
            self.store.save_token(user_id, batch.next_batch)

            if not self.is_current(generation):
                logger.info(f"Sync generation {generation} superseded, discarding batch")
                return

            self._set_state(generation, SyncState.DELIVERING)
            await self.processor.on_batch(batch, since)
            since = batch.next_batch

    async def _create_filter(self, user_id: str) -> str:
        definition = self.processor.filter_spec(user_id)
        try:
            resp = await self.client.create_filter(definition)
        except MatrixClientError as e:
            raise FilterCreationError(user_id, e) from e
        self.store.save_filter_id(user_id, resp.filter_id)
        logger.info(f"Created sync filter {resp.filter_id} for {user_id}")
        return resp.filter_id
