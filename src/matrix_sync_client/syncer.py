"""Batch processors consumed by the sync engine.

A BatchProcessor decides three things for the engine:

- which filter to upload before the first poll (filter_spec)
- how long to wait after a failed poll, or whether to give up (on_failure)
- what to do with a successful batch (on_batch)

DefaultSyncer is a ready-made processor that dispatches events to
per-type listeners.
"""

from __future__ import annotations

import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from .errors import M_MISSING_TOKEN, M_UNKNOWN_TOKEN, ProtocolError, SyncProcessingError
from .events import EVENT_MEMBER, Event
from .filter import Filter

if TYPE_CHECKING:
    from .types import RespSync

logger = logging.getLogger(__name__)

EventListener = Callable[[Event], Awaitable[None] | None]

DEFAULT_RETRY_DELAY = 10.0
DEFAULT_FILTER: dict[str, Any] = {"room": {"timeline": {"limit": 50}}}


class BatchProcessor(ABC):
    """Capability contract between the sync engine and the application."""

    @abstractmethod
    def filter_spec(self, user_id: str) -> dict[str, Any] | Filter:
        """Filter definition uploaded when the store has no filter id."""

    @abstractmethod
    async def on_failure(self, response: RespSync | None, error: Exception) -> float:
        """Decide what to do after a failed poll.

        Args:
            response: The failed batch, if one was decoded (normally None)
            error: The failure raised by the transport

        Returns:
            Seconds to wait before retrying with the same token (may be 0)

        Raises:
            Any exception to abort the sync run. It surfaces from run().
        """

    @abstractmethod
    async def on_batch(self, batch: RespSync, since: str | None) -> None:
        """Apply one successful batch.

        The batch's next_batch token is already persisted when this is
        called. Raising aborts the sync run without rolling the token back.

        Args:
            batch: The decoded /sync response
            since: The token the batch was requested with (None on first sync)
        """


class DefaultSyncer(BatchProcessor):
    """Dispatches sync events to listeners registered per event type.

    The initial sync (no since token) is skipped by default, and joined rooms
    whose timeline contains our own join are dropped from later batches so
    history is not replayed after a rejoin.
    """

    def __init__(
        self,
        user_id: str,
        *,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        process_initial_sync: bool = False,
        filter_definition: dict[str, Any] | Filter | None = None,
    ):
        self.user_id = user_id
        self.retry_delay = retry_delay
        self.process_initial_sync = process_initial_sync
        self.filter_definition = filter_definition
        self._listeners: dict[str, list[EventListener]] = {}

    def on_event_type(self, event_type: str, callback: EventListener) -> None:
        """Register a listener. Sync and async callables are both accepted."""
        self._listeners.setdefault(event_type, []).append(callback)

    def filter_spec(self, user_id: str) -> dict[str, Any] | Filter:
        if self.filter_definition is not None:
            return self.filter_definition
        return DEFAULT_FILTER

    async def on_failure(self, response: RespSync | None, error: Exception) -> float:
        if isinstance(error, ProtocolError):
            if error.errcode in (M_UNKNOWN_TOKEN, M_MISSING_TOKEN):
                raise error
            if error.is_rate_limited and error.retry_after_ms is not None:
                return error.retry_after_ms / 1000
        return self.retry_delay

    async def on_batch(self, batch: RespSync, since: str | None) -> None:
        if not since and not self.process_initial_sync:
            logger.debug("Skipping initial sync batch")
            return

        skip = self._rejoined_rooms(batch)

        for room_id, room in batch.rooms.join.items():
            if room_id in skip:
                continue
            for section in (room.state, room.timeline, room.ephemeral):
                for event in section.events:
                    event.room_id = room_id
                    await self._notify(event)

        for room_id, invited in batch.rooms.invite.items():
            if room_id in skip:
                continue
            for event in invited.invite_state.events:
                event.room_id = room_id
                await self._notify(event)

        for room_id, left in batch.rooms.leave.items():
            for event in left.timeline.events:
                if event.state_key is not None:
                    event.room_id = room_id
                    await self._notify(event)

        for event in batch.presence.events:
            await self._notify(event)
        for event in batch.account_data.events:
            await self._notify(event)

    def _rejoined_rooms(self, batch: RespSync) -> set[str]:
        """Rooms whose timeline contains our own most recent join."""
        rooms: set[str] = set()
        for room_id, room in batch.rooms.join.items():
            for event in reversed(room.timeline.events):
                if event.type != EVENT_MEMBER or event.state_key != self.user_id:
                    continue
                membership = event.content.get("membership")
                if not isinstance(membership, str):
                    continue
                if membership == "join":
                    rooms.add(room_id)
                    break
        return rooms

    async def _notify(self, event: Event) -> None:
        for callback in self._listeners.get(event.type, []):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                raise SyncProcessingError(event.type, e) from e
