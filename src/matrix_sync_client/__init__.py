"""Matrix Sync Client - async client for the Matrix client-server API.

Provides typed endpoint wrappers and a durable long-poll sync engine.
"""

from .client import MatrixClient, create_client
from .config import ClientConfig
from .errors import (
    FilterCreationError,
    HTTPError,
    MatrixClientError,
    NetworkError,
    ProtocolError,
    RequestError,
    RespError,
    ResponseDecodeError,
    SyncProcessingError,
)
from .events import Event
from .filter import Filter
from .store import FileTokenStore, InMemoryStore, TokenStore
from .sync import SyncEngine, SyncState
from .syncer import BatchProcessor, DefaultSyncer
from .transport import HTTPTransport
from .types import RespSync

__all__ = [
    "MatrixClient",
    "create_client",
    "ClientConfig",
    "HTTPTransport",
    "SyncEngine",
    "SyncState",
    "BatchProcessor",
    "DefaultSyncer",
    "TokenStore",
    "InMemoryStore",
    "FileTokenStore",
    "Event",
    "Filter",
    "RespSync",
    "MatrixClientError",
    "RequestError",
    "ResponseDecodeError",
    "HTTPError",
    "NetworkError",
    "ProtocolError",
    "RespError",
    "FilterCreationError",
    "SyncProcessingError",
]
