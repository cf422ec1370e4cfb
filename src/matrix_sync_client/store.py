"""
Token store for sync continuation tokens and filter ids.

The sync engine reads the last acknowledged token and the negotiated filter
id once per run, then writes a fresh token after every successful poll.

File layout (FileTokenStore):
    ~/.matrix-sync-client/users/<user-key>/sync.json
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from .identifiers import encode_user_localpart

logger = logging.getLogger(__name__)

_ESCAPED_SLASH = "=2f"


class TokenStore(ABC):
    """Per-user persistence for the sync engine.

    Contract:
    - Inputs: user_id (str), token / filter_id (str)
    - Outputs: the last saved value, or None if nothing was saved
    - Side Effects: implementation defined (memory, disk, database)
    - Concurrency: the engine never calls a store concurrently for the
      same user; last write wins
    """

    @abstractmethod
    def load_token(self, user_id: str) -> str | None: ...

    @abstractmethod
    def save_token(self, user_id: str, token: str) -> None: ...

    @abstractmethod
    def load_filter_id(self, user_id: str) -> str | None: ...

    @abstractmethod
    def save_filter_id(self, user_id: str, filter_id: str) -> None: ...


class InMemoryStore(TokenStore):
    """Keeps tokens in process memory. Everything is forgotten on restart."""

    def __init__(self) -> None:
        self._tokens: dict[str, str] = {}
        self._filter_ids: dict[str, str] = {}

    def load_token(self, user_id: str) -> str | None:
        return self._tokens.get(user_id)

    def save_token(self, user_id: str, token: str) -> None:
        self._tokens[user_id] = token

    def load_filter_id(self, user_id: str) -> str | None:
        return self._filter_ids.get(user_id)

    def save_filter_id(self, user_id: str, filter_id: str) -> None:
        self._filter_ids[user_id] = filter_id


class FileTokenStore(TokenStore):
    """
    Persists tokens as one small JSON document per user.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash never leaves a half-written document behind.
    A corrupt document is logged and treated as empty.
    """

    FILENAME = "sync.json"

    def __init__(self, storage_dir: Path | None = None):
        """Initialize with base directory for per-user documents.

        Args:
            storage_dir: Base directory. Defaults to ~/.matrix-sync-client/users/
        """
        if storage_dir is None:
            storage_dir = Path.home() / ".matrix-sync-client" / "users"
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    @staticmethod
    def user_key(user_id: str) -> str:
        """Filesystem-safe directory name for a user id.

        The localpart encoding is reversible, so distinct user ids never
        share a directory. '/' is escaped as well since it is a path separator.
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id cannot be empty")
        key = encode_user_localpart(user_id).replace("/", _ESCAPED_SLASH)
        if key in (".", ".."):
            raise ValueError(f"Invalid user_id: {user_id}")
        return key

    def _path(self, user_id: str) -> Path:
        return self.storage_dir / self.user_key(user_id) / self.FILENAME

    def _read(self, user_id: str) -> dict[str, Any]:
        path = self._path(user_id)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable token file {path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed token file {path}")
            return {}
        return data

    def _write(self, user_id: str, key: str, value: str) -> None:
        path = self._path(user_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            data = self._read(user_id)
            data["user_id"] = user_id
            data[key] = value
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".sync-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        logger.debug(f"Saved {key} for {user_id}")

    def load_token(self, user_id: str) -> str | None:
        return self._read(user_id).get("next_batch") or None

    def save_token(self, user_id: str, token: str) -> None:
        self._write(user_id, "next_batch", token)

    def load_filter_id(self, user_id: str) -> str | None:
        return self._read(user_id).get("filter_id") or None

    def save_filter_id(self, user_id: str, filter_id: str) -> None:
        self._write(user_id, "filter_id", filter_id)

    def clear(self, user_id: str) -> bool:
        """Forget everything stored for a user.

        Returns:
            True if a document was removed
        """
        path = self._path(user_id)
        if not path.exists():
            return False
        path.unlink()
        logger.info(f"Cleared sync state for {user_id}")
        return True
