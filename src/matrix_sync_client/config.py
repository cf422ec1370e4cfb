"""Client configuration.

Settings can come from keyword arguments, environment variables or a YAML
file. Environment variables:

    MATRIX_HOMESERVER_URL       Homeserver base URL
    MATRIX_USER_ID              Fully-qualified user id (@user:server)
    MATRIX_ACCESS_TOKEN         Access token
    MATRIX_APP_SERVICE_USER_ID  User id to masquerade as (application services)
    MATRIX_STORE_DIR            Directory for the file token store
    MATRIX_SYNC_TIMEOUT_MS      Long-poll server wait bound
    MATRIX_REQUEST_TIMEOUT      Per-request timeout in seconds
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "/_matrix/client/r0"
DEFAULT_MEDIA_PREFIX = "/_matrix/media/r0"
DEFAULT_SYNC_TIMEOUT_MS = 30000
DEFAULT_REQUEST_TIMEOUT = 30.0

_ENV_VARS: dict[str, tuple[str, type]] = {
    "homeserver_url": ("MATRIX_HOMESERVER_URL", str),
    "user_id": ("MATRIX_USER_ID", str),
    "access_token": ("MATRIX_ACCESS_TOKEN", str),
    "app_service_user_id": ("MATRIX_APP_SERVICE_USER_ID", str),
    "store_dir": ("MATRIX_STORE_DIR", str),
    "sync_timeout_ms": ("MATRIX_SYNC_TIMEOUT_MS", int),
    "request_timeout": ("MATRIX_REQUEST_TIMEOUT", float),
}


@dataclass
class ClientConfig:
    """Settings for a MatrixClient and its sync engine."""

    homeserver_url: str = ""
    user_id: str = ""
    access_token: str = ""

    # URL assembly
    prefix: str = DEFAULT_PREFIX
    media_prefix: str = DEFAULT_MEDIA_PREFIX
    app_service_user_id: str = ""

    # Transport
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    randomize_x_forwarded_for: bool = False  # test homeservers only

    # Sync
    sync_timeout_ms: int = DEFAULT_SYNC_TIMEOUT_MS
    set_presence: str | None = None  # "online" | "offline" | "unavailable"
    full_state: bool = False

    # Persistence
    store_dir: str | None = None

    @classmethod
    def from_env(cls, **overrides: Any) -> ClientConfig:
        """Build a config from MATRIX_* environment variables.

        Keyword overrides that are not None win over the environment.
        """
        return cls().with_env().merged(**overrides)

    def with_env(self) -> ClientConfig:
        """Return a copy with every set MATRIX_* environment variable applied.

        Raises:
            ValueError: If a numeric variable does not parse
        """
        values: dict[str, Any] = {}
        for name, (env_var, cast) in _ENV_VARS.items():
            raw = os.getenv(env_var)
            if raw is None or raw == "":
                continue
            try:
                values[name] = cast(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {env_var}: {raw!r}") from e
        return self.merged(**values)

    @classmethod
    def from_yaml(cls, path: str | Path) -> ClientConfig:
        """Load a config from a YAML mapping.

        Unknown keys are ignored with a warning.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the document is not a mapping
        """
        import yaml

        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

        known = {f.name for f in dataclasses.fields(cls)}
        values = {}
        for key, value in data.items():
            if key in known:
                values[key] = value
            else:
                logger.warning(f"Ignoring unknown config key '{key}' in {path}")
        return cls(**values)

    def merged(self, **overrides: Any) -> ClientConfig:
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return dataclasses.replace(self, **changes)

    def store_path(self) -> Path | None:
        return Path(self.store_dir).expanduser() if self.store_dir else None

    def masked(self) -> dict[str, Any]:
        """Config as a dict with the access token hidden, for display."""
        data = dataclasses.asdict(self)
        if self.access_token:
            data["access_token"] = self.access_token[:4] + "..."
        return data
