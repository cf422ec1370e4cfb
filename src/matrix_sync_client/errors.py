"""Structured failures raised by the Matrix client.

Every failure the client surfaces is a MatrixClientError. The classes map
onto the ways a single exchange can go wrong:

- RequestError: the request was never sent (bad URL, unserializable body)
- NetworkError: no HTTP response was obtained (code 0)
- ProtocolError: the server replied with a non-2xx status
- ResponseDecodeError: the server replied 2xx but the body is not what we asked for

Sync-level failures (FilterCreationError, SyncProcessingError) wrap one of
the above as their __cause__.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict

# Standard error codes returned in the "errcode" field
M_FORBIDDEN = "M_FORBIDDEN"
M_UNKNOWN_TOKEN = "M_UNKNOWN_TOKEN"
M_MISSING_TOKEN = "M_MISSING_TOKEN"
M_BAD_JSON = "M_BAD_JSON"
M_NOT_JSON = "M_NOT_JSON"
M_NOT_FOUND = "M_NOT_FOUND"
M_LIMIT_EXCEEDED = "M_LIMIT_EXCEEDED"
M_UNKNOWN = "M_UNKNOWN"
M_UNRECOGNIZED = "M_UNRECOGNIZED"
M_USER_IN_USE = "M_USER_IN_USE"
M_INVALID_USERNAME = "M_INVALID_USERNAME"

AUTH_ERROR_CODES = frozenset({M_FORBIDDEN, M_UNKNOWN_TOKEN, M_MISSING_TOKEN})


class RespError(BaseModel):
    """Error body returned by the homeserver on a non-2xx response."""

    model_config = ConfigDict(extra="allow")

    errcode: str
    error: str | None = ""
    retry_after_ms: int | float | None = None

    def __str__(self) -> str:
        return f"{self.errcode}: {self.error or ''}"


class MatrixClientError(Exception):
    """Base class for all client failures."""


class RequestError(MatrixClientError):
    """The request could not be built or its body could not be serialized.

    No network attempt was made.
    """

    def __init__(self, method: str, path: str, reason: str):
        self.method = method
        self.path = path
        self.reason = reason
        self.code = 0
        self.contents: bytes | None = None
        super().__init__(f"failed to build request: method: {method} path: {path} err: {reason}")


class ResponseDecodeError(MatrixClientError):
    """The server answered 2xx but the body did not decode into the expected type."""

    def __init__(self, code: int, method: str, path: str, contents: bytes, reason: str):
        self.code = code
        self.method = method
        self.path = path
        self.contents = contents
        self.reason = reason
        super().__init__(
            f"failed to decode response: code: {code} method: {method} path: {path} err: {reason}"
        )


class HTTPError(MatrixClientError):
    """A request that reached the transport layer and failed there or at the server.

    Attributes:
        code: HTTP status code, 0 if no response was obtained
        method: HTTP method of the request
        path: URL path (including query) of the request
        contents: Raw response body, None if no response was obtained
        matrix_error: Decoded error body, None if absent or malformed
        wrapped_error: Underlying cause (network exception or diagnostic)
    """

    def __init__(
        self,
        *,
        code: int,
        method: str,
        path: str,
        contents: bytes | None = None,
        matrix_error: RespError | None = None,
        wrapped_error: BaseException | None = None,
        message: str = "",
    ):
        self.code = code
        self.method = method
        self.path = path
        self.contents = contents
        self.matrix_error = matrix_error
        self.wrapped_error = wrapped_error
        self.message_text = message
        super().__init__(self._format())

    def _format(self) -> str:
        cause: Any = self.matrix_error if self.matrix_error is not None else self.wrapped_error
        if cause is None:
            cause = self.message_text
        return (
            f"http request failed: code: {self.code} method: {self.method} "
            f"path: {self.path} err: {cause}"
        )


class NetworkError(HTTPError):
    """No HTTP response was obtained (connection refused, DNS, timeout, ...)."""

    def __init__(self, method: str, path: str, cause: BaseException):
        super().__init__(code=0, method=method, path=path, wrapped_error=cause)


class ProtocolError(HTTPError):
    """The server answered with a non-2xx status.

    The raw body is always kept in ``contents``. ``matrix_error`` is set when
    the body has the standard ``{"errcode": ..., "error": ...}`` shape.
    """

    def __init__(
        self,
        code: int,
        method: str,
        path: str,
        contents: bytes,
        matrix_error: RespError | None = None,
    ):
        wrapped: BaseException | None = None
        if matrix_error is None:
            wrapped = ValueError("response body did not match expected error shape")
        super().__init__(
            code=code,
            method=method,
            path=path,
            contents=contents,
            matrix_error=matrix_error,
            wrapped_error=wrapped,
        )

    @property
    def errcode(self) -> str | None:
        return self.matrix_error.errcode if self.matrix_error else None

    @property
    def message(self) -> str | None:
        return self.matrix_error.error if self.matrix_error else None

    @property
    def is_rate_limited(self) -> bool:
        return self.errcode == M_LIMIT_EXCEEDED

    @property
    def is_auth_error(self) -> bool:
        return self.code == 401 or self.errcode in AUTH_ERROR_CODES

    @property
    def retry_after_ms(self) -> int | float | None:
        if self.matrix_error is None:
            return None
        return self.matrix_error.retry_after_ms


class FilterCreationError(MatrixClientError):
    """The sync filter could not be created. The sync run cannot start."""

    def __init__(self, user_id: str, cause: BaseException):
        self.user_id = user_id
        super().__init__(f"failed to create sync filter for {user_id}: {cause}")


class SyncProcessingError(MatrixClientError):
    """A listener failed while a sync batch was being applied."""

    def __init__(self, event_type: str, cause: BaseException):
        self.event_type = event_type
        super().__init__(f"listener for {event_type} failed: {cause}")
