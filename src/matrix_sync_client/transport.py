"""HTTP transport for the Matrix client.

One call to HTTPTransport.request() is one request/response exchange:
serialize the body, attach credentials, send, classify the outcome and
decode the reply. The transport keeps no state between exchanges beyond
the shared httpx.AsyncClient and the configured credential.

Outcome classification:
- body cannot be serialized / request cannot be built -> RequestError
- no response obtained -> NetworkError (code 0)
- non-2xx -> ProtocolError (raw body always kept)
- 2xx but body does not decode -> ResponseDecodeError

The response is opened in streaming mode and closed on every exit path,
so a reply nobody asked for is never buffered.

Cancellation: cancelling the task awaiting request() aborts the exchange;
httpx closes the connection and asyncio.CancelledError propagates.
"""

from __future__ import annotations

import contextlib
import functools
import json
import logging
import random
from collections.abc import AsyncIterator
from typing import Any, TypeVar
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, TypeAdapter, ValidationError

from .errors import NetworkError, ProtocolError, RequestError, RespError, ResponseDecodeError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REQUEST_TIMEOUT = 30.0
JSON_CONTENT_TYPE = "application/json"


@functools.lru_cache(maxsize=256)
def _adapter(response_type: Any) -> TypeAdapter[Any]:
    return TypeAdapter(response_type)


def encode_body(body: Any) -> bytes:
    """Serialize a request body to JSON bytes.

    Pydantic models are dumped by alias with unset optional fields dropped,
    matching the omitempty convention of the wire format.
    """
    if isinstance(body, BaseModel):
        return body.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
    return json.dumps(body, ensure_ascii=False).encode("utf-8")


def _check_url(method: str, url: str) -> None:
    """Reject URLs without a usable host before httpx sees them."""
    try:
        host = urlsplit(url).hostname
    except ValueError as e:
        raise RequestError(method, url, str(e)) from e
    if not host:
        raise RequestError(method, url, "URL has no host")


def random_ipv4() -> str:
    """Return a random dotted IPv4 address."""
    return ".".join(str(random.randint(0, 255)) for _ in range(4))


def _decode_error_body(contents: bytes) -> RespError | None:
    try:
        return RespError.model_validate_json(contents)
    except ValidationError:
        return None


class HTTPTransport:
    """Performs authenticated JSON exchanges against a homeserver.

    Contract:
    - Inputs: method, absolute URL, optional body, optional response type
    - Outputs: decoded response (or None when no type was requested)
    - Side Effects: one HTTP exchange
    - Errors: RequestError, NetworkError, ProtocolError, ResponseDecodeError
    """

    def __init__(
        self,
        *,
        access_token: str = "",
        randomize_x_forwarded_for: bool = False,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the transport.

        Args:
            access_token: Bearer credential, empty for unauthenticated calls
            randomize_x_forwarded_for: Attach a random X-Forwarded-For header
                to every request. Only useful against test homeservers that
                rate-limit by source address. Never enable in production.
            timeout: Default per-request timeout in seconds
            http_client: Pre-built client to use (tests, custom transports).
                The transport does not close an injected client.
        """
        self.access_token = access_token
        self.randomize_x_forwarded_for = randomize_x_forwarded_for
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
            self._owns_client = True
        return self._http_client

    async def aclose(self) -> None:
        """Release the underlying HTTP client if this transport created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> HTTPTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _headers(self, content_type: str) -> dict[str, str]:
        headers = {"Content-Type": content_type}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        if self.randomize_x_forwarded_for:
            headers["X-Forwarded-For"] = random_ipv4()
        return headers

    def _build(
        self,
        method: str,
        url: str,
        content: bytes | None,
        content_type: str,
        timeout: float | None,
    ) -> httpx.Request:
        extra: dict[str, Any] = {}
        if timeout is not None:
            extra["timeout"] = httpx.Timeout(timeout)
        return self._get_client().build_request(
            method,
            url,
            content=content,
            headers=self._headers(content_type),
            **extra,
        )

    @contextlib.asynccontextmanager
    async def _exchange(self, request: httpx.Request) -> AsyncIterator[httpx.Response]:
        """Send a request and yield the streamed response, closing it on exit."""
        method = request.method
        path = request.url.raw_path.decode("ascii")
        try:
            response = await self._get_client().send(request, stream=True)
        except httpx.UnsupportedProtocol as e:
            raise RequestError(method, path, str(e)) from e
        except httpx.RequestError as e:
            raise NetworkError(method, path, e) from e
        try:
            yield response
        finally:
            await response.aclose()

    @staticmethod
    async def _read(response: httpx.Response) -> bytes:
        request = response.request
        try:
            return await response.aread()
        except httpx.RequestError as e:
            raise NetworkError(request.method, request.url.raw_path.decode("ascii"), e) from e

    async def request(
        self,
        method: str,
        url: str,
        body: Any = None,
        response_type: Any = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Perform one JSON exchange.

        Args:
            method: HTTP method
            url: Absolute URL
            body: Request payload (pydantic model or JSON-serializable value)
            response_type: Type to decode a 2xx body into. When None the
                body is discarded unread.
            timeout: Override the default timeout for this exchange

        Returns:
            The decoded response, or None when no type was requested or the
            body was empty
        """
        content: bytes | None = None
        if body is not None:
            try:
                content = encode_body(body)
            except (TypeError, ValueError) as e:
                raise RequestError(method, url, f"failed to serialize request body: {e}") from e
        return await self._send(method, url, content, JSON_CONTENT_TYPE, response_type, timeout)

    async def upload(
        self,
        url: str,
        content: bytes,
        content_type: str,
        response_type: Any = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """POST raw bytes (media upload) and decode the JSON reply."""
        return await self._send("POST", url, content, content_type, response_type, timeout)

    async def fetch(self, url: str, *, timeout: float | None = None) -> tuple[bytes, str]:
        """GET an arbitrary URL without credentials.

        Returns:
            Tuple of (body, content type)
        """
        _check_url("GET", url)
        try:
            request = self._get_client().build_request(
                "GET", url, **({"timeout": httpx.Timeout(timeout)} if timeout is not None else {})
            )
        except (httpx.InvalidURL, TypeError, ValueError) as e:
            raise RequestError("GET", url, str(e)) from e

        async with self._exchange(request) as response:
            contents = await self._read(response)
            if not response.is_success:
                raise ProtocolError(
                    response.status_code, "GET", request.url.raw_path.decode("ascii"), contents
                )
            return contents, response.headers.get("Content-Type", "application/octet-stream")

    async def _send(
        self,
        method: str,
        url: str,
        content: bytes | None,
        content_type: str,
        response_type: Any,
        timeout: float | None,
    ) -> Any:
        _check_url(method, url)
        try:
            request = self._build(method, url, content, content_type, timeout)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol, TypeError, ValueError) as e:
            raise RequestError(method, url, str(e)) from e

        path = request.url.raw_path.decode("ascii")
        logger.debug(f"{method} {request.url.copy_with(query=None)}")

        async with self._exchange(request) as response:
            logger.debug(f"{method} {path} -> {response.status_code}")

            if not response.is_success:
                contents = await self._read(response)
                raise ProtocolError(
                    response.status_code,
                    method,
                    path,
                    contents,
                    _decode_error_body(contents),
                )

            if response_type is None:
                return None

            contents = await self._read(response)
            if not contents.strip():
                return None
            try:
                return _adapter(response_type).validate_json(contents)
            except ValidationError as e:
                raise ResponseDecodeError(
                    response.status_code, method, path, contents, str(e)
                ) from e
