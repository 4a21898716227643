"""HTTP transport: immutable request/response types and the aiohttp sender."""

from __future__ import annotations

import json
import socket
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol

import aiohttp
from yarl import URL

from loadstage._internal.errors import ScenarioError, TransportError

if TYPE_CHECKING:
    from collections.abc import Mapping

HTTP_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})


@dataclass(frozen=True)
class Request:
    """A single HTTP request issued by a scenario.

    Validated on construction and read-only afterwards.

    Attributes:
        method: Upper-case HTTP method.
        url: Absolute ``http``/``https`` URL.
        body: Request body, or None.
        headers: Read-only header mapping.
        name: Logical name used to group metrics.  Defaults to the URL.

    Raises:
        ScenarioError: If the method is unknown or the URL is not an
            absolute http(s) URL with a host.
    """

    method: str
    url: str
    body: bytes | None = None
    headers: Mapping[str, str] = field(default_factory=dict)
    name: str = ""

    def __post_init__(self) -> None:
        method = str(self.method).upper()
        if method not in HTTP_METHODS:
            msg = f"Unsupported HTTP method: {self.method!r}"
            raise ScenarioError(msg)

        try:
            parsed = URL(self.url)
        except (TypeError, ValueError) as exc:
            msg = f"Malformed URL {self.url!r}: {exc}"
            raise ScenarioError(msg) from exc
        if parsed.scheme not in ("http", "https") or not parsed.host:
            msg = f"Request URL must be an absolute http(s) URL, got {self.url!r}"
            raise ScenarioError(msg)

        body = self.body
        if isinstance(body, str):
            body = body.encode("utf-8")

        object.__setattr__(self, "method", method)
        object.__setattr__(self, "body", body)
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))
        if not self.name:
            object.__setattr__(self, "name", self.url)


@dataclass(frozen=True)
class Response:
    """A fully read HTTP response.

    Attributes:
        status: HTTP status code.
        url: Final URL after redirects.
        headers: Response headers.
        body: Raw response body.
        latency_ms: Time from sending the request to reading the body.
    """

    status: int
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: bytes = b""
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        """Return True for 2xx and 3xx responses."""
        return 200 <= self.status < 400

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the body as text, replacing undecodable bytes."""
        return self.body.decode(encoding, errors="replace")

    def json(self) -> Any:
        """Parse the body as JSON."""
        return json.loads(self.body)


class Transport(Protocol):
    """Anything that can send a :class:`Request` and return a :class:`Response`.

    Implementations raise :class:`TransportError` when the request cannot be
    completed (timeouts, connection and DNS failures).
    """

    async def send(self, request: Request) -> Response:
        """Send *request* and return its response."""
        ...


def classify_error(exc: BaseException) -> str:
    """Map a client exception to a short error kind.

    Args:
        exc: Exception raised while sending a request.

    Returns:
        One of ``timeout``, ``dns``, ``connection`` or ``http``.
    """
    if isinstance(exc, TimeoutError):
        return "timeout"
    if isinstance(exc, aiohttp.ClientConnectorError):
        if isinstance(exc.os_error, socket.gaierror):
            return "dns"
        return "connection"
    if isinstance(exc, aiohttp.ClientConnectionError):
        return "connection"
    return "http"


class HttpTransport:
    """Async HTTP transport wrapping one shared ``aiohttp.ClientSession``.

    The engine creates a single transport per run and hands it to every
    virtual user.  Connections are pooled by the session's connector.

    Attributes:
        headers: Default headers sent with every request.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        pool_size: int = 100,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            timeout: Total per-request timeout in seconds.
            pool_size: Maximum number of simultaneous connections.
            headers: Default headers sent with every request.
        """
        self.headers: dict[str, str] = dict(headers or {})
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._pool_size = pool_size
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> HttpTransport:
        """Open the underlying aiohttp session."""
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            connector=aiohttp.TCPConnector(limit=self._pool_size),
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def send(self, request: Request) -> Response:
        """Send a request and read the full response body.

        Args:
            request: The request to send.

        Returns:
            The response with its measured latency.

        Raises:
            TransportError: If the request failed before a response was read.
            RuntimeError: If the transport is used outside of an async
                context manager.
        """
        if self._session is None:
            msg = "HttpTransport must be used as an async context manager"
            raise RuntimeError(msg)

        headers = {**self.headers, **request.headers}
        start = time.monotonic()
        try:
            async with self._session.request(
                request.method,
                request.url,
                data=request.body,
                headers=headers,
            ) as resp:
                body = await resp.read()
                status = resp.status
                final_url = str(resp.url)
                resp_headers = dict(resp.headers)
        except (TimeoutError, aiohttp.ClientError) as exc:
            kind = classify_error(exc)
            detail = str(exc) or "request timed out"
            raise TransportError(kind, f"{type(exc).__name__}: {detail}") from exc

        return Response(
            status=status,
            url=final_url,
            headers=resp_headers,
            body=body,
            latency_ms=(time.monotonic() - start) * 1000,
        )
