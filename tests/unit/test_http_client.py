"""Tests for Request, Response, error classification and HttpTransport."""

from __future__ import annotations

import asyncio
import socket
from types import SimpleNamespace

import aiohttp
import pytest

from loadstage._internal.errors import ScenarioError, TransportError
from loadstage.dsl.http_client import HttpTransport, Request, Response, classify_error


def _connector_error(os_error: OSError) -> aiohttp.ClientConnectorError:
    key = SimpleNamespace(host="example.invalid", port=80, ssl=None)
    return aiohttp.ClientConnectorError(key, os_error)  # type: ignore[arg-type]


class TestRequest:
    """Tests for the Request dataclass."""

    def test_fields(self) -> None:
        request = Request(method="get", url="http://localhost/items", name="Items")
        assert request.method == "GET"
        assert request.url == "http://localhost/items"
        assert request.body is None
        assert dict(request.headers) == {}
        assert request.name == "Items"

    def test_name_defaults_to_url(self) -> None:
        request = Request(method="GET", url="https://example.com/health")
        assert request.name == "https://example.com/health"

    def test_str_body_is_encoded(self) -> None:
        request = Request(method="POST", url="http://localhost/", body="héllo")  # type: ignore[arg-type]
        assert request.body == "héllo".encode()

    def test_headers_are_read_only(self) -> None:
        headers = {"X-Test": "1"}
        request = Request(method="GET", url="http://localhost/", headers=headers)
        headers["X-Test"] = "2"
        assert request.headers["X-Test"] == "1"
        with pytest.raises(TypeError):
            request.headers["X-Test"] = "3"  # type: ignore[index]

    def test_frozen(self) -> None:
        request = Request(method="GET", url="http://localhost/")
        with pytest.raises(AttributeError):
            request.url = "http://other/"  # type: ignore[misc]

    def test_unknown_method_rejected(self) -> None:
        with pytest.raises(ScenarioError, match="Unsupported HTTP method"):
            Request(method="FETCH", url="http://localhost/")

    @pytest.mark.parametrize("url", ["/health", "ftp://host/file", "http://", "localhost:8080"])
    def test_non_absolute_http_url_rejected(self, url: str) -> None:
        with pytest.raises(ScenarioError):
            Request(method="GET", url=url)


class TestResponse:
    """Tests for the Response dataclass."""

    @pytest.mark.parametrize(("status", "ok"), [(200, True), (302, True), (404, False), (500, False)])
    def test_ok(self, status: int, ok: bool) -> None:
        assert Response(status=status, url="http://x/").ok is ok

    def test_text_and_json(self) -> None:
        response = Response(status=200, url="http://x/", body=b'{"status": "ok"}')
        assert response.text() == '{"status": "ok"}'
        assert response.json() == {"status": "ok"}


class TestClassifyError:
    """Tests for classify_error."""

    def test_timeout(self) -> None:
        assert classify_error(asyncio.TimeoutError()) == "timeout"

    def test_dns(self) -> None:
        exc = _connector_error(socket.gaierror(-2, "Name or service not known"))
        assert classify_error(exc) == "dns"

    def test_connection_refused(self) -> None:
        exc = _connector_error(ConnectionRefusedError(111, "Connection refused"))
        assert classify_error(exc) == "connection"

    def test_server_disconnected(self) -> None:
        assert classify_error(aiohttp.ServerDisconnectedError()) == "connection"

    def test_other_client_error(self) -> None:
        assert classify_error(aiohttp.ClientPayloadError("bad payload")) == "http"


class TestHttpTransport:
    """Tests for the aiohttp-backed transport."""

    async def test_get_request(self, echo_server: str) -> None:
        async with HttpTransport() as transport:
            response = await transport.send(Request(method="GET", url=f"{echo_server}/echo/hello"))

        assert response.status == 200
        assert response.latency_ms > 0
        assert response.json()["method"] == "GET"
        assert response.json()["path"] == "/echo/hello"

    @pytest.mark.parametrize("method", ["POST", "PUT", "PATCH", "DELETE"])
    async def test_methods_and_body(self, echo_server: str, method: str) -> None:
        async with HttpTransport() as transport:
            response = await transport.send(
                Request(method=method, url=f"{echo_server}/echo/data", body=b"payload")
            )

        data = response.json()
        assert data["method"] == method
        assert data["body"] == "payload"

    async def test_non_2xx_is_a_response(self, echo_server: str) -> None:
        async with HttpTransport() as transport:
            response = await transport.send(
                Request(method="GET", url=f"{echo_server}/error?status=503")
            )
        assert response.status == 503
        assert not response.ok

    async def test_default_and_request_headers(self, echo_server: str) -> None:
        async with HttpTransport(headers={"X-Default": "a", "X-Both": "default"}) as transport:
            response = await transport.send(
                Request(
                    method="GET",
                    url=f"{echo_server}/echo/headers",
                    headers={"X-Both": "request"},
                )
            )

        headers = response.json()["headers"]
        assert headers["X-Default"] == "a"
        assert headers["X-Both"] == "request"

    async def test_connection_failure_raises_transport_error(self) -> None:
        async with HttpTransport(timeout=1.0) as transport:
            with pytest.raises(TransportError) as exc_info:
                await transport.send(Request(method="GET", url="http://127.0.0.1:1/will-fail"))

        assert exc_info.value.kind == "connection"

    async def test_timeout_raises_transport_error(self, echo_server: str) -> None:
        async with HttpTransport(timeout=0.1) as transport:
            with pytest.raises(TransportError) as exc_info:
                await transport.send(Request(method="GET", url=f"{echo_server}/delay?delay=1.0"))

        assert exc_info.value.kind == "timeout"

    async def test_context_manager_required(self) -> None:
        transport = HttpTransport()
        with pytest.raises(RuntimeError, match="async context manager"):
            await transport.send(Request(method="GET", url="http://localhost/test"))
