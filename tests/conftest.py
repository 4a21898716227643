"""Shared test fixtures for the LoadStage test suite."""

from __future__ import annotations

import asyncio
import socket
import threading
from typing import TYPE_CHECKING

import pytest
from aiohttp import web

from loadstage._internal.errors import TransportError
from loadstage.dsl.http_client import Response

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterator

    from loadstage.dsl.http_client import Request


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Fake transport
# =============================================================================


class FakeTransport:
    """In-memory transport that answers every request without the network.

    Args:
        status: Status code returned for every request.
        latency_ms: Latency reported on every response.
        delay: Seconds to await before answering, to simulate slow servers.
        fail_with: Error kind; when set every request raises TransportError.
        handler: Optional callable computing the response per request.
    """

    def __init__(
        self,
        status: int = 200,
        *,
        latency_ms: float = 5.0,
        delay: float = 0.0,
        fail_with: str | None = None,
        handler: Callable[[Request], Response] | None = None,
    ) -> None:
        self.status = status
        self.latency_ms = latency_ms
        self.delay = delay
        self.fail_with = fail_with
        self.handler = handler
        self.requests: list[Request] = []

    async def send(self, request: Request) -> Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise TransportError(self.fail_with, f"simulated {self.fail_with} failure")
        if self.handler is not None:
            return self.handler(request)
        return Response(
            status=self.status,
            url=request.url,
            body=b'{"status": "ok"}',
            latency_ms=self.latency_ms,
        )


@pytest.fixture
def fake_transport() -> FakeTransport:
    """A FakeTransport answering 200 to everything."""
    return FakeTransport()


@pytest.fixture
def make_transport() -> type[FakeTransport]:
    """The FakeTransport class, for tests that need custom behaviour."""
    return FakeTransport


# =============================================================================
# Network utilities
# =============================================================================


def _get_free_port() -> int:
    """Find an available port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


# =============================================================================
# Echo HTTP Server handlers
# =============================================================================


async def _echo_handler(request: web.Request) -> web.Response:
    """Echo back request details as JSON."""
    body = await request.read()
    return web.json_response(
        {
            "method": request.method,
            "path": str(request.path),
            "query": dict(request.query),
            "headers": dict(request.headers),
            "body": body.decode("utf-8", errors="replace"),
        },
        status=200,
    )


async def _delay_handler(request: web.Request) -> web.Response:
    """Respond after a configurable delay (query param: ?delay=0.5)."""
    delay = float(request.query.get("delay", "0.1"))
    await asyncio.sleep(delay)
    return web.json_response({"delayed_by": delay})


async def _error_handler(request: web.Request) -> web.Response:
    """Return a configurable error status (query param: ?status=500)."""
    status = int(request.query.get("status", "500"))
    return web.json_response({"error": True}, status=status)


async def _health_handler(request: web.Request) -> web.Response:
    """Simple health check endpoint."""
    return web.json_response({"status": "ok"})


def _create_echo_app() -> web.Application:
    """Build the echo server app with all test routes."""
    app = web.Application()
    app.router.add_route("*", "/echo{path:.*}", _echo_handler)
    app.router.add_get("/delay", _delay_handler)
    app.router.add_route("*", "/error", _error_handler)
    app.router.add_get("/health", _health_handler)
    return app


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
async def echo_server() -> AsyncIterator[str]:
    """Aiohttp echo server fixture.

    Returns the base URL (e.g., 'http://127.0.0.1:54321').
    """
    app = _create_echo_app()
    port = _get_free_port()
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    yield f"http://127.0.0.1:{port}"
    await runner.cleanup()


@pytest.fixture
def sync_echo_server() -> Iterator[str]:
    """Echo server running in a background thread for sync tests.

    Useful for CLI tests where ``asyncio.run`` blocks the main thread.
    """
    port = _get_free_port()
    started = threading.Event()
    loop_holder: list[asyncio.AbstractEventLoop] = []

    def _thread_target() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        app = _create_echo_app()
        runner = web.AppRunner(app)
        loop.run_until_complete(runner.setup())
        site = web.TCPSite(runner, "127.0.0.1", port)
        loop.run_until_complete(site.start())
        loop_holder.append(loop)
        started.set()
        loop.run_forever()
        loop.run_until_complete(runner.cleanup())
        loop.close()

    thread = threading.Thread(target=_thread_target, daemon=True)
    thread.start()
    started.wait(timeout=5.0)

    yield f"http://127.0.0.1:{port}"

    if loop_holder:
        loop_holder[0].call_soon_threadsafe(loop_holder[0].stop)
    thread.join(timeout=5.0)


@pytest.fixture
def sample_scenario_path(tmp_path):
    """Create a temporary scenario file for testing the loader."""
    scenario_code = """\
from __future__ import annotations

from loadstage import IterationContext, scenario


@scenario(name="Test Scenario", pause=0.01, stages=[("1s", 2)])
async def health(vu: IterationContext) -> None:
    res = await vu.get("/health")
    vu.check(res, {"status was 200": lambda r: r.status == 200})


@scenario(name="Second Scenario")
async def second(vu: IterationContext) -> None:
    await vu.get("/echo/second")
"""
    path = tmp_path / "test_scenario.py"
    path.write_text(scenario_code)
    return path
