"""Tests for TransportFactory and the ServerTransport lifecycle."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import anyio
import pytest

from biostratum_mcp.config.settings import SseServerConfig, StdioServerConfig
from biostratum_mcp.mcp.errors import ConfigurationError, TransportError
from biostratum_mcp.mcp.transport import ServerTransport, TransportFactory
from biostratum_mcp.utils.stdio import StderrCapture

from conftest import FakeServer, FakeSession


class TestTransportFactory:
    """Tests for TransportFactory configuration handling."""

    def test_missing_command(self):
        with pytest.raises(ConfigurationError, match="Missing command for stdio MCP server gget"):
            TransportFactory().build("gget", StdioServerConfig())

    def test_missing_url(self):
        with pytest.raises(ConfigurationError, match="Missing URL for SSE MCP server remote"):
            TransportFactory().build("remote", SseServerConfig())

    def test_inherited_path_wins(self, monkeypatch):
        monkeypatch.setenv("PATH", "/usr/local/bin:/usr/bin")
        config = StdioServerConfig(
            command="uvx", args=["gget-mcp"], env={"PATH": "/custom", "API_KEY": "secret"}, cwd="/tmp"
        )

        params = TransportFactory().stdio_parameters("gget", config)

        assert params.command == "uvx"
        assert params.args == ["gget-mcp"]
        assert params.env == {"PATH": "/usr/local/bin:/usr/bin", "API_KEY": "secret"}
        assert str(params.cwd) == "/tmp"

    @pytest.mark.asyncio
    async def test_builds_transports(self):
        factory = TransportFactory()

        stdio = factory.build("gget", StdioServerConfig(command="uvx", timeout=5))
        sse = factory.build("remote", SseServerConfig(url="http://localhost:8000/sse"))

        assert isinstance(stdio, ServerTransport)
        assert stdio.stderr_capture is not None
        assert stdio.session is None
        assert sse.server_name == "remote"
        assert not sse.closed


def make_transport(server: FakeServer, stderr_capture=None) -> ServerTransport:
    @asynccontextmanager
    async def streams():
        if stderr_capture is not None and server.stderr:
            stderr_capture.feed(server.stderr)
        if server.open_error is not None:
            raise server.open_error
        yield None, None

    return ServerTransport(
        server_name="gget",
        transport_context_factory=streams,
        client_session_factory=lambda read, write, timeout, server_name=None: FakeSession(server, server_name),
        stderr_capture=stderr_capture,
    )


class TestServerTransport:
    """Tests for the single-task transport lifecycle."""

    @pytest.mark.asyncio
    async def test_open_and_close(self):
        server = FakeServer()
        transport = make_transport(server)
        on_close = AsyncMock()
        on_error = AsyncMock()
        transport.on_close = on_close
        transport.on_error = on_error

        async with anyio.create_task_group() as tg:
            transport.start(tg)
            session = await transport.wait_ready()
            assert isinstance(session, FakeSession)
            assert server.sessions_opened == 1

            await transport.aclose(grace_seconds=1)

        assert transport.closed
        assert server.sessions_closed == 1
        on_close.assert_awaited_once()
        on_error.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_startup_failure(self):
        capture = StderrCapture("gget")
        transport = make_transport(
            FakeServer(open_error=OSError("No such file"), stderr="uvx: command not found\n"), capture
        )
        on_error = AsyncMock()
        transport.on_error = on_error

        async with anyio.create_task_group() as tg:
            transport.start(tg)
            with pytest.raises(TransportError) as exc_info:
                await transport.wait_ready()

        message = str(exc_info.value)
        assert "failed to open transport: No such file" in message
        assert "uvx: command not found" in message
        on_error.assert_awaited_once()
        assert transport.closed

    @pytest.mark.asyncio
    async def test_start_twice(self):
        transport = make_transport(FakeServer())

        async with anyio.create_task_group() as tg:
            transport.start(tg)
            with pytest.raises(TransportError):
                transport.start(tg)
            await transport.aclose(grace_seconds=1)

    @pytest.mark.asyncio
    async def test_close_before_start(self):
        transport = make_transport(FakeServer())

        await transport.aclose(grace_seconds=0.1)

        assert not transport.closed

    @pytest.mark.asyncio
    async def test_hung_close_is_cancelled(self):
        class StuckSession(FakeSession):
            async def __aexit__(self, exc_type, exc_val, exc_tb):
                await anyio.sleep(10)

        server = FakeServer()
        transport = make_transport(server)
        transport._client_session_factory = lambda read, write, timeout, server_name=None: StuckSession(
            server, server_name
        )

        with anyio.fail_after(5):
            async with anyio.create_task_group() as tg:
                transport.start(tg)
                await transport.wait_ready()
                await transport.aclose(grace_seconds=0.1)

        assert transport.closed


class TestStderrCapture:
    """Tests for StderrCapture."""

    def test_keeps_recent_lines(self):
        capture = StderrCapture("gget", max_lines=2)

        capture.feed("one\n\ntwo\nthree\n")

        assert capture.lines() == ["two", "three"]
        assert capture.tail(1) == "three"
