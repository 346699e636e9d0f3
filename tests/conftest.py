"""Shared fixtures for the Biostratum MCP tests."""

from contextlib import asynccontextmanager
from typing import Dict, List, Optional
from unittest.mock import MagicMock

import anyio
import pytest
from mcp.types import (
    CallToolResult,
    ListResourcesResult,
    ListResourceTemplatesResult,
    ListToolsResult,
    ReadResourceResult,
    Resource,
    TextContent,
    TextResourceContents,
    Tool,
)

from biostratum_mcp.config.settings import StdioServerConfig
from biostratum_mcp.mcp.connection_registry import Connection, ConnectionRegistry
from biostratum_mcp.mcp.models import ServerState, ServerStatus
from biostratum_mcp.mcp.supervisor import ConnectionSupervisor
from biostratum_mcp.mcp.transport import TransportFactory


def make_tool(name: str, description: str = "", required: Optional[List[str]] = None) -> Tool:
    return Tool(
        name=name,
        description=description or f"{name} tool",
        inputSchema={
            "type": "object",
            "properties": {"symbol": {"type": "string"}},
            "required": required if required is not None else ["symbol"],
        },
    )


def make_resource(uri: str, name: str = "resource") -> Resource:
    return Resource(uri=uri, name=name, description=f"{name} data")


class FakeServer:
    """Scripted behaviour for one fake MCP server."""

    def __init__(
        self,
        tools: Optional[List[Tool]] = None,
        resources: Optional[List[Resource]] = None,
        open_error: Optional[Exception] = None,
        stderr: str = "",
        initialize_delay: float = 0.0,
        call_error: Optional[Exception] = None,
    ):
        self.tools = tools if tools is not None else [make_tool("get_gene")]
        self.resources = resources or []
        self.open_error = open_error
        self.stderr = stderr
        self.initialize_delay = initialize_delay
        self.call_error = call_error
        self.calls: List[tuple] = []
        self.sessions_opened = 0
        self.sessions_closed = 0


class FakeSession:
    """Stands in for a client session; answers from its FakeServer."""

    def __init__(self, server: FakeServer, server_name: str):
        self.server = server
        self.server_name = server_name

    async def __aenter__(self):
        self.server.sessions_opened += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.server.sessions_closed += 1
        return False

    async def initialize(self):
        if self.server.initialize_delay:
            await anyio.sleep(self.server.initialize_delay)

    async def list_tools(self):
        return ListToolsResult(tools=self.server.tools)

    async def list_resources(self):
        return ListResourcesResult(resources=self.server.resources)

    async def list_resource_templates(self):
        return ListResourceTemplatesResult(resourceTemplates=[])

    async def call_tool(self, name, arguments):
        self.server.calls.append((name, arguments))
        if self.server.call_error is not None:
            raise self.server.call_error
        return CallToolResult(content=[TextContent(type="text", text=f"{name} ok")])

    async def read_resource(self, uri):
        return ReadResourceResult(
            contents=[TextResourceContents(uri=uri, text="resource body")]
        )


@asynccontextmanager
async def fake_streams(server: FakeServer, stderr_capture=None):
    if stderr_capture is not None and server.stderr:
        stderr_capture.feed(server.stderr)
    if server.open_error is not None:
        raise server.open_error
    yield None, None


class FakeTransportFactory(TransportFactory):
    """Transport factory that never spawns a process or opens a socket."""

    def __init__(self, servers: Optional[Dict[str, FakeServer]] = None):
        super().__init__(client_session_factory=self._make_session)
        self.servers: Dict[str, FakeServer] = servers or {}
        self.built: List[str] = []

    def server(self, name: str) -> FakeServer:
        return self.servers.setdefault(name, FakeServer())

    def build(self, name, config):
        self.built.append(name)
        return super().build(name, config)

    def stdio_context(self, server_params, stderr_capture):
        return fake_streams(self.server(stderr_capture.server_name), stderr_capture)

    def sse_context(self, url):
        return fake_streams(self.server(url))

    def _make_session(self, read_stream, write_stream, read_timeout=None, server_name=None):
        return FakeSession(self.server(server_name), server_name)


@pytest.fixture
def fake_factory():
    """Create a fake transport factory with no scripted servers."""
    return FakeTransportFactory()


@pytest.fixture
def running_supervisor():
    """Return a helper that runs a supervisor inside its own task group."""

    @asynccontextmanager
    async def _running(factory: TransportFactory, **kwargs):
        supervisor = ConnectionSupervisor(
            ConnectionRegistry(), transport_factory=factory, **kwargs
        )
        async with anyio.create_task_group() as tg:
            supervisor.bind(tg)
            try:
                yield supervisor
            finally:
                supervisor.shutdown()
                with anyio.move_on_after(5):
                    await supervisor.cleanup_queue.join()
                await supervisor.cleanup_queue.close()
                tg.cancel_scope.cancel()

    return _running


@pytest.fixture
def make_connection():
    """Return a helper that builds a registered-looking connection with a mock session."""

    def _make(
        name: str = "biostratum-gget",
        status: ServerStatus = ServerStatus.CONNECTED,
        session=None,
        config: Optional[StdioServerConfig] = None,
        disabled: bool = False,
    ) -> Connection:
        transport = MagicMock()
        transport.session = session
        state = ServerState(name=name, status=status, disabled=disabled)
        config = config or StdioServerConfig(command="uvx", args=["gget-mcp"])
        return Connection(name=name, config=config.model_dump_json(), state=state, transport=transport)

    return _make
