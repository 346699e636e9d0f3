"""Tests for the McpService facade."""

import json
from unittest.mock import AsyncMock

import pytest

from biostratum_mcp.config.settings import MCPSettings, Settings, StdioServerConfig
from biostratum_mcp.mcp.errors import NotFoundError, TransportError
from biostratum_mcp.mcp.models import ServerStatus
from biostratum_mcp.service import McpService

from conftest import FakeServer, FakeTransportFactory, make_tool


@pytest.fixture
def settings():
    """Create settings with two generic servers and no curated ones."""
    return Settings(
        mcp=MCPSettings(
            servers={
                "genes": {"command": "uvx", "args": ["genes-mcp"]},
                "drugs": {"command": "uvx", "args": ["drugs-mcp"], "exclude": ["search"]},
            }
        ),
        teardown_grace_seconds=1,
    )


@pytest.fixture
def factory():
    return FakeTransportFactory(
        {
            "genes": FakeServer(tools=[make_tool("get_gene")]),
            "drugs": FakeServer(tools=[make_tool("get_drug"), make_tool("search")]),
        }
    )


@pytest.mark.asyncio
async def test_start_connects_configured_servers(settings, factory):
    async with McpService(settings=settings, transport_factory=factory) as service:
        servers = {state.name: state for state in service.get_servers()}

        assert set(servers) == {"genes", "drugs"}
        assert all(state.status == ServerStatus.CONNECTED for state in servers.values())
        assert [tool.name for tool in servers["drugs"].tools] == ["get_drug"]

        snapshot = service.get_provider_data()
        assert set(snapshot.servers) == {"genes", "drugs"}
        assert "## [genes]" in snapshot.text


@pytest.mark.asyncio
async def test_get_servers_returns_copies(settings, factory):
    async with McpService(settings=settings, transport_factory=factory) as service:
        service.get_servers()[0].status = ServerStatus.DISCONNECTED

        assert all(state.status == ServerStatus.CONNECTED for state in service.get_servers())


@pytest.mark.asyncio
async def test_call_tool_and_read_resource(settings, factory):
    async with McpService(settings=settings, transport_factory=factory) as service:
        result = await service.call_tool("genes", "get_gene", {"symbol": "FOXO3"})
        resource = await service.read_resource("genes", "https://example.org/genes/foxo3")

        assert result.content[0].text == "get_gene ok"
        assert factory.servers["genes"].calls == [("get_gene", {"symbol": "FOXO3"})]
        assert resource.contents[0].text == "resource body"

        with pytest.raises(NotFoundError):
            await service.call_tool("missing", "get_gene")


@pytest.mark.asyncio
async def test_transport_failure_shows_in_get_servers(settings, factory):
    factory.servers["genes"].call_error = RuntimeError("transport closed by peer")

    async with McpService(settings=settings, transport_factory=factory) as service:
        with pytest.raises(TransportError):
            await service.call_tool("genes", "get_gene", {"symbol": "FOXO3"})

        states = {state.name: state for state in service.get_servers()}
        assert states["genes"].status == ServerStatus.DISCONNECTED
        assert "transport closed by peer" in states["genes"].error
        assert states["drugs"].status == ServerStatus.CONNECTED


@pytest.mark.asyncio
async def test_update_servers_reconciles(settings, factory):
    async with McpService(settings=settings, transport_factory=factory) as service:
        report = await service.update_servers(
            {"genes": StdioServerConfig(command="uvx", args=["genes-mcp"])}
        )

        assert report.removed == ["drugs"]
        assert report.unchanged == ["genes"]
        assert [state.name for state in service.get_servers()] == ["genes"]
        assert set(service.get_provider_data().servers) == {"genes"}


@pytest.mark.asyncio
async def test_restart_connection(settings, factory):
    async with McpService(settings=settings, transport_factory=factory) as service:
        old = service.registry.find("genes")

        await service.restart_connection("genes")

        new = service.registry.find("genes")
        assert new is not old
        assert new.state.status == ServerStatus.CONNECTED
        assert json.loads(new.config)["args"] == ["genes-mcp"]


@pytest.mark.asyncio
async def test_stop_releases_every_session(settings, factory):
    async with McpService(settings=settings, transport_factory=factory) as service:
        pass

    assert len(service.registry) == 0
    assert factory.servers["genes"].sessions_closed == 1
    assert factory.servers["drugs"].sessions_closed == 1


@pytest.mark.asyncio
async def test_start_twice_is_rejected(settings, factory):
    async with McpService(settings=settings, transport_factory=factory) as service:
        with pytest.raises(RuntimeError):
            await service.start()


@pytest.mark.asyncio
async def test_select_tool_uses_live_snapshot(settings, factory):
    generate = AsyncMock(
        return_value='{"serverName": "genes", "toolName": "get_gene", "arguments": {"symbol": "FOXO3"}}'
    )

    async with McpService(settings=settings, transport_factory=factory) as service:
        outcome = await service.select_tool(
            '{"serverName": "GENES", "toolName": "get_gene", "arguments": {"symbol": "FOXO3"}}',
            generate=generate,
            fallback_message="No suitable tool.",
            user_message="Tell me about FOXO3",
        )

    assert outcome.succeeded
    assert outcome.selection.server_name == "genes"
    prompt = generate.await_args.args[0]
    assert 'Server "GENES" not found' in prompt
    assert "Tell me about FOXO3" in prompt


@pytest.mark.asyncio
async def test_select_resource_falls_back(settings, factory):
    generate = AsyncMock(return_value='{"serverName": "genes", "uri": "https://example.org/nope"}')
    notify = AsyncMock()

    async with McpService(settings=settings, transport_factory=factory) as service:
        outcome = await service.select_resource(
            '{"serverName": "genes"}',
            generate=generate,
            fallback_message="No suitable resource.",
            notify=notify,
        )

    assert not outcome.succeeded
    notify.assert_awaited_once_with("No suitable resource.")


@pytest.mark.asyncio
async def test_select_tool_rejects_server_demoted_by_failed_call(settings, factory):
    factory.servers["genes"].call_error = RuntimeError("transport closed by peer")
    selection = '{"serverName": "genes", "toolName": "get_gene", "arguments": {"symbol": "FOXO3"}}'
    generate = AsyncMock(return_value=selection)
    notify = AsyncMock()

    async with McpService(settings=settings, transport_factory=factory) as service:
        with pytest.raises(TransportError):
            await service.call_tool("genes", "get_gene", {"symbol": "FOXO3"})

        outcome = await service.select_tool(
            selection,
            generate=generate,
            fallback_message="No suitable tool.",
            notify=notify,
        )

        assert set(service.get_provider_data().servers) == {"drugs"}

    assert not outcome.succeeded
    notify.assert_awaited_once_with("No suitable tool.")
    prompt = generate.await_args.args[0]
    assert 'Server "genes" not found' in prompt
    assert "## [genes]" not in prompt
