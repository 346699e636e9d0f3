"""
Reconciles the connection registry against the desired server configuration.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

import anyio
from anyio.abc import TaskGroup
from pydantic import ValidationError

from biostratum_mcp.config.settings import BaseServerConfig, parse_server_config
from biostratum_mcp.mcp.catalog import CatalogBuilder, build_snapshot
from biostratum_mcp.mcp.cleanup import CleanupQueue
from biostratum_mcp.mcp.connection_registry import Connection, ConnectionRegistry
from biostratum_mcp.mcp.errors import (
    ConfigurationError,
    McpServiceError,
    NotFoundError,
    TransportError,
    describe_error,
)
from biostratum_mcp.mcp.models import ProviderSnapshot, ServerState, ServerStatus
from biostratum_mcp.mcp.transport import ServerTransport, TransportFactory
from biostratum_mcp.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONNECT_TIMEOUT_SECONDS = 60.0
DEFAULT_TEARDOWN_GRACE_SECONDS = 5.0


@dataclass
class ReconcileReport:
    """Outcome of one reconciliation pass."""

    connected: List[str] = field(default_factory=list)
    reconnected: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def actions(self) -> int:
        return len(self.connected) + len(self.reconnected) + len(self.removed)


class ConnectionSupervisor:
    """
    Adds, replaces and tears down connections to match a desired config map.

    The supervisor needs a running task group for transport lifecycles and a
    running cleanup queue for background release.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        transport_factory: Optional[TransportFactory] = None,
        catalog_builder: Optional[CatalogBuilder] = None,
        cleanup_queue: Optional[CleanupQueue] = None,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        teardown_grace_seconds: float = DEFAULT_TEARDOWN_GRACE_SECONDS,
    ):
        self.registry = registry
        self.transport_factory = transport_factory or TransportFactory()
        self.catalog_builder = catalog_builder or CatalogBuilder()
        self.cleanup_queue = cleanup_queue or CleanupQueue()
        self.connect_timeout_seconds = connect_timeout_seconds
        self.teardown_grace_seconds = teardown_grace_seconds
        self.snapshot = ProviderSnapshot(text=build_snapshot([]).text)
        self._tg: Optional[TaskGroup] = None

    def bind(self, task_group: TaskGroup) -> None:
        """Attach the task group that runs transport lifecycles."""
        self._tg = task_group
        self.cleanup_queue.start(task_group)

    def refresh_snapshot(self) -> ProviderSnapshot:
        self.snapshot = build_snapshot(self.registry.list())
        return self.snapshot

    async def reconcile(self, desired: Mapping[str, BaseServerConfig]) -> ReconcileReport:
        """
        Bring the registry in line with ``desired``.

        Removals happen first. New and changed servers are then connected
        concurrently; a failure is logged and recorded in the report without
        affecting the other servers.
        """
        report = ReconcileReport()

        for name in self.registry.names():
            if name not in desired:
                self.teardown(name)
                report.removed.append(name)
                logger.info(f"{name}: removed MCP server")

        async def connect_task(name: str, config: BaseServerConfig) -> None:
            try:
                await self.connect(name, config)
                report.connected.append(name)
            except Exception as e:
                report.failed[name] = describe_error(e)
                logger.error(f"{name}: failed to connect to new MCP server: {describe_error(e)}")

        async def reconnect_task(name: str, config: BaseServerConfig) -> None:
            try:
                self.teardown(name)
                await self.connect(name, config)
                report.reconnected.append(name)
                logger.info(f"{name}: reconnected MCP server with updated config")
            except Exception as e:
                report.failed[name] = describe_error(e)
                logger.error(f"{name}: failed to reconnect MCP server: {describe_error(e)}")

        scheduled = []
        for name, raw_config in desired.items():
            try:
                config = _parse_config(name, raw_config)
            except ConfigurationError as e:
                report.failed[name] = describe_error(e)
                logger.error(f"{name}: invalid MCP server configuration: {describe_error(e)}")
                continue

            current = self.registry.find(name)
            if current is None:
                scheduled.append((connect_task, name, config))
            elif current.config != config.model_dump_json():
                scheduled.append((reconnect_task, name, config))
            else:
                report.unchanged.append(name)

        if scheduled:
            logger.info(f"Establishing {len(scheduled)} MCP server connections in parallel...")
            async with anyio.create_task_group() as tg:
                for task, name, config in scheduled:
                    tg.start_soon(task, name, config)
            logger.info("Parallel connection establishment completed")

        self.refresh_snapshot()
        return report

    async def connect(self, name: str, config: BaseServerConfig) -> Connection:
        """
        Build, register, handshake and catalog one server.

        On failure the connection stays registered as disconnected with the
        error appended, and the error is re-raised.
        """
        if self._tg is None:
            raise RuntimeError(
                "ConnectionSupervisor must be bound to a task group before connecting."
            )

        config = _parse_config(name, config)
        serialized = config.model_dump_json()

        if config.disabled:
            state = ServerState(name=name, status=ServerStatus.DISCONNECTED, disabled=True)
            connection = Connection(name=name, config=serialized, state=state)
            self.registry.upsert(connection)
            logger.info(f"{name}: MCP server is disabled; not connecting")
            return connection

        transport = self.transport_factory.build(name, config)
        state = ServerState(name=name, status=ServerStatus.CONNECTING)
        connection = Connection(name=name, config=serialized, state=state, transport=transport)
        self._register_hooks(connection, transport)
        self.registry.upsert(connection)

        timeout = config.timeout or self.connect_timeout_seconds
        try:
            transport.start(self._tg)
            with anyio.fail_after(timeout):
                session = await transport.wait_ready()
                await session.initialize()
                logger.info(f"{name}: initialized")
                catalog = await self.catalog_builder.fetch(name, session, config.tool_filtering)

            state.tools = catalog.tools
            state.resources = catalog.resources
            state.resource_templates = catalog.resource_templates
            state.mark_connected()
        except Exception as e:
            if isinstance(e, TimeoutError):
                error = TransportError(f"{name}: timed out after {timeout}s while connecting", server_name=name)
            elif isinstance(e, McpServiceError):
                error = e
            else:
                error = TransportError(f"{name}: {describe_error(e)}", server_name=name)
            state.mark_disconnected(describe_error(error))
            self._release(name, transport)
            if error is e:
                raise
            raise error from e

        logger.info(f"{name}: successfully connected to MCP server")
        return connection

    async def restart(self, name: str) -> Connection:
        """
        Tear down and reconnect a server using its stored configuration.

        Raises:
            NotFoundError: If no configuration is stored for ``name``.
            TransportError: If reconnecting fails.
        """
        connection = self.registry.find(name)
        if connection is None:
            raise NotFoundError(f"No configuration found for server: {name}", server_name=name)

        config = _parse_config(name, json.loads(connection.config))
        logger.info(f"{name}: restarting MCP server...")
        try:
            self.teardown(name)
            connection = await self.connect(name, config)
        except McpServiceError as e:
            logger.error(f"{name}: failed to restart connection: {describe_error(e)}")
            raise TransportError(
                f"Failed to connect to {name} MCP server: {describe_error(e)}", server_name=name
            ) from e
        finally:
            self.refresh_snapshot()
        logger.info(f"{name}: MCP server connected")
        return connection

    def teardown(self, name: str) -> Optional[Connection]:
        """
        Remove ``name`` from the registry and release it in the background.

        The registry entry is gone when this returns; the transport may still be
        closing.
        """
        connection = self.registry.remove(name)
        if connection is None:
            return None

        if connection.transport is not None:
            self._release(name, connection.transport)
            logger.info(f"{name}: connection removed (cleanup running in background)")
        return connection

    def _release(self, name: str, transport: ServerTransport) -> None:
        grace = self.teardown_grace_seconds
        self.cleanup_queue.submit(lambda: transport.aclose(grace), label=name)

    def shutdown(self) -> None:
        """Tear down every connection and clear the snapshot."""
        names = self.registry.names()
        logger.info(f"Stopping MCP supervisor with {len(names)} connections...")
        for name in names:
            self.teardown(name)
        self.refresh_snapshot()

    def _register_hooks(self, connection: Connection, transport: ServerTransport) -> None:
        state = connection.state
        name = connection.name

        async def on_error(exc: BaseException) -> None:
            logger.error(f"{name}: transport error: {describe_error(exc)}")
            state.mark_disconnected(describe_error(exc))
            self.refresh_snapshot()

        async def on_close() -> None:
            if state.status != ServerStatus.DISCONNECTED:
                logger.info(f"{name}: transport closed")
            state.mark_disconnected()
            self.refresh_snapshot()

        transport.on_error = on_error
        transport.on_close = on_close


def _parse_config(name: str, config: Union[Dict[str, Any], BaseServerConfig]) -> BaseServerConfig:
    try:
        return parse_server_config(config)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc']) or 'config'}: {error['msg']}"
            for error in e.errors()
        )
        raise ConfigurationError(
            f"Invalid configuration for MCP server {name}: {details}", server_name=name
        ) from e
