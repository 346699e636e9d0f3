"""
Tool calls and resource reads against live connections.
"""

import json
from typing import Any, Dict, Optional

import anyio
from mcp.types import CallToolResult, ReadResourceResult

from biostratum_mcp.mcp.connection_registry import Connection, ConnectionRegistry
from biostratum_mcp.mcp.errors import (
    DisabledError,
    InvalidResultError,
    McpServiceError,
    NotConnectedError,
    NotFoundError,
    TransportError,
    describe_error,
    is_transport_failure,
)
from biostratum_mcp.mcp.models import ServerStatus
from biostratum_mcp.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MCP_TIMEOUT_SECONDS = 60.0


class ToolInvoker:
    """
    Executes tool calls and resource reads on registered connections.

    A tool call that fails at the transport level demotes the connection to
    disconnected before the error is re-raised.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        default_timeout_seconds: float = DEFAULT_MCP_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.default_timeout_seconds = default_timeout_seconds

    def resolve_timeout(self, connection: Connection) -> float:
        """Read the per-server timeout from the stored config, or use the default."""
        try:
            timeout = json.loads(connection.config).get("timeout")
            timeout = float(timeout) if timeout is not None else None
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(
                f"{connection.name}: failed to parse timeout configuration: {e}"
            )
            timeout = None

        if timeout is None or timeout <= 0:
            return self.default_timeout_seconds
        return timeout

    async def call_tool(
        self,
        server_name: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
    ) -> CallToolResult:
        """
        Call ``tool_name`` on ``server_name``.

        Raises:
            NotFoundError: No connection is registered for the server.
            DisabledError: The server is disabled.
            NotConnectedError: The server is not connected.
            InvalidResultError: The response has no content list.
            TimeoutError: The call exceeded the server's timeout.
            TransportError: The call failed for any other reason.
        """
        connection = self._get_connection(server_name)

        if connection.state.status != ServerStatus.CONNECTED or connection.session is None:
            raise NotConnectedError(
                f'Server "{server_name}" is not connected (status: {connection.state.status})',
                server_name=server_name,
            )

        timeout = self.resolve_timeout(connection)
        logger.info(
            f"{server_name}: requesting tool call",
            data={"tool_name": tool_name, "timeout": timeout},
        )

        try:
            with anyio.fail_after(timeout):
                result = await connection.session.call_tool(tool_name, arguments or {})

            if getattr(result, "content", None) is None:
                raise InvalidResultError(
                    "Invalid tool result: missing content array", server_name=server_name
                )
            return result
        except Exception as e:
            if is_transport_failure(e):
                connection.state.mark_disconnected(describe_error(e))
                logger.warning(
                    f"{server_name}: connection appears to be broken, marked as disconnected"
                )
            if isinstance(e, (McpServiceError, TimeoutError)):
                raise
            raise TransportError(
                f"Failed to call tool '{tool_name}' on server '{server_name}': {describe_error(e)}",
                server_name=server_name,
            ) from e

    async def read_resource(self, server_name: str, uri: str) -> ReadResourceResult:
        """
        Read ``uri`` from ``server_name``.

        Resource reads use the session's own timeout and never demote health.
        """
        connection = self._get_connection(server_name)
        if connection.session is None:
            raise NotConnectedError(
                f'Server "{server_name}" has no open session (status: {connection.state.status})',
                server_name=server_name,
            )

        logger.info(f"{server_name}: reading resource", data={"uri": uri})
        return await connection.session.read_resource(uri)

    def _get_connection(self, server_name: str) -> Connection:
        connection = self.registry.find(server_name)
        if connection is None:
            raise NotFoundError(
                f"No connection found for server: {server_name}", server_name=server_name
            )
        if connection.state.disabled:
            raise DisabledError(f'Server "{server_name}" is disabled', server_name=server_name)
        return connection
