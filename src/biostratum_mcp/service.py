"""
Dispatch surface used by higher-level decision logic.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Mapping, Optional

import anyio
from anyio import create_task_group
from anyio.abc import TaskGroup
from mcp.types import CallToolResult, ReadResourceResult

from biostratum_mcp.config.settings import (
    BaseServerConfig,
    Settings,
    load_config,
    merge_server_configurations,
)
from biostratum_mcp.mcp.cleanup import CleanupQueue
from biostratum_mcp.mcp.connection_registry import ConnectionRegistry
from biostratum_mcp.mcp.invoker import ToolInvoker
from biostratum_mcp.mcp.models import ProviderSnapshot, ServerState
from biostratum_mcp.mcp.supervisor import ConnectionSupervisor, ReconcileReport
from biostratum_mcp.mcp.transport import TransportFactory
from biostratum_mcp.selection.retry import GenerateFn, NotifyFn, RetryOutcome, with_model_retry
from biostratum_mcp.selection.templates import (
    create_resource_selection_feedback_prompt,
    create_tool_selection_feedback_prompt,
)
from biostratum_mcp.selection.validation import (
    validate_resource_selection,
    validate_tool_selection,
)
from biostratum_mcp.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


class McpService:
    """
    Owns the connection registry and exposes the dispatch operations.

    Example usage:
        async with McpService(settings) as service:
            await service.call_tool("biostratum-gget", "gget_search", {"search_terms": ["FOXO3"]})
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config_path: Optional[str] = None,
        transport_factory: Optional[TransportFactory] = None,
        registry: Optional[ConnectionRegistry] = None,
    ):
        """
        Initialize the service.

        Args:
            settings: Configuration object (takes precedence over config_path).
            config_path: Path to a YAML configuration file.
            transport_factory: Factory used to build server transports.
            registry: Registry to manage; a fresh one is created if omitted.
        """
        self.settings = settings if settings is not None else load_config(config_path)
        self.registry = registry or ConnectionRegistry()
        self.supervisor = ConnectionSupervisor(
            registry=self.registry,
            transport_factory=transport_factory,
            cleanup_queue=CleanupQueue(workers=self.settings.cleanup_workers),
            connect_timeout_seconds=self.settings.default_timeout_seconds,
            teardown_grace_seconds=self.settings.teardown_grace_seconds,
        )
        self.invoker = ToolInvoker(
            registry=self.registry,
            default_timeout_seconds=self.settings.default_timeout_seconds,
        )
        self._tg: Optional[TaskGroup] = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
        if self._tg is not None:
            tg, self._tg = self._tg, None
            # Transports that outlived their grace period are cancelled here
            tg.cancel_scope.cancel()
            await tg.__aexit__(exc_type, exc_val, exc_tb)

    async def start(self) -> ReconcileReport:
        """Open the task group and connect every configured server."""
        if self._tg is not None:
            raise RuntimeError("McpService is already running.")

        configure_logging(self.settings.logging.level, self.settings.logging.file_path)

        self._tg = create_task_group()
        await self._tg.__aenter__()
        self.supervisor.bind(self._tg)

        servers = merge_server_configurations(self.settings)
        if not servers:
            logger.info("No MCP servers configured.")
        return await self.update_servers(servers)

    async def stop(self) -> None:
        """
        Remove every connection and wait for background release to finish.
        """
        if self._tg is None:
            return
        self.supervisor.shutdown()
        with anyio.move_on_after(self.settings.teardown_grace_seconds + 1):
            await self.supervisor.cleanup_queue.join()
        await self.supervisor.cleanup_queue.close()
        logger.info("MCP service stopped")

    async def update_servers(self, configs: Mapping[str, BaseServerConfig]) -> ReconcileReport:
        """Reconcile the running connections against ``configs``."""
        return await self.supervisor.reconcile(configs)

    def get_servers(self) -> List[ServerState]:
        """Snapshot copies of every non-disabled server state."""
        return [state.model_copy(deep=True) for state in self.registry.list()]

    def get_provider_data(self) -> ProviderSnapshot:
        """Catalog of the servers that are connected right now."""
        return self.supervisor.refresh_snapshot()

    async def call_tool(
        self, server_name: str, tool_name: str, arguments: Optional[Dict[str, Any]] = None
    ) -> CallToolResult:
        return await self.invoker.call_tool(server_name, tool_name, arguments)

    async def read_resource(self, server_name: str, uri: str) -> ReadResourceResult:
        return await self.invoker.read_resource(server_name, uri)

    async def restart_connection(self, server_name: str) -> None:
        await self.supervisor.restart(server_name)

    async def select_tool(
        self,
        initial_response: str,
        generate: GenerateFn,
        fallback_message: str,
        user_message: Optional[str] = None,
        notify: Optional[NotifyFn] = None,
    ) -> RetryOutcome:
        """
        Validate a tool selection against the current snapshot, retrying once.
        """
        snapshot = self.get_provider_data()
        return await with_model_retry(
            initial_response,
            generate=generate,
            validator=lambda text: validate_tool_selection(text, snapshot),
            feedback_prompt=lambda response, error: create_tool_selection_feedback_prompt(
                response, error, snapshot, user_message
            ),
            fallback_message=fallback_message,
            notify=notify,
        )

    async def select_resource(
        self,
        initial_response: str,
        generate: GenerateFn,
        fallback_message: str,
        user_message: Optional[str] = None,
        notify: Optional[NotifyFn] = None,
    ) -> RetryOutcome:
        """
        Validate a resource selection against the current snapshot, retrying once.
        """
        snapshot = self.get_provider_data()
        return await with_model_retry(
            initial_response,
            generate=generate,
            validator=lambda text: validate_resource_selection(text, snapshot),
            feedback_prompt=lambda response, error: create_resource_selection_feedback_prompt(
                response, error, snapshot, user_message
            ),
            fallback_message=fallback_message,
            notify=notify,
        )


@asynccontextmanager
async def run_service(settings: Optional[Settings] = None, config_path: Optional[str] = None):
    """
    Run an McpService as an async context manager.

    Yields:
        The started service.
    """
    async with McpService(settings=settings, config_path=config_path) as service:
        yield service
