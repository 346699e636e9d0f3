"""
MCP connectivity for Biostratum.

This module provides the components for building server transports,
supervising connections, and routing tool calls to the appropriate servers.
"""

from .errors import (
    McpServiceError,
    ConfigurationError,
    TransportError,
    ServerUnavailableError,
    NotFoundError,
    DisabledError,
    NotConnectedError,
    InvalidResultError,
    SelectionValidationError,
)
from .models import ServerStatus, ServerState, ServerCatalog, ProviderSnapshot
from .transport import ServerTransport, TransportFactory
from .client_session import BiostratumClientSession
from .connection_registry import Connection, ConnectionRegistry
from .cleanup import CleanupQueue
from .catalog import CatalogBuilder, build_snapshot
from .supervisor import ConnectionSupervisor, ReconcileReport
from .invoker import ToolInvoker

__all__ = [
    "McpServiceError",
    "ConfigurationError",
    "TransportError",
    "ServerUnavailableError",
    "NotFoundError",
    "DisabledError",
    "NotConnectedError",
    "InvalidResultError",
    "SelectionValidationError",
    "ServerStatus",
    "ServerState",
    "ServerCatalog",
    "ProviderSnapshot",
    "ServerTransport",
    "TransportFactory",
    "BiostratumClientSession",
    "Connection",
    "ConnectionRegistry",
    "CleanupQueue",
    "CatalogBuilder",
    "build_snapshot",
    "ConnectionSupervisor",
    "ReconcileReport",
    "ToolInvoker",
]
