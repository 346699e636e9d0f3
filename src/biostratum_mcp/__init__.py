"""
Biostratum MCP - connection supervision and tool dispatch for biomedical MCP servers.
"""

__version__ = "0.1.0"

# MCP connectivity
from biostratum_mcp.mcp.connection_registry import Connection, ConnectionRegistry
from biostratum_mcp.mcp.supervisor import ConnectionSupervisor, ReconcileReport
from biostratum_mcp.mcp.invoker import ToolInvoker
from biostratum_mcp.mcp.models import ProviderSnapshot, ServerState, ServerStatus

# Service facade
from biostratum_mcp.service import McpService, run_service

# Configuration
from biostratum_mcp.config import load_config, Settings

__all__ = [
    "Connection",
    "ConnectionRegistry",
    "ConnectionSupervisor",
    "ReconcileReport",
    "ToolInvoker",
    "ProviderSnapshot",
    "ServerState",
    "ServerStatus",
    "McpService",
    "run_service",
    "load_config",
    "Settings",
]
