"""
Configuration management for Biostratum MCP.
"""

from .settings import (
    Settings,
    MCPSettings,
    LoggingSettings,
    ToolFilter,
    StdioServerConfig,
    SseServerConfig,
    CuratedServerSettings,
    CURATED_SERVERS,
    convert_curated_servers,
    merge_server_configurations,
    parse_server_config,
    load_config,
)

__all__ = [
    "Settings",
    "MCPSettings",
    "LoggingSettings",
    "ToolFilter",
    "StdioServerConfig",
    "SseServerConfig",
    "CuratedServerSettings",
    "CURATED_SERVERS",
    "convert_curated_servers",
    "merge_server_configurations",
    "parse_server_config",
    "load_config",
]
