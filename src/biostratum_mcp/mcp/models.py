"""
Data model for server state, tool filtering and the provider snapshot.
"""

import enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from mcp.types import Resource, ResourceTemplate, Tool

from biostratum_mcp.config.settings import ToolFilter
from biostratum_mcp.mcp.errors import TransportError

__all__ = [
    "ServerStatus",
    "ServerState",
    "ServerCatalog",
    "ProviderSnapshot",
    "ToolFilter",
]


class ServerStatus(str, enum.Enum):
    """Connection status of a server."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"

    def __str__(self) -> str:
        return self.value


class ServerState(BaseModel):
    """
    Mutable state of a single server connection.

    Status only moves forward: connecting -> connected -> disconnected, or
    connecting -> disconnected. A restart creates a fresh state.
    """

    name: str
    status: ServerStatus = ServerStatus.CONNECTING
    error: str = ""
    tools: List[Tool] = Field(default_factory=list)
    resources: List[Resource] = Field(default_factory=list)
    resource_templates: List[ResourceTemplate] = Field(default_factory=list)
    disabled: bool = False

    def append_error(self, message: str) -> None:
        self.error = f"{self.error}\n{message}" if self.error else message

    def mark_connected(self) -> None:
        if self.status != ServerStatus.CONNECTING:
            raise TransportError(
                f"{self.name}: cannot mark as connected from status '{self.status}'"
                + (f" ({self.error})" if self.error else ""),
                server_name=self.name,
            )
        self.status = ServerStatus.CONNECTED
        self.error = ""

    def mark_disconnected(self, error: Optional[str] = None) -> None:
        self.status = ServerStatus.DISCONNECTED
        if error:
            self.append_error(error)


class ServerCatalog(BaseModel):
    """Filtered capabilities discovered on one server."""

    tools: List[Tool] = Field(default_factory=list)
    resources: List[Resource] = Field(default_factory=list)
    resource_templates: List[ResourceTemplate] = Field(default_factory=list)

    def find_tool(self, name: str) -> Optional[Tool]:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    def find_resource(self, uri: str) -> Optional[Resource]:
        for resource in self.resources:
            if str(resource.uri) == uri:
                return resource
        return None


class ProviderSnapshot(BaseModel):
    """
    Read-mostly view of every connected server's catalog.

    Rebuilt whenever the registry composition changes. It is advisory only;
    invocation always goes through the live connection.
    """

    servers: Dict[str, ServerCatalog] = Field(default_factory=dict)
    text: str = ""

    @property
    def values(self) -> Dict[str, Any]:
        return {"mcp": self._as_mapping()}

    @property
    def data(self) -> Dict[str, Any]:
        return {"mcp": self._as_mapping()}

    def _as_mapping(self) -> Dict[str, Any]:
        return {
            name: catalog.model_dump(mode="json", exclude_none=True)
            for name, catalog in self.servers.items()
        }
