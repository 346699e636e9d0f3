"""
In-memory registry of named server connections.
"""

from typing import Dict, Iterator, List, Optional

from biostratum_mcp.mcp.models import ServerState
from biostratum_mcp.mcp.transport import ServerTransport


class Connection:
    """
    A live (or failed) connection to one MCP server.

    Includes:
    - The serialized configuration it was built from
    - The transport, which owns the client session
    - The mutable server state
    """

    def __init__(
        self,
        name: str,
        config: str,
        state: ServerState,
        transport: Optional[ServerTransport] = None,
    ):
        self.name = name
        self.config = config
        self.state = state
        self.transport = transport

    @property
    def session(self):
        return self.transport.session if self.transport else None

    def __repr__(self) -> str:
        return f"Connection(name={self.name!r}, status={self.state.status.value!r})"


class ConnectionRegistry:
    """
    Collection of connections keyed by server name.

    Holds at most one connection per name. Mutation is confined to the
    supervisor and the invoker.
    """

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def list(self) -> List[ServerState]:
        """Return the state of every connection that is not disabled."""
        return [conn.state for conn in self._connections.values() if not conn.state.disabled]

    def find(self, name: str) -> Optional[Connection]:
        return self._connections.get(name)

    def upsert(self, connection: Connection) -> None:
        # Drop the old entry first so the new one lands at the end
        self._connections.pop(connection.name, None)
        self._connections[connection.name] = connection

    def remove(self, name: str) -> Optional[Connection]:
        return self._connections.pop(name, None)

    def names(self) -> List[str]:
        return list(self._connections.keys())

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def __contains__(self, name: object) -> bool:
        return name in self._connections

    def __len__(self) -> int:
        return len(self._connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))
