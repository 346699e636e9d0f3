"""
Error taxonomy for MCP connection supervision and tool dispatch.
"""

from typing import Optional

import anyio
import httpx
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED


class McpServiceError(Exception):
    """Base class for every error raised by the dispatch core."""

    def __init__(self, message: str, server_name: Optional[str] = None):
        super().__init__(message)
        self.server_name = server_name


class ConfigurationError(McpServiceError):
    """A required configuration field is missing or invalid."""


class TransportError(McpServiceError):
    """Handshake or IO failure on a server connection."""


class ServerUnavailableError(McpServiceError):
    """A caller-facing invocation precondition was not met."""


class NotFoundError(ServerUnavailableError):
    """No connection is registered under the requested name."""


class DisabledError(ServerUnavailableError):
    """The connection exists but is disabled by configuration."""


class NotConnectedError(ServerUnavailableError):
    """The connection exists but its status is not connected."""


class InvalidResultError(McpServiceError):
    """The remote server returned a malformed response."""


class SelectionValidationError(McpServiceError):
    """A model-produced selection does not match the current catalog."""


_TRANSPORT_EXCEPTIONS = (
    TransportError,
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    ConnectionError,
    httpx.TransportError,
)

_TRANSPORT_MARKERS = ("connection", "transport")


def is_transport_failure(exc: BaseException) -> bool:
    """
    Decide whether a failure means the connection itself is broken.

    Typed errors from the protocol client and the IO layer are classified by
    type. Exceptions of unknown type fall back to a message check.
    """
    if isinstance(exc, TimeoutError):
        return False

    if isinstance(exc, _TRANSPORT_EXCEPTIONS):
        return True

    if isinstance(exc, McpError):
        return exc.error.code == CONNECTION_CLOSED

    if isinstance(exc, OSError):
        return True

    if isinstance(exc, BaseExceptionGroup):
        return any(is_transport_failure(inner) for inner in exc.exceptions)

    if isinstance(exc, McpServiceError):
        return False

    message = str(exc).lower()
    return any(marker in message for marker in _TRANSPORT_MARKERS)


def unwrap_exception(exc: BaseException) -> BaseException:
    """Return the single leaf exception of nested one-member exception groups."""
    while isinstance(exc, BaseExceptionGroup) and len(exc.exceptions) == 1:
        exc = exc.exceptions[0]
    return exc


def describe_error(exc: BaseException) -> str:
    exc = unwrap_exception(exc)
    message = str(exc)
    return message or type(exc).__name__
