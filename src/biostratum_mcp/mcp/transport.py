"""
Transport construction and lifecycle for a single MCP server.
"""

import os
from contextlib import AbstractAsyncContextManager
from datetime import timedelta
from typing import Awaitable, Callable, Optional

import anyio
from anyio.abc import TaskGroup
from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.stdio import StdioServerParameters

from biostratum_mcp.config.settings import (
    BaseServerConfig,
    SseServerConfig,
    StdioServerConfig,
)
from biostratum_mcp.mcp.client_session import BiostratumClientSession
from biostratum_mcp.mcp.errors import ConfigurationError, TransportError, describe_error
from biostratum_mcp.utils.logging import get_logger
from biostratum_mcp.utils.stdio import StderrCapture, stdio_client_with_captured_stderr

logger = get_logger(__name__)

TransportContextFactory = Callable[[], AbstractAsyncContextManager]
ClientSessionFactory = Callable[..., ClientSession]
ErrorHook = Callable[[BaseException], Awaitable[None]]
CloseHook = Callable[[], Awaitable[None]]


class ServerTransport:
    """
    Point-to-point channel to one remote server.

    The transport context and the client session are entered and exited by a
    single lifecycle task running in the owner's task group. Other tasks use
    ``session`` once ``wait_ready()`` has returned.
    """

    def __init__(
        self,
        server_name: str,
        transport_context_factory: TransportContextFactory,
        client_session_factory: ClientSessionFactory = BiostratumClientSession,
        read_timeout_seconds: Optional[float] = None,
        stderr_capture: Optional[StderrCapture] = None,
    ):
        self.server_name = server_name
        self.session: Optional[ClientSession] = None
        self.stderr_capture = stderr_capture
        self.on_error: Optional[ErrorHook] = None
        self.on_close: Optional[CloseHook] = None
        self._transport_context_factory = transport_context_factory
        self._client_session_factory = client_session_factory
        self._read_timeout_seconds = read_timeout_seconds
        self._ready_event = anyio.Event()
        self._shutdown_event = anyio.Event()
        self._closed_event = anyio.Event()
        self._cancel_scope: Optional[anyio.CancelScope] = None
        self._startup_error: Optional[BaseException] = None
        self._started = False

    @property
    def closed(self) -> bool:
        return self._closed_event.is_set()

    def start(self, task_group: TaskGroup) -> None:
        """Schedule the lifecycle task on the given task group."""
        if self._started:
            raise TransportError(
                f"{self.server_name}: transport already started", server_name=self.server_name
            )
        self._started = True
        task_group.start_soon(self._run, name=f"mcp-transport-{self.server_name}")

    async def wait_ready(self) -> ClientSession:
        """
        Wait until the client session is open.

        Raises:
            TransportError: If the transport failed or closed before the
                session was ready.
        """
        await self._ready_event.wait()
        if self.session is None or self._closed_event.is_set():
            message = f"{self.server_name}: transport closed before the session was ready"
            if self._startup_error is not None:
                message = f"{self.server_name}: failed to open transport: {describe_error(self._startup_error)}"
            stderr_tail = self.stderr_capture.tail() if self.stderr_capture else ""
            if stderr_tail:
                message = f"{message}\n{stderr_tail}"
            raise TransportError(message, server_name=self.server_name) from self._startup_error
        return self.session

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def aclose(self, grace_seconds: float = 5.0) -> None:
        """
        Ask the lifecycle task to exit, cancelling it after ``grace_seconds``.
        """
        self.request_shutdown()
        if not self._started:
            return
        with anyio.move_on_after(grace_seconds) as scope:
            await self._closed_event.wait()
        if scope.cancelled_caught and self._cancel_scope is not None:
            logger.warning(
                f"{self.server_name}: transport did not close within {grace_seconds}s; cancelling"
            )
            self._cancel_scope.cancel()

    async def _run(self) -> None:
        read_timeout = (
            timedelta(seconds=self._read_timeout_seconds)
            if self._read_timeout_seconds
            else None
        )
        error: Optional[BaseException] = None
        try:
            with anyio.CancelScope() as cancel_scope:
                self._cancel_scope = cancel_scope
                async with self._transport_context_factory() as (read_stream, write_stream):
                    session = self._client_session_factory(
                        read_stream, write_stream, read_timeout, server_name=self.server_name
                    )
                    async with session:
                        self.session = session
                        self._ready_event.set()
                        await self._shutdown_event.wait()
        except Exception as exc:
            error = exc
            self._startup_error = exc if not self._ready_event.is_set() else None
            logger.error(f"{self.server_name}: transport error in lifecycle task: {describe_error(exc)}")
        finally:
            self._closed_event.set()
            self._ready_event.set()

        if error is not None and self.on_error is not None:
            await self.on_error(error)
        if self.on_close is not None:
            await self.on_close()


class TransportFactory:
    """
    Builds transports from server configurations.
    """

    def __init__(
        self,
        client_session_factory: ClientSessionFactory = BiostratumClientSession,
    ):
        self.client_session_factory = client_session_factory

    def build(self, name: str, config: BaseServerConfig) -> ServerTransport:
        if isinstance(config, StdioServerConfig):
            return self.build_stdio_transport(name, config)
        if isinstance(config, SseServerConfig):
            return self.build_sse_transport(name, config)
        raise ConfigurationError(
            f"Unsupported transport for MCP server {name}: {getattr(config, 'type', None)}",
            server_name=name,
        )

    def stdio_parameters(self, name: str, config: StdioServerConfig) -> StdioServerParameters:
        if not config.command:
            raise ConfigurationError(f"Missing command for stdio MCP server {name}", server_name=name)

        env = dict(config.env)
        path = os.environ.get("PATH")
        if path:
            env["PATH"] = path

        return StdioServerParameters(
            command=config.command,
            args=list(config.args),
            env=env,
            cwd=config.cwd,
        )

    def build_stdio_transport(self, name: str, config: StdioServerConfig) -> ServerTransport:
        server_params = self.stdio_parameters(name, config)
        stderr_capture = StderrCapture(name)

        logger.debug(f"{name}: building stdio transport:", data=[server_params.command, *server_params.args])
        return ServerTransport(
            server_name=name,
            transport_context_factory=lambda: self.stdio_context(server_params, stderr_capture),
            client_session_factory=self.client_session_factory,
            read_timeout_seconds=config.timeout,
            stderr_capture=stderr_capture,
        )

    def build_sse_transport(self, name: str, config: SseServerConfig) -> ServerTransport:
        if not config.url:
            raise ConfigurationError(f"Missing URL for SSE MCP server {name}", server_name=name)

        url = config.url
        logger.debug(f"{name}: building SSE transport for {url}")
        return ServerTransport(
            server_name=name,
            transport_context_factory=lambda: self.sse_context(url),
            client_session_factory=self.client_session_factory,
            read_timeout_seconds=config.timeout,
        )

    def stdio_context(
        self, server_params: StdioServerParameters, stderr_capture: StderrCapture
    ) -> AbstractAsyncContextManager:
        return stdio_client_with_captured_stderr(server_params, stderr_capture)

    def sse_context(self, url: str) -> AbstractAsyncContextManager:
        return sse_client(url)
