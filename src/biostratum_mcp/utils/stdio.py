"""
stdio client that captures the child's stderr for diagnostics.
"""

import subprocess
from collections import deque
from contextlib import asynccontextmanager
from typing import Deque, Optional

import anyio
import anyio.lowlevel
from anyio.streams.text import TextReceiveStream
from mcp.client.stdio import StdioServerParameters, get_default_environment
from mcp.shared.message import SessionMessage
import mcp.types as types

from biostratum_mcp.utils.logging import get_logger

logger = get_logger(__name__)

STDERR_BUFFER_LINES = 200


class StderrCapture:
    """
    Bounded buffer holding the most recent stderr lines of a child process.
    """

    def __init__(self, server_name: str, max_lines: int = STDERR_BUFFER_LINES):
        self.server_name = server_name
        self._lines: Deque[str] = deque(maxlen=max_lines)

    def feed(self, chunk: str) -> None:
        for line in chunk.splitlines():
            line = line.rstrip()
            if not line:
                continue
            self._lines.append(line)
            logger.debug(f"{self.server_name}: stderr: {line}")

    def lines(self) -> list[str]:
        return list(self._lines)

    def tail(self, count: int = 20) -> str:
        return "\n".join(list(self._lines)[-count:])


@asynccontextmanager
async def stdio_client_with_captured_stderr(
    server: StdioServerParameters,
    stderr_capture: Optional[StderrCapture] = None,
):
    """
    Spawn the server process and talk JSON-RPC over its stdin/stdout.

    The child's stderr is never forwarded to the parent's output; it is kept in
    ``stderr_capture`` and logged at debug level.

    Args:
        server: The server parameters for the stdio connection.
        stderr_capture: Buffer receiving the child's stderr lines.

    Yields:
        A tuple of (read_stream, write_stream) for communication with the server.
    """
    read_stream_writer, read_stream = anyio.create_memory_object_stream(0)
    write_stream, write_stream_reader = anyio.create_memory_object_stream(0)

    try:
        process = await anyio.open_process(
            [server.command, *server.args],
            env=server.env if server.env is not None else get_default_environment(),
            stderr=subprocess.PIPE,
            cwd=server.cwd,
        )
    except Exception as e:
        logger.error(f"Failed to open process '{server.command}': {e}")
        await read_stream_writer.aclose()
        await write_stream_reader.aclose()
        raise

    logger.debug(f"Started process '{server.command}' with PID: {process.pid}")

    async def stdout_reader():
        assert process.stdout, "Opened process is missing stdout"
        try:
            async with read_stream_writer:
                buffer = ""
                async for chunk in TextReceiveStream(
                    process.stdout,
                    encoding=server.encoding,
                    errors=server.encoding_error_handler,
                ):
                    lines = (buffer + chunk).split("\n")
                    buffer = lines.pop()

                    for line in lines:
                        if not line:
                            continue
                        try:
                            message = types.JSONRPCMessage.model_validate_json(line)
                        except Exception as exc:
                            await read_stream_writer.send(exc)
                            continue

                        await read_stream_writer.send(SessionMessage(message))
        except anyio.ClosedResourceError:
            logger.debug(f"Stdout stream closed for {server.command}")
            await anyio.lowlevel.checkpoint()

    async def stderr_reader():
        assert process.stderr, "Opened process is missing stderr"
        try:
            async for chunk in TextReceiveStream(
                process.stderr,
                encoding=server.encoding,
                errors=server.encoding_error_handler,
            ):
                if stderr_capture is not None:
                    stderr_capture.feed(chunk)
        except anyio.ClosedResourceError:
            logger.debug(f"Stderr stream closed for {server.command}")
            await anyio.lowlevel.checkpoint()

    async def stdin_writer():
        assert process.stdin, "Opened process is missing stdin"
        try:
            async with write_stream_reader:
                async for session_message in write_stream_reader:
                    json = session_message.message.model_dump_json(
                        by_alias=True, exclude_none=True
                    )
                    await process.stdin.send(
                        (json + "\n").encode(
                            encoding=server.encoding,
                            errors=server.encoding_error_handler,
                        )
                    )
        except anyio.ClosedResourceError:
            logger.debug(f"Stdin stream closed for {server.command}")
            await anyio.lowlevel.checkpoint()

    async with anyio.create_task_group() as tg, process:
        tg.start_soon(stdout_reader)
        tg.start_soon(stdin_writer)
        tg.start_soon(stderr_reader)
        try:
            yield read_stream, write_stream
        finally:
            tg.cancel_scope.cancel()
            await read_stream.aclose()
            await write_stream.aclose()
