"""
Background release of connection resources.
"""

import math
from typing import Awaitable, Callable, Optional

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from biostratum_mcp.mcp.errors import describe_error
from biostratum_mcp.utils.logging import get_logger

logger = get_logger(__name__)

CleanupJob = Callable[[], Awaitable[None]]

DEFAULT_CLEANUP_WORKERS = 4


class CleanupQueue:
    """
    Runs release jobs on a bounded pool of worker tasks.

    ``submit`` never waits for the job and job failures are logged and
    dropped, so a slow or unresponsive server cannot block the caller.
    """

    def __init__(self, workers: int = DEFAULT_CLEANUP_WORKERS):
        if workers < 1:
            raise ValueError("CleanupQueue needs at least one worker")
        self.workers = workers
        self._send_stream: Optional[MemoryObjectSendStream] = None
        self._receive_stream: Optional[MemoryObjectReceiveStream] = None
        self._pending = 0
        self._idle_event: Optional[anyio.Event] = None

    @property
    def running(self) -> bool:
        return self._send_stream is not None

    @property
    def pending(self) -> int:
        return self._pending

    def start(self, task_group: TaskGroup) -> None:
        """Start the worker tasks on the given task group."""
        if self.running:
            return
        self._send_stream, self._receive_stream = anyio.create_memory_object_stream(math.inf)
        for index in range(self.workers):
            task_group.start_soon(
                self._worker, self._receive_stream.clone(), name=f"mcp-cleanup-{index}"
            )
        # Workers hold their own clones
        self._receive_stream.close()

    def submit(self, job: CleanupJob, label: str = "cleanup") -> None:
        """Schedule ``job`` in the background and return immediately."""
        if self._send_stream is None:
            raise RuntimeError("CleanupQueue is not running; call start() first.")
        self._pending += 1
        self._send_stream.send_nowait((label, job))

    async def join(self) -> None:
        """Wait until every submitted job has finished."""
        while self._pending:
            # Concurrent joiners share one event
            if self._idle_event is None or self._idle_event.is_set():
                self._idle_event = anyio.Event()
            await self._idle_event.wait()

    async def close(self) -> None:
        """Stop accepting jobs; workers exit once the queue is drained."""
        if self._send_stream is not None:
            await self._send_stream.aclose()
            self._send_stream = None

    async def _worker(self, receive_stream: MemoryObjectReceiveStream) -> None:
        async with receive_stream:
            async for label, job in receive_stream:
                try:
                    await job()
                except Exception as exc:
                    logger.debug(f"{label}: background cleanup failed (ignored): {describe_error(exc)}")
                finally:
                    self._pending -= 1
                    if self._pending == 0 and self._idle_event is not None:
                        self._idle_event.set()
