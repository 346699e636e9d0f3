"""Tests for the connection registry, server state and cleanup queue."""

import anyio
import pytest

from biostratum_mcp.mcp.cleanup import CleanupQueue
from biostratum_mcp.mcp.connection_registry import ConnectionRegistry
from biostratum_mcp.mcp.errors import TransportError
from biostratum_mcp.mcp.models import ServerState, ServerStatus


class TestConnectionRegistry:
    """Tests for ConnectionRegistry."""

    def test_upsert_replaces_by_name(self, make_connection):
        registry = ConnectionRegistry()
        first = make_connection("a")
        second = make_connection("a")

        registry.upsert(first)
        registry.upsert(second)

        assert len(registry) == 1
        assert registry.find("a") is second

    def test_list_skips_disabled(self, make_connection):
        registry = ConnectionRegistry()
        registry.upsert(make_connection("a"))
        registry.upsert(make_connection("b", disabled=True))

        assert [state.name for state in registry.list()] == ["a"]
        assert registry.names() == ["a", "b"]
        assert "b" in registry

    def test_remove(self, make_connection):
        registry = ConnectionRegistry()
        connection = make_connection("a")
        registry.upsert(connection)

        assert registry.remove("a") is connection
        assert registry.remove("a") is None
        assert registry.find("a") is None


class TestServerState:
    """Tests for ServerState transitions."""

    def test_connecting_to_connected_clears_error(self):
        state = ServerState(name="a", error="stale")

        state.mark_connected()

        assert state.status == ServerStatus.CONNECTED
        assert state.error == ""

    def test_cannot_reconnect_in_place(self):
        state = ServerState(name="a")
        state.mark_disconnected("pipe broke")

        with pytest.raises(TransportError, match="pipe broke"):
            state.mark_connected()

    def test_errors_accumulate(self):
        state = ServerState(name="a")

        state.mark_disconnected("first")
        state.mark_disconnected()
        state.mark_disconnected("second")

        assert state.status == ServerStatus.DISCONNECTED
        assert state.error == "first\nsecond"


class TestCleanupQueue:
    """Tests for CleanupQueue."""

    def test_submit_requires_start(self):
        with pytest.raises(RuntimeError):
            CleanupQueue().submit(lambda: None)

    def test_needs_a_worker(self):
        with pytest.raises(ValueError):
            CleanupQueue(workers=0)

    @pytest.mark.asyncio
    async def test_runs_jobs_and_ignores_failures(self):
        queue = CleanupQueue(workers=2)
        finished = []

        async def ok(label):
            await anyio.sleep(0.01)
            finished.append(label)

        async def fails():
            raise RuntimeError("server already gone")

        async with anyio.create_task_group() as tg:
            queue.start(tg)
            queue.submit(lambda: ok("a"), label="a")
            queue.submit(fails, label="b")
            queue.submit(lambda: ok("c"), label="c")
            assert queue.pending == 3

            with anyio.fail_after(5):
                await queue.join()
            await queue.close()

        assert sorted(finished) == ["a", "c"]
        assert queue.pending == 0
        assert not queue.running

    @pytest.mark.asyncio
    async def test_concurrent_joins_all_return(self):
        queue = CleanupQueue(workers=1)
        release = anyio.Event()
        joined = []

        async def slow():
            await release.wait()

        async def waiter(label):
            await queue.join()
            joined.append(label)

        async with anyio.create_task_group() as tg:
            queue.start(tg)
            queue.submit(slow, label="a")

            with anyio.fail_after(5):
                async with anyio.create_task_group() as waiters:
                    waiters.start_soon(waiter, "first")
                    waiters.start_soon(waiter, "second")
                    await anyio.sleep(0.01)
                    release.set()

            await queue.close()

        assert sorted(joined) == ["first", "second"]
        assert queue.pending == 0
