"""Tests for legismcp.pending — settle-once call registry."""

import asyncio

import pytest

from legismcp.envelope import Fault, Result
from legismcp.errors import ConnectionClosedError, MCPTimeoutError, RPCError, TransportError
from legismcp.pending import PendingCallRegistry


def run(coro):
    return asyncio.run(coro)


class TestSettle:
    def test_result_resolves(self):
        async def main():
            registry = PendingCallRegistry()
            future = registry.register(1)
            assert 1 in registry
            assert registry.settle(1, Result(id=1, value={"ok": True})) is True
            assert await future == {"ok": True}
            assert len(registry) == 0
        run(main())

    def test_fault_rejects_with_rpc_error(self):
        async def main():
            registry = PendingCallRegistry()
            future = registry.register(7)
            registry.settle(7, Fault(id=7, code=-32601, message="Method not found"))
            with pytest.raises(RPCError) as exc:
                await future
            assert exc.value.code == -32601
            assert str(exc.value) == "RPC Error -32601: Method not found"
        run(main())

    def test_exception_rejects_as_is(self):
        async def main():
            registry = PendingCallRegistry()
            future = registry.register(1)
            error = TransportError("HTTP 502: Bad Gateway")
            registry.settle(1, error)
            with pytest.raises(TransportError) as exc:
                await future
            assert exc.value is error
        run(main())

    def test_second_settlement_is_noop(self):
        async def main():
            registry = PendingCallRegistry()
            future = registry.register(1)
            assert registry.settle(1, Result(id=1, value="first")) is True
            assert registry.settle(1, Result(id=1, value="second")) is False
            assert registry.settle(1, TransportError("late")) is False
            assert await future == "first"
        run(main())

    def test_unknown_id_is_noop(self):
        async def main():
            registry = PendingCallRegistry()
            assert registry.settle(99, Result(id=99, value=1)) is False
        run(main())

    def test_numeric_ids_match_across_types(self):
        async def main():
            registry = PendingCallRegistry()
            future = registry.register(3)
            assert registry.settle(3.0, Result(id=3, value="ok")) is True
            assert await future == "ok"
        run(main())

    def test_duplicate_registration_rejected(self):
        async def main():
            registry = PendingCallRegistry()
            registry.register("init-1")
            with pytest.raises(ValueError):
                registry.register("init-1")
            registry.drain()
        run(main())


class TestTimeout:
    def test_expires_with_timeout_error(self):
        async def main():
            registry = PendingCallRegistry(timeout=0.01)
            future = registry.register(5)
            with pytest.raises(MCPTimeoutError, match="request 5 after 0.01s"):
                await future
            assert len(registry) == 0
            assert registry.settle(5, Result(id=5, value="late")) is False
        run(main())

    def test_timeout_error_is_builtin_timeout(self):
        assert issubclass(MCPTimeoutError, TimeoutError)

    def test_per_call_override(self):
        async def main():
            registry = PendingCallRegistry(timeout=60)
            future = registry.register(1, timeout=0.01)
            with pytest.raises(MCPTimeoutError):
                await future
        run(main())

    def test_none_disables_expiry(self):
        async def main():
            registry = PendingCallRegistry(timeout=0.01)
            registry.register(1, timeout=None)
            await asyncio.sleep(0.03)
            assert 1 in registry
            registry.drain()
        run(main())

    def test_settle_cancels_timer(self):
        async def main():
            registry = PendingCallRegistry(timeout=0.02)
            future = registry.register(1)
            registry.settle(1, Result(id=1, value="in time"))
            await asyncio.sleep(0.04)
            assert future.result() == "in time"
        run(main())


class TestDrain:
    def test_fails_every_call(self):
        async def main():
            registry = PendingCallRegistry()
            futures = [registry.register(i) for i in range(4)]
            assert registry.drain() == 4
            for future in futures:
                with pytest.raises(ConnectionClosedError, match="Connection closed"):
                    await future
            assert len(registry) == 0
            assert registry.drain() == 0
        run(main())

    def test_custom_error(self):
        async def main():
            registry = PendingCallRegistry()
            future = registry.register(1)
            registry.drain("stream lost", TransportError)
            with pytest.raises(TransportError, match="stream lost"):
                await future
        run(main())

    def test_cancelled_caller_releases_slot(self):
        async def main():
            registry = PendingCallRegistry()
            future = registry.register(1)
            future.cancel()
            await asyncio.sleep(0)
            assert 1 not in registry
            assert registry.ids() == []
        run(main())
