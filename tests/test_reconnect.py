"""Tests for legismcp.reconnect — backoff schedule and give-up."""

import asyncio

from helpers import EventLog, until
from legismcp.errors import TransportError
from legismcp.events import CONNECTION_FAILED, ERROR, RECONNECTING, EventEmitter
from legismcp.reconnect import ReconnectPolicy


def run(coro):
    return asyncio.run(coro)


class Harness:
    """Reconnect target that fails a scripted number of times."""

    def __init__(self, failures=0, **kwargs):
        self.failures = failures
        self.attempts = 0
        self.delays = []
        self.exhausted = []
        self.events = EventEmitter()
        self.log = EventLog(self.events, RECONNECTING, CONNECTION_FAILED, ERROR)
        self.policy = ReconnectPolicy(
            self.reconnect, self.events,
            sleep=self.sleep, on_exhausted=self.exhausted.append, **kwargs
        )

    async def sleep(self, delay):
        self.delays.append(delay)

    async def reconnect(self):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise TransportError(f"attempt {self.attempts} refused")
        self.policy.reset()


def test_delay_schedule():
    policy = ReconnectPolicy(None, EventEmitter())
    assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]
    assert ReconnectPolicy(None, EventEmitter(), base_delay=0.5).delay_for(3) == 2.0


def test_recovers_on_first_attempt():
    async def main():
        h = Harness()
        assert h.policy.on_failure(TransportError("dropped")) is True
        assert h.log.args(RECONNECTING) == [(1,)]
        await until(lambda: not h.policy.pending)
        assert h.attempts == 1
        assert h.delays == [1.0]
        assert h.policy.attempts == 0
    run(main())


def test_backoff_then_give_up_once():
    async def main():
        h = Harness(failures=10)
        h.policy.on_failure(TransportError("dropped"))
        await until(lambda: h.log.args(CONNECTION_FAILED))
        await asyncio.sleep(0.01)

        assert h.delays == [1.0, 2.0, 4.0]
        assert h.log.args(RECONNECTING) == [(1,), (2,), (3,)]
        assert len(h.log.args(CONNECTION_FAILED)) == 1
        assert len(h.log.args(ERROR)) == 3
        assert len(h.exhausted) == 1
        assert str(h.exhausted[0]) == "attempt 3 refused"

        # Further failures are ignored until reset
        assert h.policy.on_failure(TransportError("again")) is False
        assert len(h.log.args(CONNECTION_FAILED)) == 1
    run(main())


def test_recovers_after_retries_and_resets():
    async def main():
        h = Harness(failures=2)
        h.policy.on_failure(TransportError("dropped"))
        await until(lambda: h.attempts == 3 and not h.policy.pending)
        assert h.delays == [1.0, 2.0, 4.0]
        assert h.log.args(CONNECTION_FAILED) == []
        assert h.policy.attempts == 0

        h.policy.on_failure(TransportError("dropped again"))
        await until(lambda: not h.policy.pending)
        assert h.delays[-1] == 1.0
    run(main())


def test_duplicate_failure_while_scheduled_is_ignored():
    async def main():
        h = Harness()
        h.policy.on_failure(TransportError("a"))
        assert h.policy.on_failure(TransportError("b")) is True
        assert h.log.args(RECONNECTING) == [(1,)]
        await until(lambda: not h.policy.pending)
        assert h.attempts == 1
    run(main())


def test_zero_attempts_gives_up_immediately():
    async def main():
        h = Harness(max_attempts=0)
        assert h.policy.on_failure(TransportError("dropped")) is False
        assert h.log.names() == [CONNECTION_FAILED]
    run(main())


def test_cancel_stops_scheduled_attempt():
    async def main():
        events = EventEmitter()
        attempts = []

        async def reconnect():
            attempts.append(1)

        policy = ReconnectPolicy(reconnect, events, base_delay=0.05)
        policy.on_failure(TransportError("dropped"))
        policy.cancel()
        await asyncio.sleep(0.1)
        assert attempts == []
        assert not policy.pending
    run(main())
