"""
Pending-call registry.

Every outstanding request is an ``asyncio.Future`` keyed by its JSON-RPC id,
plus a ``loop.call_later`` handle that expires it. The first settlement wins:
the entry is removed and its timer cancelled before the future is completed,
so a later reply, push frame, timeout or drain for the same id finds nothing
and does nothing.
"""

import asyncio
import logging
from typing import Any, Optional, Union

from .envelope import Fault, Result, normalize_id
from .errors import ConnectionClosedError, MCPTimeoutError

logger = logging.getLogger('legismcp')

# Sentinel for unspecified timeout (distinguishes "not passed" from "explicitly None")
_TIMEOUT_NOT_SPECIFIED = object()

Outcome = Union[Result, Fault, BaseException]


class PendingCall:
    __slots__ = ('id', 'future', 'timer')

    def __init__(self, call_id: Any, future: asyncio.Future, timer: Optional[asyncio.TimerHandle]) -> None:
        self.id = call_id
        self.future = future
        self.timer = timer


class PendingCallRegistry:
    """Maps outstanding call ids to their eventual settlement."""

    DEFAULT_TIMEOUT = 30.0

    def __init__(self, timeout: Optional[float] = DEFAULT_TIMEOUT) -> None:
        self.default_timeout = timeout
        self._calls: dict[Any, PendingCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def __contains__(self, call_id: Any) -> bool:
        return normalize_id(call_id) in self._calls

    def ids(self) -> list[Any]:
        return [call.id for call in self._calls.values()]

    def register(self, call_id: Any, timeout: Optional[float] = _TIMEOUT_NOT_SPECIFIED) -> asyncio.Future:
        """
        Register a new pending call and return the future it settles.

        Args:
            call_id: The JSON-RPC id of the request.
            timeout: Seconds before the call fails with MCPTimeoutError. If not
                    specified, uses self.default_timeout. None disables expiry.

        Raises:
            ValueError: If the id is already pending.
        """
        key = normalize_id(call_id)
        if key in self._calls:
            raise ValueError(f"Call id {call_id!r} is already pending")

        if timeout is _TIMEOUT_NOT_SPECIFIED:
            timeout = self.default_timeout

        loop = asyncio.get_running_loop()
        future = loop.create_future()
        timer = None
        if timeout is not None:
            timer = loop.call_later(timeout, self._expire, key, timeout)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"call {call_id} registered, expires in {timeout}s")

        self._calls[key] = PendingCall(call_id, future, timer)
        future.add_done_callback(lambda f, key=key: self._forget(key, f))
        return future

    def settle(self, call_id: Any, outcome: Outcome) -> bool:
        """
        Settle a pending call exactly once.

        A Result resolves the call with its value, a Fault rejects it with
        RPCError and an exception rejects it with that exception. Settling an
        unknown or already-settled id is a no-op.

        Returns:
            True if this call settled the entry, False otherwise.
        """
        call = self._pop(normalize_id(call_id))
        if call is None:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"dropping settlement for unknown call {call_id}")
            return False

        if isinstance(outcome, Result):
            call.future.set_result(outcome.value)
        elif isinstance(outcome, Fault):
            call.future.set_exception(outcome.to_exception())
        else:
            call.future.set_exception(outcome)
        return True

    def drain(self, reason: str = "Connection closed", error_cls: type = ConnectionClosedError) -> int:
        """
        Fail every pending call with ``error_cls(reason)``.

        Returns:
            Number of calls that were failed.
        """
        count = 0
        for key in list(self._calls):
            call = self._pop(key)
            if call is not None:
                call.future.set_exception(error_cls(reason))
                count += 1
        return count

    def _pop(self, key: Any) -> Optional[PendingCall]:
        call = self._calls.pop(key, None)
        if call is None:
            return None
        if call.timer is not None:
            call.timer.cancel()
        if call.future.done():
            return None
        return call

    def _expire(self, key: Any, timeout: float) -> None:
        call = self._pop(key)
        if call is not None:
            call.future.set_exception(
                MCPTimeoutError(f"Timeout waiting for response to request {call.id} after {timeout}s")
            )

    def _forget(self, key: Any, future: asyncio.Future) -> None:
        # Caller cancelled its await; release the slot and its timer.
        call = self._calls.get(key)
        if call is not None and call.future is future:
            self._calls.pop(key)
            if call.timer is not None:
                call.timer.cancel()
