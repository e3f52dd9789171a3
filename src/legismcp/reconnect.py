"""
Reconnection policy: exponential backoff with a bounded attempt count.

Attempt n waits ``base_delay * 2 ** (n - 1)`` seconds before calling the
reconnect coroutine. A failed attempt counts as another failure. When the
ceiling is reached ``connection_failed`` is emitted once and no further
attempts are made until reset().
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from .errors import MCPError
from .events import CONNECTION_FAILED, ERROR, RECONNECTING, EventEmitter

logger = logging.getLogger('legismcp')


class ReconnectPolicy:

    def __init__(
        self,
        reconnect: Callable[[], Awaitable[Any]],
        events: EventEmitter,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        on_exhausted: Optional[Callable[[MCPError], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ) -> None:
        self.reconnect = reconnect
        self.events = events
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.on_exhausted = on_exhausted
        self._sleep = sleep
        self.attempts = 0
        self._task: Optional[asyncio.Task] = None
        self._exhausted = False

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** (attempt - 1))

    def on_failure(self, error: MCPError) -> bool:
        """
        Schedule the next attempt after a push-channel failure.

        Returns:
            True if an attempt was scheduled, False if the ceiling was reached.
        """
        if self.pending and self._task is not asyncio.current_task():
            return True
        if self._exhausted:
            return False

        if self.attempts >= self.max_attempts:
            self._exhausted = True
            self._task = None
            logger.error(f"giving up after {self.attempts} reconnect attempts: {error}")
            if self.on_exhausted is not None:
                self.on_exhausted(error)
            self.events.emit(CONNECTION_FAILED, error)
            return False

        self.attempts += 1
        attempt = self.attempts
        delay = self.delay_for(attempt)
        logger.info(f"reconnecting in {delay:.2f}s (attempt {attempt}/{self.max_attempts})")
        self._task = asyncio.get_running_loop().create_task(self._run(attempt, delay))
        self.events.emit(RECONNECTING, attempt)
        return True

    async def _run(self, attempt: int, delay: float) -> None:
        await self._sleep(delay)
        try:
            await self.reconnect()
        except MCPError as e:
            logger.warning(f"reconnect attempt {attempt} failed: {e}")
            self.events.emit(ERROR, e)
            self.on_failure(e)

    def reset(self) -> None:
        self.attempts = 0
        self._exhausted = False

    def cancel(self) -> None:
        """Cancel a scheduled attempt, if any."""
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
