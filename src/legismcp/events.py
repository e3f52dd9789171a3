"""
Lifecycle event surface.

The hosting application subscribes to client events instead of polling:

    client.events.on(CONNECTED, lambda state: print("up", state.session_id))
    client.events.on(RECONNECTING, lambda attempt: print("retry", attempt))

Listeners may be plain callables or coroutine functions; coroutines are
scheduled on the running loop and never awaited by the emitter.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger('legismcp')

CONNECTING = "connecting"
CONNECTED = "connected"
INITIALIZED = "initialized"
DISCONNECTING = "disconnecting"
DISCONNECTED = "disconnected"
RECONNECTING = "reconnecting"
CONNECTION_FAILED = "connection_failed"
CONNECTION_SESSION = "session"
PING = "ping"
NOTIFICATION = "notification"
MESSAGE = "message"
ERROR = "error"


class EventEmitter:
    """Per-client subscriber lists keyed by event name."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Callable[..., Any]]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def on(self, event: str, listener: Callable[..., Any]) -> Callable[..., Any]:
        self._listeners[event].append(listener)
        return listener

    def once(self, event: str, listener: Callable[..., Any]) -> Callable[..., Any]:
        def wrapper(*args):
            self.off(event, wrapper)
            return listener(*args)
        wrapper.__wrapped__ = listener
        return self.on(event, wrapper)

    def off(self, event: str, listener: Callable[..., Any]) -> None:
        listeners = self._listeners.get(event, [])
        for registered in list(listeners):
            if registered == listener or getattr(registered, '__wrapped__', None) == listener:
                listeners.remove(registered)
                return

    def listeners(self, event: str) -> list[Callable[..., Any]]:
        return list(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> int:
        """
        Call every listener for ``event`` with ``args``.

        A failing listener is logged and does not stop the others.

        Returns:
            Number of listeners called.
        """
        listeners = self.listeners(event)
        if event == ERROR and not listeners and args:
            logger.debug(f"unhandled client error: {args[0]}")
        for listener in listeners:
            try:
                result = listener(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._tasks.add(task)
                    task.add_done_callback(self._task_done)
            except Exception as e:
                logger.error(f"Exception in '{event}' listener: {e}")
        return len(listeners)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Exception in async listener: {task.exception()}")
