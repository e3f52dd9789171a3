"""
Push channel: the server-to-client event stream.

The channel runs a reader task over the transport's stream. Each SSE
``data`` payload is decoded into a Frame and dispatched:

- connection:   the session id is adopted
- ping:         liveness only
- response:     the matching pending call is settled
- notification: re-emitted to listeners

A frame that fails to decode is reported as an ``error`` event and skipped.
Once the stream has opened, any transport failure (including the server
ending the stream) is handed to the ``on_failure`` callback exactly once.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from .envelope import decode_frame
from .errors import ConnectionClosedError, DecodeError, MCPError, TransportError
from .events import CONNECTION_SESSION, ERROR, MESSAGE, NOTIFICATION, PING, EventEmitter
from .pending import PendingCallRegistry
from .session import SessionManager

logger = logging.getLogger('legismcp')


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[tuple[Optional[str], str]]:
    """
    Group SSE lines into events.

    Yields (event_type, data) for every event that carries data. Events are
    separated by blank lines; comment lines (``:``) and ``id``/``retry``
    fields are ignored.
    """
    event_type = None
    data_lines: list[str] = []

    async for raw_line in lines:
        line = raw_line.rstrip('\r')
        if not line:
            if data_lines:
                yield event_type, '\n'.join(data_lines)
            event_type = None
            data_lines = []
            continue

        if line.startswith(':'):
            continue
        if line.startswith('event:'):
            event_type = line[6:].strip()
        elif line.startswith('data:'):
            # Strip at most one leading space
            value = line[5:]
            if value.startswith(' '):
                value = value[1:]
            data_lines.append(value)

    if data_lines:
        yield event_type, '\n'.join(data_lines)


class PushChannel:
    """Owns the long-lived server-push connection."""

    def __init__(
        self,
        transport,
        registry: PendingCallRegistry,
        session: SessionManager,
        events: EventEmitter,
        on_failure: Optional[Callable[[MCPError], None]] = None
    ) -> None:
        self.transport = transport
        self.registry = registry
        self.session = session
        self.events = events
        self.on_failure = on_failure
        self._task: Optional[asyncio.Task] = None
        self._opened: Optional[asyncio.Future] = None
        self._open = False
        self._closing = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        """
        Open the stream and wait for the server to accept it.

        Raises:
            TransportError: If the stream cannot be established.
            ConnectionClosedError: If close() is called while opening.
        """
        await self.close()
        self._closing = False
        loop = asyncio.get_running_loop()
        self._opened = loop.create_future()
        self._task = loop.create_task(self._run(self._opened, self.session.session_id))
        await self._opened

    async def close(self) -> None:
        """Release the stream. Safe to call when already closed."""
        self._closing = True
        self._open = False
        task, self._task = self._task, None
        if self._opened is not None and not self._opened.done():
            self._opened.set_exception(ConnectionClosedError("Push channel closed while opening"))
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, opened: asyncio.Future, session_id: Optional[str]) -> None:
        try:
            async with self.transport.stream(session_id) as lines:
                if opened.done():
                    return
                self._open = True
                opened.set_result(None)
                logger.debug("push channel open")
                async for event_type, data in iter_sse_events(lines):
                    self._dispatch(event_type, data)
            raise TransportError("Push channel closed by server")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e if isinstance(e, MCPError) else TransportError(f"Push channel error: {e}")
            self._open = False
            if not opened.done():
                opened.set_exception(error)
            elif not self._closing:
                logger.warning(f"push channel failed: {error}")
                if self.on_failure is not None:
                    self.on_failure(error)

    def _dispatch(self, event_type: Optional[str], data: str) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"push frame ({event_type or 'message'}): {data}")
        try:
            frame = decode_frame(data)
        except DecodeError as e:
            logger.debug(f"skipping malformed push frame: {e}")
            self.events.emit(ERROR, e)
            return

        self.session.touch()
        if frame.type == "connection":
            if frame.session_id:
                self.session.adopt_session_id(frame.session_id)
            self.events.emit(CONNECTION_SESSION, frame.raw)
        elif frame.type == "ping":
            self.events.emit(PING, frame.raw)
        elif frame.type == "response":
            self.registry.settle(frame.envelope.id, frame.envelope)
        elif frame.type == "notification":
            self.events.emit(NOTIFICATION, frame.envelope)
        else:
            self.events.emit(MESSAGE, frame.raw)
