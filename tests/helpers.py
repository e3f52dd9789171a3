"""Fakes shared by the client tests."""

import asyncio
import inspect
import json
from contextlib import asynccontextmanager

from legismcp.errors import TransportError

HANDSHAKE_RESULT = {
    "sessionId": "abc",
    "subscriptionTier": "pro",
    "usageLimit": 1000,
    "monthlyUsage": 12,
    "protocolVersion": "2024-11-05",
}


def result(message, value):
    return {"jsonrpc": "2.0", "id": message["id"], "result": value}


def error(message, code, text):
    return {"jsonrpc": "2.0", "id": message["id"], "error": {"code": code, "message": text}}


async def until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


class StreamFeed:
    """Scriptable push stream: frames go in, SSE lines come out."""

    def __init__(self):
        self.queue = asyncio.Queue()

    def send(self, frame):
        self.send_raw(json.dumps(frame))

    def send_raw(self, data):
        self.queue.put_nowait(f"data: {data}")
        self.queue.put_nowait("")

    def fail(self, exc=None):
        self.queue.put_nowait(exc or TransportError("stream dropped"))

    def end(self):
        self.queue.put_nowait(None)

    async def lines(self):
        while True:
            item = await self.queue.get()
            if item is None:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


class FakeTransport:
    """
    Stands in for HTTPTransport.

    ``responses`` maps a method name to a handler taking the posted message
    and returning a reply payload, an exception to raise, or an awaitable.
    Methods without a handler get an empty body (reply via push channel),
    except ``initialize`` which answers with ``handshake_result``.
    """

    def __init__(self):
        self.api_key = None
        self.posted = []
        self.post_sessions = []
        self.stream_sessions = []
        self.deleted = []
        self.feeds = []
        self.responses = {}
        self.handshake_result = dict(HANDSHAKE_RESULT)
        self.response_session_id = None
        self.open_failures = []
        self.delete_error = None
        self.closed = False

    @property
    def feed(self) -> StreamFeed:
        return self.feeds[-1]

    def posted_ids(self):
        return [m["id"] for m in self.posted]

    async def post(self, message, session_id=None):
        self.posted.append(message)
        self.post_sessions.append(session_id)
        handler = self.responses.get(message["method"])
        if handler is None:
            if message["method"] == "initialize":
                return result(message, self.handshake_result), self.response_session_id
            return None, self.response_session_id
        reply = handler(message)
        if inspect.isawaitable(reply):
            reply = await reply
        if isinstance(reply, BaseException):
            raise reply
        return reply, self.response_session_id

    @asynccontextmanager
    async def stream(self, session_id=None):
        self.stream_sessions.append(session_id)
        if self.open_failures:
            raise self.open_failures.pop(0)
        feed = StreamFeed()
        self.feeds.append(feed)
        yield feed.lines()

    async def delete_session(self, session_id):
        self.deleted.append(session_id)
        if self.delete_error is not None:
            raise self.delete_error

    async def aclose(self):
        self.closed = True


class RecordingSink:
    def __init__(self):
        self.successes = []
        self.failures = []

    def record_success(self, tool, args, result, elapsed_ms):
        self.successes.append((tool, args, result, elapsed_ms))

    def record_failure(self, tool, args, error_message, elapsed_ms):
        self.failures.append((tool, args, error_message, elapsed_ms))


class EventLog:
    def __init__(self, emitter, *names):
        self.events = []
        for name in names:
            emitter.on(name, lambda *args, name=name: self.events.append((name, args)))

    def names(self):
        return [name for name, _ in self.events]

    def args(self, name):
        return [args for n, args in self.events if n == name]
