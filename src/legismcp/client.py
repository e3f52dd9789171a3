"""
LegisMCP protocol client.

Requests go out as individual HTTP POSTs; replies come back either as the
POST's response body or as a ``response`` frame on the push channel,
whichever arrives first. The push channel also delivers session changes,
pings and notifications.

Usage:
    async with MCPClient(server_url="https://api.example.com/mcp", api_key="...") as client:
        tools = await client.list_tools()
        result = await client.call_tool("search_bills", {"query": "climate"})

Lifecycle:
    idle -> connecting -> connected -> (reconnecting <-> connected) -> closed

A push-channel failure while connected fails every in-flight call with
TransportError and schedules a reconnect with exponential backoff. After the
last attempt fails the client is closed, ``disconnected`` and ``connection_failed``
are emitted; call connect() to start over.
"""

import asyncio
import logging
import time
from typing import Any, Optional
from urllib.parse import urlparse

from .config import ClientOptions
from .envelope import Fault, Request, Result, decode_message, encode_request, normalize_id
from .errors import (
    ConnectionClosedError,
    DecodeError,
    MCPError,
    MCPTimeoutError,
    NotConnectedError,
    ProtocolError,
    TransportError,
)
from .events import (
    CONNECTED,
    CONNECTING,
    DISCONNECTED,
    DISCONNECTING,
    ERROR,
    INITIALIZED,
    EventEmitter,
)
from .pending import _TIMEOUT_NOT_SPECIFIED, PendingCallRegistry
from .reconnect import ReconnectPolicy
from .session import ClientState, ConnectionPhase, SessionManager
from .stream import PushChannel
from .transport import HTTPTransport
from .usage import NullUsageSink

logger = logging.getLogger('legismcp')


class MCPClient:
    """
    Model Context Protocol client over HTTP dispatch plus a push stream.

    Args:
        options: ClientOptions. Keyword arguments build one when omitted.
        transport: Request channel; defaults to HTTPTransport on options.server_url.
        usage: Usage sink notified of every settled tool call.
        events: EventEmitter to publish lifecycle events on.
    """

    def __init__(
        self,
        options: Optional[ClientOptions] = None,
        *,
        transport=None,
        usage=None,
        events: Optional[EventEmitter] = None,
        **kwargs: Any
    ) -> None:
        if options is None:
            options = ClientOptions(**kwargs)
        elif kwargs:
            options = options.model_copy(update=kwargs)
        self.options = options

        self.transport = transport or HTTPTransport(
            options.server_url,
            api_key=options.api_key,
            timeout=options.request_timeout,
            session_header=options.session_header,
        )
        self.usage = usage if usage is not None else NullUsageSink()
        if options.access_token:
            self.set_access_token(options.access_token)
        self.events = events or EventEmitter()

        self._state = ClientState()
        self._request_id = 0
        self._handshake_id = 0
        self._dispatches: set[asyncio.Task] = set()
        self._reports: set[asyncio.Task] = set()
        self._pending = PendingCallRegistry(timeout=options.request_timeout)
        self._session = SessionManager(self._state, options.client_name, options.client_version)
        self._channel = PushChannel(
            self.transport, self._pending, self._session, self.events,
            on_failure=self._handle_stream_failure,
        )
        self.reconnect_policy = ReconnectPolicy(
            self._reconnect, self.events,
            max_attempts=options.retry_attempts,
            base_delay=options.retry_delay,
            on_exhausted=self._handle_reconnect_exhausted,
        )

    # === STATE ===

    @property
    def state(self) -> ClientState:
        """A copy of the current client state."""
        return self._state.snapshot()

    @property
    def phase(self) -> ConnectionPhase:
        return self._state.phase

    @property
    def is_connected(self) -> bool:
        return self._state.phase is ConnectionPhase.CONNECTED

    @property
    def is_authenticated(self) -> bool:
        return self.is_connected and self._state.session_id is not None

    @property
    def session_id(self) -> Optional[str]:
        return self._state.session_id

    @property
    def init_result(self) -> Optional[dict[str, Any]]:
        """Full initialize response from the server."""
        return self._session.init_result if self.is_connected else None

    @property
    def usage_info(self) -> Optional[dict[str, Any]]:
        """Usage figures from the handshake, or None if any is missing."""
        entitlement = self._state.entitlement
        if entitlement is None or None in (entitlement.calls_used, entitlement.call_limit, entitlement.tier):
            return None
        return {
            'used': entitlement.calls_used,
            'limit': entitlement.call_limit,
            'tier': entitlement.tier,
        }

    @property
    def pending_calls(self) -> int:
        return len(self._pending)

    def set_api_key(self, api_key: Optional[str]) -> None:
        """Replace the bearer credential used for subsequent requests."""
        self.transport.api_key = api_key

    def set_access_token(self, token: Optional[str]) -> None:
        """Forward the caller's access token to the usage sink, if it takes one."""
        setter = getattr(self.usage, 'set_access_token', None)
        if setter is not None:
            setter(token)

    # === CONNECTION ===

    async def connect(self) -> ClientState:
        """
        Handshake, open the push channel and mark the client connected.

        No-op if already connecting or connected.

        Raises:
            MCPError: If the handshake or stream open fails. The client
                     returns to the idle phase.
        """
        if self._state.phase in (ConnectionPhase.CONNECTING, ConnectionPhase.CONNECTED):
            return self.state
        self.reconnect_policy.cancel()
        self.reconnect_policy.reset()
        try:
            await self._connect(ConnectionPhase.CONNECTING)
        except MCPError as e:
            if self._state.phase is ConnectionPhase.CONNECTING:
                self._state.phase = ConnectionPhase.IDLE
            self.events.emit(ERROR, e)
            raise
        return self.state

    async def _reconnect(self) -> None:
        await self._connect(ConnectionPhase.RECONNECTING)

    async def _connect(self, phase: ConnectionPhase) -> None:
        self._state.phase = phase
        self.events.emit(CONNECTING)
        try:
            result = await self._session.initialize(self._handshake)
            self._check_phase(phase)
            self.events.emit(INITIALIZED, result)

            await self._channel.open()
            self._check_phase(phase)
            if not self._channel.is_open:
                raise TransportError("Push channel closed during connect")
        except MCPError:
            await self._channel.close()
            raise

        self._state.phase = ConnectionPhase.CONNECTED
        self._session.commit()
        self._session.touch()
        self.reconnect_policy.reset()
        logger.info(f"connected (session {self._session.session_id})")
        self.events.emit(CONNECTED, self.state)

    def _check_phase(self, expected: ConnectionPhase) -> None:
        if self._state.phase is not expected:
            raise ConnectionClosedError("Client disconnected while connecting")

    async def disconnect(self) -> None:
        """
        Close the client. Valid from any phase.

        Pending calls fail with ConnectionClosedError. The server-side session
        is deleted on a best-effort basis.
        """
        self.events.emit(DISCONNECTING)
        self._state.phase = ConnectionPhase.CLOSED
        self.reconnect_policy.cancel()
        await self._channel.close()
        drained = self._pending.drain("Connection closed", ConnectionClosedError)
        if drained:
            logger.debug(f"failed {drained} pending calls on disconnect")
        for task in list(self._dispatches):
            task.cancel()

        await self._teardown_session()
        logger.info("disconnected")
        self.events.emit(DISCONNECTED)

    async def _teardown_session(self) -> None:
        session_id = self._session.session_id
        if session_id:
            try:
                await self.transport.delete_session(session_id)
            except Exception as e:
                logger.debug(f"session teardown failed: {e}")
        self._session.clear()

    async def aclose(self) -> None:
        """Disconnect and release the HTTP client."""
        if self._state.phase is not ConnectionPhase.CLOSED:
            await self.disconnect()
        elif self._session.session_id:
            # Closed by a failed reconnect; the server session is still open.
            await self._teardown_session()
        await self.transport.aclose()

    async def __aenter__(self) -> "MCPClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    def _handle_stream_failure(self, error: MCPError) -> None:
        if self._state.phase is not ConnectionPhase.CONNECTED:
            return
        self._state.phase = ConnectionPhase.RECONNECTING
        self._pending.drain(f"Push channel failed: {error}", TransportError)
        self.events.emit(ERROR, error)
        self.reconnect_policy.on_failure(error)

    def _handle_reconnect_exhausted(self, error: MCPError) -> None:
        self._state.phase = ConnectionPhase.CLOSED
        self._pending.drain(f"Connection failed: {error}", TransportError)
        self._session.detach()
        self.events.emit(DISCONNECTED)

    # === CALL PATH ===

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _handshake(self, method: str, params: dict[str, Any]) -> Any:
        # Handshakes are numbered apart from regular calls.
        self._handshake_id += 1
        return await self._request(f"init-{self._handshake_id}", method, params)

    async def _call(
        self,
        method: str,
        params: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = _TIMEOUT_NOT_SPECIFIED
    ) -> Any:
        if self._state.phase is not ConnectionPhase.CONNECTED:
            raise NotConnectedError("Not connected to MCP server")
        return await self._request(self._next_id(), method, params, timeout)

    async def _request(
        self,
        call_id: Any,
        method: str,
        params: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = _TIMEOUT_NOT_SPECIFIED
    ) -> Any:
        request = Request(id=call_id, method=method, params=params or {})
        future = self._pending.register(call_id, timeout)
        task = asyncio.get_running_loop().create_task(self._dispatch(request))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatches.discard)
        return await future

    async def _dispatch(self, request: Request) -> None:
        self._session.touch()
        try:
            payload, session_id = await self.transport.post(encode_request(request), self._session.session_id)
        except Exception as e:
            error = e if isinstance(e, MCPError) else TransportError(f"Dispatch failed: {e}")
            if isinstance(error, DecodeError):
                self.events.emit(ERROR, error)
            self._pending.settle(request.id, error)
            return

        self._session.adopt_session_id(session_id)
        if payload is None:
            return
        try:
            envelope = decode_message(payload)
        except DecodeError as e:
            self.events.emit(ERROR, e)
            self._pending.settle(request.id, e)
            return
        if isinstance(envelope, (Result, Fault)):
            # The POST body always answers the request that was posted.
            if envelope.id is not None and normalize_id(envelope.id) != normalize_id(request.id):
                logger.debug(f"reply to request {request.id} carries id {envelope.id}")
            self._pending.settle(request.id, envelope)

    # === MCP METHODS ===

    async def list_tools(self, timeout: Optional[float] = _TIMEOUT_NOT_SPECIFIED) -> list[dict[str, Any]]:
        """
        List available tools from the server.

        Returns:
            List of tool definitions (name, description, inputSchema).
        """
        result = await self._call("tools/list", timeout=timeout)
        return self._field(result, "tools/list", "tools")

    async def call_tool(
        self,
        name: str,
        arguments: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = _TIMEOUT_NOT_SPECIFIED
    ) -> dict[str, Any]:
        """
        Call a tool on the server and report the outcome to the usage sink.

        Returns:
            Tool result containing ``content`` and optionally ``isError``.

        Raises:
            NotConnectedError: If the client is not connected.
            RPCError: If the server returns an error.
            MCPTimeoutError: If no reply arrives in time.
            ValueError: If tool name is empty.
        """
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Tool name must be a non-empty string")
        if self._state.phase is not ConnectionPhase.CONNECTED:
            raise NotConnectedError("Not connected to MCP server")

        arguments = arguments or {}
        start = time.monotonic()
        try:
            result = await self._call("tools/call", {"name": name, "arguments": arguments}, timeout=timeout)
        except MCPError as e:
            elapsed_ms = (time.monotonic() - start) * 1000
            if isinstance(e, MCPTimeoutError) and hasattr(self.usage, 'record_timeout'):
                self._report('record_timeout', name, arguments, elapsed_ms)
            else:
                self._report('record_failure', name, arguments, str(e), elapsed_ms)
            raise
        self._report('record_success', name, arguments, result, (time.monotonic() - start) * 1000)
        return result

    async def list_resources(self, timeout: Optional[float] = _TIMEOUT_NOT_SPECIFIED) -> list[dict[str, Any]]:
        """List available resources (uri, name, description, mimeType)."""
        result = await self._call("resources/list", timeout=timeout)
        return self._field(result, "resources/list", "resources")

    async def read_resource(self, uri: str, timeout: Optional[float] = _TIMEOUT_NOT_SPECIFIED) -> dict[str, Any]:
        """Read a resource by URI."""
        if not isinstance(uri, str) or not uri.strip():
            raise ValueError("Resource URI must be a non-empty string")
        return await self._call("resources/read", {"uri": uri}, timeout=timeout)

    async def list_prompts(self, timeout: Optional[float] = _TIMEOUT_NOT_SPECIFIED) -> list[dict[str, Any]]:
        result = await self._call("prompts/list", timeout=timeout)
        return self._field(result, "prompts/list", "prompts")

    async def get_prompt(
        self,
        name: str,
        arguments: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = _TIMEOUT_NOT_SPECIFIED
    ) -> dict[str, Any]:
        """Render a prompt template with ``arguments``."""
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Prompt name must be a non-empty string")
        return await self._call("prompts/get", {"name": name, "arguments": arguments or {}}, timeout=timeout)

    async def ping(self, timeout: Optional[float] = _TIMEOUT_NOT_SPECIFIED) -> bool:
        """Return True if the server answered a ping, False otherwise."""
        if not self.is_connected:
            return False
        try:
            await self._call("ping", timeout=timeout)
            return True
        except MCPError:
            return False

    @staticmethod
    def _field(result: Any, method: str, key: str) -> list[dict[str, Any]]:
        if result is None:
            return []
        if not isinstance(result, dict):
            raise ProtocolError(f"{method} result must be a dict, got {type(result).__name__}")
        return result.get(key) or []

    def _report(self, method_name: str, *args: Any) -> None:
        try:
            outcome = getattr(self.usage, method_name)(*args)
            if asyncio.iscoroutine(outcome):
                task = asyncio.get_running_loop().create_task(outcome)
                self._reports.add(task)
                task.add_done_callback(self._report_done)
        except Exception as e:
            logger.debug(f"usage sink {method_name} failed: {e}")

    def _report_done(self, task: asyncio.Task) -> None:
        self._reports.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"usage sink failed: {task.exception()}")


# ============================================================================
# Factory Functions
# ============================================================================

def create_client(options: Optional[ClientOptions] = None, **kwargs: Any) -> MCPClient:
    """
    Create an unconnected client.

    Example:
        client = create_client(server_url="https://api.example.com/mcp", api_key="sk-...")
        await client.connect()
    """
    return MCPClient(options, **kwargs)


def validate_connection_string(connection_string: str) -> bool:
    """True if ``connection_string`` is an http(s) URL with a host."""
    try:
        parsed = urlparse(connection_string)
    except (TypeError, ValueError):
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def parse_connection_string(connection_string: str) -> dict[str, str]:
    """
    Split a connection string into server URL and path.

    Example:
        parse_connection_string("https://api.example.com/mcp")
        # {'server_url': 'https://api.example.com', 'path': '/mcp'}
    """
    if not validate_connection_string(connection_string):
        raise ValueError(f"Invalid connection string: {connection_string!r}")
    parsed = urlparse(connection_string)
    return {
        'server_url': f"{parsed.scheme}://{parsed.netloc}",
        'path': parsed.path or '/mcp',
    }
