"""Exceptions raised by the LegisMCP client."""

from typing import Any


class MCPError(Exception):
    """Base exception for MCP errors."""
    pass


class TransportError(MCPError):
    """Transport-level error (connection, I/O, non-2xx HTTP status)."""
    pass


class ProtocolError(MCPError):
    """Protocol-level error (invalid messages, handshake failures)."""
    pass


class DecodeError(ProtocolError):
    """A frame or envelope could not be parsed."""

    def __init__(self, message: str, raw: Any = None):
        self.raw = raw
        super().__init__(message)


class RPCError(MCPError):
    """JSON-RPC error returned by the server."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")


class MCPTimeoutError(MCPError, TimeoutError):
    """Timeout waiting for server response."""
    pass


class ConnectionClosedError(MCPError):
    """The call was abandoned because the client was disconnected."""
    pass


class NotConnectedError(MCPError):
    """An operation was attempted while the client was not connected."""
    pass
