__version__ = "0.1.0"

from .core import set_log_level
from .errors import (
    MCPError,
    TransportError,
    ProtocolError,
    DecodeError,
    RPCError,
    MCPTimeoutError,
    ConnectionClosedError,
    NotConnectedError,
)
from .envelope import Request, Result, Fault, Notification, Frame, encode_request, decode_message, decode_frame
from .events import EventEmitter
from .pending import PendingCallRegistry
from .session import ClientState, ConnectionPhase, Entitlement
from .config import ClientOptions, load_options
from .transport import HTTPTransport
from .usage import UsageSink, NullUsageSink, UsageTracker, HTTPUsageLogger
from .client import MCPClient, create_client, validate_connection_string, parse_connection_string

__all__ = [
    # Exceptions
    "MCPError",
    "TransportError",
    "ProtocolError",
    "DecodeError",
    "RPCError",
    "MCPTimeoutError",
    "ConnectionClosedError",
    "NotConnectedError",
    # Envelopes
    "Request",
    "Result",
    "Fault",
    "Notification",
    "Frame",
    "encode_request",
    "decode_message",
    "decode_frame",
    # Client
    "MCPClient",
    "ClientOptions",
    "ClientState",
    "ConnectionPhase",
    "Entitlement",
    "EventEmitter",
    "PendingCallRegistry",
    "HTTPTransport",
    "create_client",
    "load_options",
    "validate_connection_string",
    "parse_connection_string",
    # Usage telemetry
    "UsageSink",
    "NullUsageSink",
    "UsageTracker",
    "HTTPUsageLogger",
    "set_log_level",
]
