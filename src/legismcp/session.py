"""
Session state and the initialize handshake.

The handshake must finish before the push channel opens, because the
stream-open request carries the session id it returns.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict

from .errors import ProtocolError, RPCError

logger = logging.getLogger('legismcp')


class ConnectionPhase(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class Entitlement(BaseModel):
    """Subscription tier and usage figures returned at handshake time."""
    model_config = ConfigDict(frozen=True)

    tier: Optional[str] = None
    call_limit: Optional[int] = None
    calls_used: Optional[int] = None

    @classmethod
    def from_result(cls, result: dict[str, Any]) -> Optional["Entitlement"]:
        fields = {
            'tier': result.get("subscriptionTier"),
            'call_limit': result.get("usageLimit"),
            'calls_used': result.get("monthlyUsage"),
        }
        if all(v is None for v in fields.values()):
            return None
        return cls(**fields)


class ClientState(BaseModel):
    phase: ConnectionPhase = ConnectionPhase.IDLE
    session_id: Optional[str] = None
    entitlement: Optional[Entitlement] = None
    last_activity_at: Optional[datetime] = None

    def snapshot(self) -> "ClientState":
        return self.model_copy(deep=True)


class SessionManager:
    """Performs the handshake and tracks the session id used on the wire."""

    # MCP Protocol version we implement
    PROTOCOL_VERSION = "2024-11-05"

    CAPABILITIES = {"tools": True, "resources": True, "prompts": True}

    def __init__(self, state: ClientState, client_name: str, client_version: str) -> None:
        self.state = state
        self.client_name = client_name
        self.client_version = client_version
        self.session_id: Optional[str] = None
        self.entitlement: Optional[Entitlement] = None
        self.init_result: Optional[dict[str, Any]] = None

    def handshake_params(self) -> dict[str, Any]:
        return {
            "protocolVersion": self.PROTOCOL_VERSION,
            "capabilities": dict(self.CAPABILITIES),
            "clientInfo": {
                "name": self.client_name,
                "version": self.client_version
            }
        }

    async def initialize(self, call: Callable[[str, dict[str, Any]], Awaitable[Any]]) -> dict[str, Any]:
        """
        Run the initialize handshake through ``call`` and record its result.

        The session id and entitlement are held here until commit() copies
        them into the client state.

        Raises:
            ProtocolError: If the server rejects the handshake or returns a
                          malformed result.
        """
        try:
            result = await call("initialize", self.handshake_params())
        except RPCError as e:
            raise ProtocolError(f"Initialize failed: {e.message}") from e

        if not isinstance(result, dict):
            raise ProtocolError(f"Initialize result must be a dict, got {type(result).__name__}")

        session_id = result.get("sessionId")
        if session_id is not None:
            if not isinstance(session_id, str) or not session_id:
                raise ProtocolError("Initialize result sessionId must be a non-empty string")
            self.session_id = session_id

        try:
            self.entitlement = Entitlement.from_result(result)
        except ValueError as e:
            raise ProtocolError(f"Invalid entitlement in initialize result: {e}") from e
        self.init_result = result
        return result

    def commit(self) -> None:
        self.state.session_id = self.session_id
        self.state.entitlement = self.entitlement

    def adopt_session_id(self, session_id: Optional[str]) -> None:
        """Switch to a session id announced by the server."""
        if not session_id or session_id == self.session_id:
            return
        logger.debug(f"session id changed to {session_id}")
        self.session_id = session_id
        if self.state.phase is ConnectionPhase.CONNECTED:
            self.state.session_id = session_id

    def touch(self) -> None:
        self.state.last_activity_at = datetime.now(timezone.utc)

    def detach(self) -> None:
        """Drop the session from the client state but keep its id for teardown."""
        self.state.session_id = None
        self.state.entitlement = None

    def clear(self) -> None:
        self.session_id = None
        self.entitlement = None
        self.init_result = None
        self.state.session_id = None
        self.state.entitlement = None
