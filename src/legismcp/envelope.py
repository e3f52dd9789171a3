"""
JSON-RPC envelopes and push-channel frames.

Outgoing requests are plain JSON-RPC 2.0 objects:

    {"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {}}

Incoming messages are one of Result, Fault or Notification. The push channel
wraps them in frames tagged with a ``type`` field:

    {"type": "connection", "sessionId": "abc"}
    {"type": "ping"}
    {"type": "response", "id": 2, "result": {...}}
    {"type": "notification", "method": "notifications/progress", "params": {...}}

A response frame may carry its envelope inline (as above) or nested under
``message``.
"""

import json
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import DecodeError, RPCError

# JSON-RPC 2.0 version string
JSONRPC_VERSION = "2.0"

FRAME_TYPES = ("connection", "ping", "response", "notification")

RequestId = Union[int, str]


class Request(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: RequestId
    method: str
    params: dict[str, Any] = Field(default_factory=dict)


class Result(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[RequestId] = None
    value: Any = None


class Fault(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[RequestId] = None
    code: int = -1
    message: str = "Unknown error"
    data: Any = None

    def to_exception(self) -> RPCError:
        return RPCError(self.code, self.message, self.data)


class Notification(BaseModel):
    model_config = ConfigDict(frozen=True)

    topic: str
    payload: Any = None


Envelope = Union[Request, Result, Fault, Notification]


class Frame(BaseModel):
    """A decoded push-channel frame."""
    model_config = ConfigDict(frozen=True)

    type: str
    session_id: Optional[str] = None
    envelope: Optional[Union[Result, Fault, Notification]] = None
    raw: dict[str, Any] = Field(default_factory=dict)


def normalize_id(id_value: Any) -> Any:
    """
    Normalize a JSON-RPC ID for consistent dictionary key usage.

    Numeric IDs are converted to strings so that 1 (int) and 1.0 (float)
    both become "1" and match in dictionary lookups.
    """
    if isinstance(id_value, bool):
        return id_value
    if isinstance(id_value, float):
        return f"{id_value:.15g}"
    if isinstance(id_value, int):
        return str(id_value)
    return id_value


def encode_request(request: Request) -> dict[str, Any]:
    """Wire representation of a request."""
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": request.id,
        "method": request.method,
        "params": dict(request.params),
    }


def dumps(message: dict[str, Any]) -> str:
    return json.dumps(message, separators=(',', ':'))


def _check_id(message: dict[str, Any]) -> Any:
    id_value = message.get("id")
    if not (id_value is None or isinstance(id_value, (str, int, float))) or isinstance(id_value, bool):
        raise DecodeError(f"Invalid JSON-RPC id type: {type(id_value).__name__}", message)
    if isinstance(id_value, float) and id_value.is_integer():
        return int(id_value)
    return id_value


def decode_message(message: Any) -> Union[Result, Fault, Notification]:
    """
    Parse a JSON-RPC message into a Result, Fault or Notification.

    Raises:
        DecodeError: If the message structure is invalid.
    """
    if isinstance(message, (str, bytes)):
        try:
            message = json.loads(message)
        except ValueError as e:
            raise DecodeError(f"Invalid JSON: {e}", message) from e

    if not isinstance(message, dict):
        raise DecodeError(f"Expected JSON object, got {type(message).__name__}", message)

    version = message.get("jsonrpc")
    if version is not None and version != JSONRPC_VERSION:
        raise DecodeError(f"Invalid jsonrpc version: {version!r}", message)

    has_result = "result" in message
    has_error = "error" in message

    if has_result and has_error:
        raise DecodeError("Invalid JSON-RPC response: cannot have both 'result' and 'error'", message)

    if has_error:
        error = message["error"]
        if isinstance(error, dict):
            code = error.get("code", -1)
            return Fault(
                id=_check_id(message),
                code=code if isinstance(code, int) else -1,
                message=str(error.get("message", "Unknown error")),
                data=error.get("data"),
            )
        return Fault(id=_check_id(message), message=str(error))

    if has_result:
        return Result(id=_check_id(message), value=message["result"])

    if "method" in message:
        method = message["method"]
        if not isinstance(method, str):
            raise DecodeError("Notification method must be a string", message)
        return Notification(topic=method, payload=message.get("params", {}))

    raise DecodeError("Invalid JSON-RPC message: must have 'method', 'result', or 'error'", message)


def decode_frame(data: Any) -> Frame:
    """
    Parse one push-channel frame.

    Raises:
        DecodeError: On invalid JSON, a missing ``type`` or a malformed body.
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as e:
            raise DecodeError(f"Failed to parse push message: {e}", data) from e

    if not isinstance(data, dict):
        raise DecodeError(f"Expected JSON object, got {type(data).__name__}", data)

    frame_type = data.get("type")
    if not isinstance(frame_type, str):
        raise DecodeError("Push message missing 'type'", data)

    if frame_type == "connection":
        session_id = data.get("sessionId")
        if session_id is not None and not isinstance(session_id, str):
            raise DecodeError("Connection frame sessionId must be a string", data)
        return Frame(type=frame_type, session_id=session_id, raw=data)

    if frame_type == "response":
        body = data.get("message") if isinstance(data.get("message"), dict) else data
        envelope = decode_message(body)
        if isinstance(envelope, Notification):
            raise DecodeError("Response frame carries no result or error", data)
        return Frame(type=frame_type, envelope=envelope, raw=data)

    if frame_type == "notification":
        topic = data.get("method") or data.get("topic") or "notification"
        if not isinstance(topic, str):
            raise DecodeError("Notification topic must be a string", data)
        if "params" in data:
            payload = data["params"]
        elif "payload" in data:
            payload = data["payload"]
        else:
            payload = {k: v for k, v in data.items() if k not in ("type", "method", "topic", "jsonrpc")}
        return Frame(type=frame_type, envelope=Notification(topic=topic, payload=payload), raw=data)

    return Frame(type=frame_type, raw=data)
