"""
Session socket wire protocol.

Newline-delimited JSON, one object per line, discriminated by "type".

Client -> server:
    {"type": "register", "name": "<str>", "channel": "<str>"}
    {"type": "response", "text": "<str>"}
    {"type": "disconnect"}

Server -> client:
    {"type": "message", "text": "<str>", "channel": "<str>"}
    {"type": "ack", "channel": "<str>"}
    {"type": "error", "message": "<str>"}
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


LINE_TERMINATOR = "\n"


class ProtocolError(ValueError):
    """A line that is not a valid protocol message.

    The connection stays open; the peer gets an `error` reply.
    """


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


# Client -> server


class RegisterMessage(_WireModel):
    type: Literal["register"] = "register"
    name: str
    channel: str


class ResponseMessage(_WireModel):
    type: Literal["response"] = "response"
    text: str


class DisconnectMessage(_WireModel):
    type: Literal["disconnect"] = "disconnect"


# Server -> client


class DeliverMessage(_WireModel):
    type: Literal["message"] = "message"
    text: str
    channel: str


class AckMessage(_WireModel):
    type: Literal["ack"] = "ack"
    channel: str


class ErrorMessage(_WireModel):
    type: Literal["error"] = "error"
    message: str


ClientMessage = Annotated[
    Union[RegisterMessage, ResponseMessage, DisconnectMessage],
    Field(discriminator="type"),
]
ServerMessage = Annotated[
    Union[DeliverMessage, AckMessage, ErrorMessage],
    Field(discriminator="type"),
]

_CLIENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(ClientMessage)
_SERVER_ADAPTER: TypeAdapter[Any] = TypeAdapter(ServerMessage)


def encode_line(msg: BaseModel) -> bytes:
    """Encode one message as a single UTF-8 protocol line.

    json.dumps escapes embedded newlines, so the only terminator is the last byte.
    """
    payload = json.dumps(msg.model_dump(), ensure_ascii=False, separators=(",", ":"))
    return (payload + LINE_TERMINATOR).encode("utf-8")


def _decode(adapter: TypeAdapter[Any], line: Union[str, bytes]) -> Any:
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    text = line.rstrip("\r\n")
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"invalid JSON: {e.msg}") from e
    if not isinstance(obj, dict):
        raise ProtocolError("message must be a JSON object")
    if "type" not in obj:
        raise ProtocolError("missing message type")
    try:
        return adapter.validate_python(obj)
    except ValidationError as e:
        raise ProtocolError(_describe(obj, e)) from e


def _describe(obj: dict, err: ValidationError) -> str:
    for item in err.errors():
        if item.get("type") == "union_tag_invalid":
            return f"unknown message type: {obj.get('type')!r}"
        loc = ".".join(str(p) for p in item.get("loc", ())[1:])
        if loc:
            return f"invalid field {loc!r}: {item.get('msg', 'invalid')}"
    return "invalid message"


def decode_client_message(line: Union[str, bytes]) -> Union[RegisterMessage, ResponseMessage, DisconnectMessage]:
    """Parse a client line. Raises ProtocolError on anything malformed."""
    return _decode(_CLIENT_ADAPTER, line)


def decode_server_message(line: Union[str, bytes]) -> Union[DeliverMessage, AckMessage, ErrorMessage]:
    """Parse a server line. Raises ProtocolError on anything malformed."""
    return _decode(_SERVER_ADAPTER, line)
