from __future__ import annotations

from .message import IncomingMessage, RoutedMessage
from .wire import (
    AckMessage,
    ClientMessage,
    DeliverMessage,
    DisconnectMessage,
    ErrorMessage,
    ProtocolError,
    RegisterMessage,
    ResponseMessage,
    ServerMessage,
    decode_client_message,
    decode_server_message,
    encode_line,
)

__all__ = [
    "AckMessage",
    "ClientMessage",
    "DeliverMessage",
    "DisconnectMessage",
    "ErrorMessage",
    "IncomingMessage",
    "ProtocolError",
    "RegisterMessage",
    "ResponseMessage",
    "RoutedMessage",
    "ServerMessage",
    "decode_client_message",
    "decode_server_message",
    "encode_line",
]
