"""
Inbound message router.

Splits an optional leading `@name` off chat text:

    "@work1 hello"  -> session_name="work1", text="hello"
    "@work1"        -> session_name="work1", text=""
    "hello"         -> session_name=None,    text="hello"
"""

from __future__ import annotations

from ..contracts.v1.message import RoutedMessage


def parse(text: str) -> RoutedMessage:
    trimmed = (text or "").strip()
    if not trimmed.startswith("@"):
        return RoutedMessage(session_name=None, text=trimmed)

    space = trimmed.find(" ")
    if space < 0:
        return RoutedMessage(session_name=trimmed[1:], text="")

    return RoutedMessage(session_name=trimmed[1:space], text=trimmed[space + 1:].strip())
