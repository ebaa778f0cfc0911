from __future__ import annotations

import time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class IncomingMessage(BaseModel):
    """Text received from a chat channel, produced once by an adapter."""

    channel_id: str  # "imessage", "telegram", ...
    text: str
    sender: str  # channel-specific reply address
    timestamp: float = Field(default_factory=time.time)

    model_config = ConfigDict(extra="forbid", frozen=True)


class RoutedMessage(BaseModel):
    """Inbound text split into an optional `@name` target and the remainder."""

    session_name: Optional[str] = None  # None routes to the most recent session
    text: str = ""

    model_config = ConfigDict(extra="forbid", frozen=True)
