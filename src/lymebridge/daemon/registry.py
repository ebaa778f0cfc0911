"""
Session registry.

Two maps over the same Session objects:
- by_fd: every open connection, pending or named
- by_name: named sessions only

Invariants: at most one session per name; every named session sits in both
maps; the most-recent pointer is None or a currently registered name.
Only the control loop mutates the registry.
"""

from __future__ import annotations

import re
from typing import Dict, FrozenSet, Optional

from .session import Session, SessionState

_NAME_RE = re.compile(r"^\S+$")


class RegistrationConflict(Exception):
    """Name already taken (or otherwise unusable); the connection stays pending."""


class SessionRegistry:
    def __init__(self) -> None:
        self._by_fd: Dict[int, Session] = {}
        self._by_name: Dict[str, Session] = {}
        self._most_recent: Optional[str] = None

    def __len__(self) -> int:
        return len(self._by_fd)

    @property
    def most_recent(self) -> Optional[str]:
        return self._most_recent

    def add_pending(self, session: Session) -> None:
        self._by_fd[session.fd] = session

    def get_by_fd(self, fd: int) -> Optional[Session]:
        return self._by_fd.get(fd)

    def get(self, name: str) -> Optional[Session]:
        return self._by_name.get(name)

    def all_sessions(self) -> list:
        return list(self._by_fd.values())

    def names(self) -> FrozenSet[str]:
        return frozenset(self._by_name)

    def register(self, session: Session, name: str, channel: str) -> None:
        """Promote a pending session under `name` and make it the most recent."""
        if session.state is SessionState.NAMED:
            raise RegistrationConflict(f"Session already registered as '{session.name}'")
        if session.fd not in self._by_fd:
            raise RegistrationConflict("Connection is not open")
        name = str(name or "")
        if not _NAME_RE.match(name):
            raise RegistrationConflict("Session name must be non-empty and contain no whitespace")
        if name in self._by_name:
            raise RegistrationConflict(f"Session name '{name}' already taken")
        session.promote(name, str(channel or ""))
        self._by_name[name] = session
        self._most_recent = name

    def mark_most_recent(self, name: str) -> None:
        if name in self._by_name:
            self._most_recent = name

    def remove(self, session: Session) -> None:
        """Drop a session from both maps; re-point most-recent if it was this one."""
        self._by_fd.pop(session.fd, None)
        if session.name and self._by_name.get(session.name) is session:
            del self._by_name[session.name]
        if self._most_recent is not None and self._most_recent not in self._by_name:
            self._most_recent = self._pick_most_recent()

    def _pick_most_recent(self) -> Optional[str]:
        if not self._by_name:
            return None
        return max(self._by_name.values(), key=lambda s: s.last_active).name

    def clear(self) -> None:
        self._by_fd.clear()
        self._by_name.clear()
        self._most_recent = None
