"""
Session daemon.

- SocketServer: Unix socket + session registry (pending -> named -> closed)
- router.parse: `@name` prefix routing
- Daemon: wires channels to sessions and runs the control loop
"""

from .bridge import Daemon
from .registry import RegistrationConflict, SessionRegistry
from .session import Session, SessionState
from .socket_server import SocketServer, SocketStartError

__all__ = [
    "Daemon",
    "RegistrationConflict",
    "Session",
    "SessionRegistry",
    "SessionState",
    "SocketServer",
    "SocketStartError",
]
