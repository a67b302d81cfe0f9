"""
turntable-client - asyncio client for Turntable rooms.

Correlated requests, broadcast events, session recovery and song search
over a single WebSocket connection.
"""

__version__ = "0.1.0"

from .client import TurntableClient
from .config import Config, load_config, ConfigError
from .connect.types import ApiVerb, Command, SessionState
from .exceptions import (
    ConnectionClosedError,
    HandshakeFailure,
    ProtocolFailure,
    SearchTimeoutError,
    TransportError,
    TurntableError,
)
from .room.models import SongResult

__all__ = [
    "__version__",
    "TurntableClient",
    "Config",
    "load_config",
    "ConfigError",
    "ApiVerb",
    "Command",
    "SessionState",
    "SongResult",
    "TurntableError",
    "TransportError",
    "ConnectionClosedError",
    "ProtocolFailure",
    "HandshakeFailure",
    "SearchTimeoutError",
]
