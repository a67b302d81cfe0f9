"""
Turntable connection module.

Handles WebSocket transport, wire framing, request correlation and event dispatch.
"""

from .correlator import MessageCorrelator, PendingRequest
from .dispatcher import EventDispatcher
from .protocol import DecodedMessage, FrameKind, ProtocolCodec
from .types import ApiVerb, BroadcastEvent, Command, SessionState
from .ws_manager import WsManager

__all__ = [
    "ApiVerb",
    "BroadcastEvent",
    "Command",
    "SessionState",
    "MessageCorrelator",
    "PendingRequest",
    "EventDispatcher",
    "ProtocolCodec",
    "DecodedMessage",
    "FrameKind",
    "WsManager",
]
