"""
Wire message encoding and decoding.

Handles the socket.io 0.6 text framing used by the Turntable room service.
"""

import json
import logging
import random
import re
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Optional

logger = logging.getLogger(__name__)

FRAME_MARKER = "~m~"
HEARTBEAT_MARKER = "~h~"
NO_SESSION = "no_session"

_LENGTH_RE = re.compile(r"~m~(\d+)~m~")


class FrameKind(IntEnum):
    """Classification of a decoded inbound message."""

    HEARTBEAT = 1
    NO_SESSION = 2
    RESPONSE = 3
    EVENT = 4


@dataclass
class DecodedMessage:
    """Decoded inbound message."""

    kind: FrameKind
    msg_id: Optional[int] = None
    command: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    raw: str = ""

    @property
    def success(self) -> bool:
        return bool(self.data.get("success", False))

    @property
    def error(self) -> str:
        return str(self.data.get("err", "Unknown error"))


def make_client_id() -> str:
    """Build a client id in the format the web client uses."""
    return f"{int(time.time() * 1000)}-{random.random()}"


class ProtocolCodec:
    """
    Encodes and decodes Turntable room messages.

    Frame format: ~m~<length>~m~<payload>
    """

    def __init__(self, user_id: str, user_auth: str, client_id: Optional[str] = None):
        """
        Initialize codec.

        Args:
            user_id: Account user id sent with every request
            user_auth: Account auth token sent with every request
            client_id: Stable id for this client instance (generated if omitted)
        """
        self.user_id = user_id
        self.user_auth = user_auth
        self.client_id = client_id or make_client_id()

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    def encode_request(self, msg_id: int, verb: str, payload: Optional[dict] = None) -> str:
        """
        Encode an API request.

        Args:
            msg_id: Correlation id assigned by the caller
            verb: API verb, e.g. "room.speak"
            payload: Verb-specific fields

        Returns:
            Framed text ready to send
        """
        message: dict[str, Any] = {"api": verb}
        if payload:
            message.update(payload)
        message["msgid"] = msg_id
        message["clientid"] = self.client_id
        message["userid"] = self.user_id
        message["userauth"] = self.user_auth

        return self.pack(json.dumps(message))

    def encode_heartbeat(self, beat: str) -> str:
        """Frame a heartbeat echo (beat includes the ~h~ prefix)."""
        return self.pack(beat)

    @staticmethod
    def pack(payload: str) -> str:
        """Wrap a payload in wire framing."""
        return f"{FRAME_MARKER}{len(payload)}{FRAME_MARKER}{payload}"

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    def split_frame(self, data: str) -> list[str]:
        """
        Split one websocket frame into its framed payloads.

        A frame without framing is returned as a single payload.
        """
        if not data.startswith(FRAME_MARKER):
            return [data] if data else []

        payloads = []
        offset = 0
        while offset < len(data):
            match = _LENGTH_RE.match(data, offset)
            if not match:
                logger.warning(f"Malformed frame at offset {offset}")
                break
            start = match.end()
            length = int(match.group(1))
            payloads.append(data[start : start + length])
            offset = start + length

        return payloads

    def decode_frame(self, data: str) -> list[DecodedMessage]:
        """
        Decode a websocket frame.

        Args:
            data: Raw frame text

        Returns:
            Decoded messages; invalid payloads are dropped
        """
        messages = []
        for payload in self.split_frame(data):
            decoded = self.decode_payload(payload)
            if decoded:
                messages.append(decoded)
        return messages

    def decode_payload(self, payload: str) -> Optional[DecodedMessage]:
        """
        Decode a single unframed payload.

        Returns:
            DecodedMessage or None if invalid
        """
        if payload.startswith(HEARTBEAT_MARKER):
            return DecodedMessage(kind=FrameKind.HEARTBEAT, raw=payload)

        if payload == NO_SESSION:
            return DecodedMessage(kind=FrameKind.NO_SESSION, raw=payload)

        try:
            data = json.loads(payload)
        except ValueError as e:
            logger.warning(f"Failed to decode payload: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Unexpected payload type: {type(data).__name__}")
            return None

        msg_id = data.get("msgid")
        if not isinstance(msg_id, int) or isinstance(msg_id, bool):
            msg_id = None
        command = data.get("command")

        if command:
            return DecodedMessage(
                kind=FrameKind.EVENT, msg_id=msg_id, command=str(command), data=data, raw=payload
            )
        if msg_id is not None:
            return DecodedMessage(kind=FrameKind.RESPONSE, msg_id=msg_id, data=data, raw=payload)

        return DecodedMessage(kind=FrameKind.EVENT, data=data, raw=payload)
