"""
Request/response correlation over a single multiplexed connection.

Assigns message ids to outbound requests and routes inbound messages either
to the caller awaiting that id or to the event dispatcher.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Union

from turntable_client.exceptions import ConnectionClosedError, ProtocolFailure, TransportError

from .dispatcher import EventDispatcher
from .protocol import DecodedMessage, FrameKind, ProtocolCodec
from .types import ApiVerb, BroadcastEvent

logger = logging.getLogger(__name__)

Response = dict[str, Any]


class TextTransport(Protocol):
    """Anything that can write a text frame to the server."""

    async def send_text(self, data: str) -> None: ...


@dataclass
class PendingRequest:
    """An outbound request waiting for its reply."""

    msg_id: int
    verb: str
    future: "asyncio.Future[Response]"
    created_at: float = field(default_factory=time.monotonic)


class MessageCorrelator:
    """
    Owns the pending-request table for one connection.

    Every request gets a strictly increasing id. A reply settles exactly the
    request carrying its id; anything else goes to the dispatcher.
    """

    def __init__(
        self,
        transport: TextTransport,
        codec: ProtocolCodec,
        dispatcher: EventDispatcher,
        on_session_expired: Optional[Callable[[], None]] = None,
    ):
        """
        Initialize correlator.

        Args:
            transport: Outbound text channel
            codec: Wire codec
            dispatcher: Receives every message not answering a pending request
            on_session_expired: Called when the server reports no session
        """
        self._transport = transport
        self._codec = codec
        self._dispatcher = dispatcher
        self._on_session_expired = on_session_expired
        self._pending: dict[int, PendingRequest] = {}
        self._last_msg_id = 0

    def set_session_expired_callback(self, callback: Callable[[], None]) -> None:
        """Register the handler for the no-session signal."""
        self._on_session_expired = callback

    @property
    def pending_count(self) -> int:
        """Number of requests still awaiting a reply."""
        return len(self._pending)

    @property
    def last_msg_id(self) -> int:
        """Most recently assigned message id (0 if none yet)."""
        return self._last_msg_id

    def _next_msg_id(self) -> int:
        self._last_msg_id += 1
        return self._last_msg_id

    async def send(self, verb: Union[ApiVerb, str], payload: Optional[dict] = None) -> Response:
        """
        Send a request and wait for its reply.

        Args:
            verb: API verb
            payload: Verb-specific fields

        Returns:
            The reply message dict (success=true)

        Raises:
            ProtocolFailure: Server replied with success=false
            TransportError: Write failed or connection closed before the reply
        """
        api = verb.value if isinstance(verb, ApiVerb) else verb
        msg_id = self._next_msg_id()
        future: "asyncio.Future[Response]" = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = PendingRequest(msg_id=msg_id, verb=api, future=future)

        frame = self._codec.encode_request(msg_id, api, payload)
        try:
            try:
                await self._transport.send_text(frame)
            except TransportError:
                raise
            except Exception as e:
                raise TransportError(f"Failed to send {api}: {e}") from e

            logger.debug(f"Sent {api} (msgid={msg_id})")
            return await future
        finally:
            # Settled, failed to write, or cancelled by the caller
            self._pending.pop(msg_id, None)

    async def on_frame(self, data: str) -> None:
        """Route every message carried by one inbound frame."""
        for message in self._codec.decode_frame(data):
            await self._route(message)

    async def _route(self, message: DecodedMessage) -> None:
        if message.kind == FrameKind.HEARTBEAT:
            try:
                await self._transport.send_text(self._codec.encode_heartbeat(message.raw))
            except TransportError as e:
                logger.warning(f"Failed to answer heartbeat: {e}")
            return

        if message.kind == FrameKind.NO_SESSION:
            logger.info("Server reported no session")
            if self._on_session_expired:
                self._on_session_expired()
            return

        if message.kind == FrameKind.RESPONSE and message.msg_id is not None:
            pending = self._pending.pop(message.msg_id, None)
            if pending is not None:
                self._settle(pending, message)
                return
            logger.debug(f"No pending request for msgid={message.msg_id}")

        self._dispatcher.dispatch(BroadcastEvent(name=message.command, data=message.data))

    def _settle(self, pending: PendingRequest, message: DecodedMessage) -> None:
        if pending.future.done():
            return
        elapsed_ms = (time.monotonic() - pending.created_at) * 1000
        if message.success:
            logger.debug(f"{pending.verb} (msgid={pending.msg_id}) ok in {elapsed_ms:.0f}ms")
            pending.future.set_result(message.data)
        else:
            logger.debug(f"{pending.verb} (msgid={pending.msg_id}) failed: {message.error}")
            pending.future.set_exception(ProtocolFailure(message.error, pending.verb))

    def fail_all(self, exc: Optional[BaseException] = None) -> int:
        """
        Reject every pending request and clear the table.

        Args:
            exc: Error to raise into callers (ConnectionClosedError by default)

        Returns:
            Number of requests rejected
        """
        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            if not request.future.done():
                request.future.set_exception(exc or ConnectionClosedError())
        if pending:
            logger.warning(f"Rejected {len(pending)} pending request(s): connection closed")
        return len(pending)
