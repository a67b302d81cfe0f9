"""
Room session state machine.

Runs the join handshake, recovers from server-side session loss, keeps
presence alive, and tracks who is playing what.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from turntable_client.connect.dispatcher import EventDispatcher
from turntable_client.connect.types import ApiVerb, Command, SessionState
from turntable_client.exceptions import HandshakeFailure, TurntableError

from .models import NowPlaying

logger = logging.getLogger(__name__)

DEFAULT_PRESENCE_INTERVAL = 10.0  # seconds

# Correlated send primitive: (verb, payload) -> reply
SendCallable = Callable[[Union[ApiVerb, str], Optional[dict]], Awaitable[dict[str, Any]]]


@dataclass
class SessionSnapshot:
    """Point-in-time view of the session."""

    state: SessionState
    room_id: Optional[str] = None
    current_dj_id: Optional[str] = None
    current_song_id: Optional[str] = None


class RoomSession:
    """
    Owns the logical session on top of the correlated connection.

    State flow: UNAUTHENTICATED -> AUTHENTICATING -> AUTHENTICATED. The
    handshake (presence, bot flag, join, room info) runs when the transport
    opens and again whenever the server reports no session. Only one
    handshake runs at a time; a failed one leaves the state at
    AUTHENTICATING until the next trigger retries it.
    """

    def __init__(
        self,
        send: SendCallable,
        room_id: str,
        presence_interval: float = DEFAULT_PRESENCE_INTERVAL,
    ):
        """
        Initialize session.

        Args:
            send: Correlated request primitive
            room_id: Room to join during the handshake
            presence_interval: Seconds between presence keep-alives
        """
        self._send = send
        self._target_room_id = room_id
        self._presence_interval = presence_interval

        self.state = SessionState.UNAUTHENTICATED
        self.room_id: Optional[str] = None
        self.current_dj_id: Optional[str] = None
        self.current_song_id: Optional[str] = None

        self._handshake_task: Optional[asyncio.Task[None]] = None
        self._presence_task: Optional[asyncio.Task[None]] = None
        self._presence_requests: set[asyncio.Task[Any]] = set()

    def register(self, dispatcher: EventDispatcher) -> None:
        """Subscribe to the broadcasts that move now-playing state."""
        dispatcher.on(Command.NEW_SONG, self.handle_new_song)
        dispatcher.on(Command.NO_SONG, self.handle_no_song)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            room_id=self.room_id,
            current_dj_id=self.current_dj_id,
            current_song_id=self.current_song_id,
        )

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    @property
    def is_handshaking(self) -> bool:
        """True while a handshake is in flight."""
        return self._handshake_task is not None and not self._handshake_task.done()

    # -------------------------------------------------------------------------
    # Handshake requests
    # -------------------------------------------------------------------------

    async def update_presence(self) -> dict[str, Any]:
        return await self._send(ApiVerb.PRESENCE_UPDATE, {"status": "available"})

    async def set_bot(self) -> dict[str, Any]:
        return await self._send(ApiVerb.USER_SET_BOT, None)

    async def join(self, room_id: str) -> dict[str, Any]:
        return await self._send(ApiVerb.ROOM_REGISTER, {"roomid": room_id})

    async def room_info(self) -> dict[str, Any]:
        return await self._send(ApiVerb.ROOM_INFO, {"roomid": self.room_id or self._target_room_id})

    # -------------------------------------------------------------------------
    # Handshake
    # -------------------------------------------------------------------------

    def on_transport_ready(self) -> None:
        """Transport opened: start a handshake."""
        logger.debug("Transport ready, authenticating")
        self.trigger_handshake()

    def on_session_expired(self) -> None:
        """Server dropped our session: start a handshake unless one is running."""
        self.trigger_handshake()

    def trigger_handshake(self) -> "asyncio.Task[None]":
        """
        Start a handshake, or return the one already in flight.

        Returns:
            Task settling when the handshake completes or fails
        """
        if self.is_handshaking:
            logger.debug("Handshake already in progress")
            assert self._handshake_task is not None
            return self._handshake_task

        self.state = SessionState.AUTHENTICATING
        task = asyncio.create_task(self._handshake())
        task.add_done_callback(self._on_handshake_done)
        self._handshake_task = task
        return task

    async def authenticate(self) -> None:
        """
        Run (or join) the handshake and wait for it.

        Raises:
            HandshakeFailure: A handshake step failed
        """
        await asyncio.shield(self.trigger_handshake())

    async def _handshake(self) -> None:
        logger.info(f"Authenticating and joining room {self._target_room_id}")

        step = "presence"
        try:
            await self.update_presence()
            step = "set_bot"
            await self.set_bot()
            step = "join"
            await self.join(self._target_room_id)
            step = "room_info"
            info = await self.room_info()
        except TurntableError as e:
            raise HandshakeFailure(step, e) from e

        if self.room_id is None:
            self.room_id = self._target_room_id
        self._apply_now_playing(NowPlaying.from_room(info.get("room")))
        self.state = SessionState.AUTHENTICATED
        logger.info(
            f"Joined room {self.room_id} (dj={self.current_dj_id}, song={self.current_song_id})"
        )

    def _on_handshake_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"{exc}")

    # -------------------------------------------------------------------------
    # Broadcast handlers
    # -------------------------------------------------------------------------

    def handle_new_song(self, message: dict[str, Any]) -> None:
        """newsong: a DJ started a song."""
        self._apply_now_playing(NowPlaying.from_room(message.get("room")))
        logger.debug(f"Now playing {self.current_song_id} (dj={self.current_dj_id})")

    def handle_no_song(self, message: dict[str, Any]) -> None:
        """nosong: nothing is playing."""
        self._apply_now_playing(NowPlaying())
        logger.debug("Nothing playing")

    def _apply_now_playing(self, now_playing: NowPlaying) -> None:
        self.current_dj_id = now_playing.dj_id
        self.current_song_id = now_playing.song_id

    # -------------------------------------------------------------------------
    # Presence keep-alive
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic presence keep-alive."""
        if self._presence_task and not self._presence_task.done():
            return
        self._presence_task = asyncio.create_task(self._presence_loop())

    async def stop(self) -> None:
        """Cancel the keep-alive and any running handshake."""
        tasks = [t for t in (self._presence_task, self._handshake_task) if t and not t.done()]
        tasks.extend(t for t in self._presence_requests if not t.done())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._presence_task = None
        self._presence_requests.clear()

    async def _presence_loop(self) -> None:
        while True:
            await asyncio.sleep(self._presence_interval)
            # One request per tick; ticks never wait for replies
            request = asyncio.create_task(self._send_presence())
            self._presence_requests.add(request)
            request.add_done_callback(self._presence_requests.discard)

    async def _send_presence(self) -> None:
        try:
            await self.update_presence()
        except TurntableError as e:
            logger.debug(f"Presence update failed: {e}")
