"""
Turntable room client.

Public facade wiring the connection, correlator, dispatcher, session and
search aggregator together, plus one method per room API call.
"""

import asyncio
import logging
from typing import Any, Optional, Union

from turntable_client.config import Config
from turntable_client.connect.correlator import MessageCorrelator, Response, TextTransport
from turntable_client.connect.dispatcher import EventDispatcher, EventHandler
from turntable_client.connect.protocol import ProtocolCodec
from turntable_client.connect.types import ApiVerb, Command, SessionState
from turntable_client.connect.ws_manager import WsManager
from turntable_client.exceptions import ConnectionClosedError, TurntableError
from turntable_client.room.models import SongResult
from turntable_client.room.search import Pages, PollingWaiter, SearchResultAggregator
from turntable_client.room.session import RoomSession, SessionSnapshot
from turntable_client.signing import random_token, sha1

logger = logging.getLogger(__name__)

DEFAULT_PLAYLIST = "default"


class TurntableClient:
    """
    Client for one Turntable room.

    Usage:
        client = TurntableClient(config)
        client.on(Command.SPEAK, handle_chat)
        await client.start()
        await client.authenticate()
        await client.speak("hello")
    """

    def __init__(self, config: Config, transport: Optional[TextTransport] = None):
        """
        Initialize client.

        Args:
            config: Validated configuration
            transport: Outbound channel override (defaults to a WsManager)
        """
        self.config = config
        self.user_id = config.turntable.user_id

        self._ws_manager: Optional[WsManager] = None
        if transport is None:
            self._ws_manager = WsManager(config)
            transport = self._ws_manager

        self._codec = ProtocolCodec(config.turntable.user_id, config.turntable.user_auth)
        self._dispatcher = EventDispatcher()
        self._correlator = MessageCorrelator(transport, self._codec, self._dispatcher)
        self._session = RoomSession(
            self._correlator.send,
            room_id=config.turntable.room_id,
            presence_interval=config.session.presence_interval,
        )
        self._search = SearchResultAggregator(PollingWaiter(config.search.poll_interval))

        # Internal state handlers first so user handlers see updated state
        self._session.register(self._dispatcher)
        self._search.register(self._dispatcher)
        self._correlator.set_session_expired_callback(self._session.on_session_expired)

        if self._ws_manager:
            self._ws_manager.on_frame(self._correlator.on_frame)
            self._ws_manager.on_connected(self.on_transport_ready)
            self._ws_manager.on_disconnected(self.on_transport_closed)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Start the presence keep-alive and open the connection."""
        self._session.start()
        if self._ws_manager:
            await self._ws_manager.start()

    async def stop(self) -> None:
        """Close the connection and reject every outstanding request."""
        await self._session.stop()
        if self._ws_manager:
            await self._ws_manager.stop()
        self._correlator.fail_all(ConnectionClosedError("Client stopped"))
        await self._dispatcher.drain()

    def on_transport_ready(self) -> None:
        """Transport opened."""
        self._session.on_transport_ready()

    def on_transport_closed(self) -> None:
        """Transport closed: nothing pending can be answered any more."""
        self._correlator.fail_all(ConnectionClosedError())

    async def on_frame(self, data: str) -> None:
        """Feed one inbound frame (for custom transports)."""
        await self._correlator.on_frame(data)

    async def authenticate(self) -> None:
        """
        Run the handshake (or wait for the one in flight).

        Raises:
            HandshakeFailure: A handshake step failed
        """
        await self._session.authenticate()

    async def wait_until_authenticated(self, timeout: Optional[float] = None) -> None:
        """Wait for the handshake the transport started on open."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while not self._session.is_authenticated:
            if self._session.is_handshaking:
                await self._session.authenticate()
                continue
            if deadline is not None and loop.time() >= deadline:
                raise asyncio.TimeoutError("Timed out waiting for authentication")
            await asyncio.sleep(0.05)

    # -------------------------------------------------------------------------
    # Events and state
    # -------------------------------------------------------------------------

    def on(self, command: Union[Command, str], handler: EventHandler) -> None:
        """Register a handler for a broadcast command."""
        self._dispatcher.on(command, handler)

    async def send(self, verb: Union[ApiVerb, str], payload: Optional[dict] = None) -> Response:
        """Send any API request and wait for its reply."""
        return await self._correlator.send(verb, payload)

    @property
    def session(self) -> SessionSnapshot:
        return self._session.snapshot()

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def room_id(self) -> Optional[str]:
        return self._session.room_id

    @property
    def current_dj_id(self) -> Optional[str]:
        return self._session.current_dj_id

    @property
    def current_song_id(self) -> Optional[str]:
        return self._session.current_song_id

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    async def update_presence(self) -> Response:
        return await self._session.update_presence()

    async def set_bot(self) -> Response:
        return await self._session.set_bot()

    async def join(self, room_id: str) -> Response:
        return await self._session.join(room_id)

    async def leave(self) -> Response:
        return await self.send(ApiVerb.ROOM_DEREGISTER)

    async def room_info(self) -> Response:
        return await self._session.room_info()

    # -------------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------------

    async def speak(self, text: str) -> Response:
        return await self.send(ApiVerb.ROOM_SPEAK, {"roomid": self.room_id, "text": text})

    async def pm(self, text: str, receiver_id: str) -> Response:
        return await self.send(ApiVerb.PM_SEND, {"receiverid": receiver_id, "text": text})

    async def pm_history(self, receiver_id: str) -> Response:
        return await self.send(ApiVerb.PM_HISTORY, {"receiverid": receiver_id})

    async def fan(self, dj_id: str) -> Response:
        return await self.send(ApiVerb.USER_BECOME_FAN, {"djid": dj_id})

    async def unfan(self, dj_id: str) -> Response:
        return await self.send(ApiVerb.USER_REMOVE_FAN, {"djid": dj_id})

    # -------------------------------------------------------------------------
    # Moderation
    # -------------------------------------------------------------------------

    async def add_moderator(self, user_id: str) -> Response:
        return await self.send(
            ApiVerb.ROOM_ADD_MODERATOR, {"roomid": self.room_id, "target_userid": user_id}
        )

    async def remove_moderator(self, user_id: str) -> Response:
        return await self.send(
            ApiVerb.ROOM_REM_MODERATOR, {"roomid": self.room_id, "target_userid": user_id}
        )

    async def boot_user(self, user_id: str, reason: str) -> Response:
        return await self.send(
            ApiVerb.ROOM_BOOT_USER,
            {"roomid": self.room_id, "target_userid": user_id, "reason": reason},
        )

    # -------------------------------------------------------------------------
    # DJing
    # -------------------------------------------------------------------------

    async def add_dj(self) -> Response:
        return await self.send(ApiVerb.ROOM_ADD_DJ, {"roomid": self.room_id})

    async def remove_dj(self, dj_id: Optional[str] = None) -> Response:
        """Step down, or remove another DJ when dj_id is given."""
        return await self.send(
            ApiVerb.ROOM_REM_DJ, {"roomid": self.room_id, "djid": dj_id or self.user_id}
        )

    async def skip_song(self) -> Response:
        return await self.send(
            ApiVerb.ROOM_STOP_SONG,
            {
                "roomid": self.room_id,
                "djid": self.current_dj_id,
                "current_song": self.current_song_id,
            },
        )

    async def vote(self, val: str) -> Optional[Response]:
        """
        Vote on the current song.

        Args:
            val: "up" or "down"

        Returns:
            Reply, or None if nothing is playing
        """
        if val not in ("up", "down"):
            raise ValueError(f"Invalid vote: {val!r}")
        if not self.current_song_id:
            return None

        vh = sha1(f"{self.room_id}{val}{self.current_song_id}")
        return await self.send(
            ApiVerb.ROOM_VOTE,
            {
                "roomid": self.room_id,
                "val": val,
                "vh": vh,
                "th": random_token(),
                "ph": random_token(),
            },
        )

    async def vote_up(self) -> Optional[Response]:
        return await self.vote("up")

    async def vote_down(self) -> Optional[Response]:
        return await self.vote("down")

    async def snag(self) -> Optional[Response]:
        """
        Snag the current song (heart animation) and add it to the default playlist.

        Returns:
            The playlist.add reply, or None if nothing is playing
        """
        if not self.current_song_id:
            return None

        sh = random_token()
        fh = random_token()
        vh = sha1(
            "/".join(
                [
                    self.user_id,
                    str(self.current_dj_id),
                    self.current_song_id,
                    str(self.room_id),
                    "queue",
                    "board",
                    "false",
                    "false",
                    sh,
                ]
            )
        )

        await self.send(
            ApiVerb.SNAG_ADD,
            {
                "djid": self.current_dj_id,
                "songid": self.current_song_id,
                "roomid": self.room_id,
                "site": "queue",
                "location": "board",
                "in_queue": "false",
                "blocked": "false",
                "client": "web",
                "sh": sh,
                "fh": fh,
                "vh": vh,
            },
        )
        return await self.playlist_add()

    # -------------------------------------------------------------------------
    # Playlists
    # -------------------------------------------------------------------------

    async def playlist_add(
        self,
        song_id: Optional[str] = None,
        playlist_name: str = DEFAULT_PLAYLIST,
        index: int = -1,
    ) -> Response:
        """Add a song (the current one by default) to a playlist."""
        return await self.send(
            ApiVerb.PLAYLIST_ADD,
            {
                "playlist_name": playlist_name,
                "song_dict": {"fileid": song_id or self.current_song_id},
                "index": index,
            },
        )

    async def playlist_remove(self, index: int = 0, playlist_name: str = DEFAULT_PLAYLIST) -> Response:
        return await self.send(
            ApiVerb.PLAYLIST_REMOVE, {"playlist_name": playlist_name, "index": index}
        )

    async def playlist_all(self, playlist_name: str = DEFAULT_PLAYLIST) -> Response:
        return await self.send(ApiVerb.PLAYLIST_ALL, {"playlist_name": playlist_name})

    async def playlist_list_all(self) -> Response:
        return await self.send(ApiVerb.PLAYLIST_LIST_ALL)

    async def playlist_create(self, playlist_name: str = DEFAULT_PLAYLIST) -> Response:
        return await self.send(ApiVerb.PLAYLIST_CREATE, {"playlist_name": playlist_name})

    async def playlist_delete(self, playlist_name: str = DEFAULT_PLAYLIST) -> Response:
        return await self.send(ApiVerb.PLAYLIST_DELETE, {"playlist_name": playlist_name})

    async def playlist_switch(self, playlist_name: str = DEFAULT_PLAYLIST) -> Response:
        return await self.send(ApiVerb.PLAYLIST_SWITCH, {"playlist_name": playlist_name})

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    async def start_song_search(self, query: str) -> Response:
        return await self.send(ApiVerb.FILE_SEARCH, {"query": query})

    def get_song_search_results(self, query: str) -> Optional[Pages]:
        """Pages received so far for query; None means nothing has arrived yet."""
        return self._search.get_pages(query)

    async def wait_for_song_search_results(
        self,
        query: str,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> Pages:
        """
        Wait for the first page of results for query.

        Raises:
            SearchTimeoutError: Nothing arrived in time
        """
        if timeout is None:
            timeout = self.config.search.timeout
        return await self._search.wait_for_pages(query, timeout, poll_interval)

    async def search_for_songs(self, query: str, timeout: Optional[float] = None) -> Pages:
        """
        Start a search and return all pages known once the first one lands.

        The search request's own reply is not awaited; results arrive as
        search_complete broadcasts.
        """
        request = asyncio.ensure_future(self.start_song_search(query))
        request.add_done_callback(_log_search_request_failure)
        return await self.wait_for_song_search_results(query, timeout)

    async def quick_add_song(self, query: str, playlist_name: str = DEFAULT_PLAYLIST) -> SongResult:
        """
        Search and put the top result at the front of a playlist.

        Raises:
            SearchTimeoutError: No results arrived
            LookupError: The search returned no songs
        """
        pages = await self.search_for_songs(query)
        if not pages or not pages[0]:
            raise LookupError(f"No songs found for {query!r}")

        song = pages[0][0]
        await self.playlist_add(song.id, playlist_name, 0)
        logger.info(f"Queued {song.artist} - {song.title} on {playlist_name}")
        return song


def _log_search_request_failure(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if isinstance(exc, TurntableError):
        logger.warning(f"Song search request failed: {exc}")
    elif exc is not None:
        logger.error(f"Song search request error: {exc}")
