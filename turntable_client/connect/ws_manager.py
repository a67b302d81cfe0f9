"""
WebSocket connection manager.

Handles connection lifecycle, reconnection, and raw frame delivery.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import websockets
from websockets import ClientConnection

from turntable_client.config import Config
from turntable_client.exceptions import TransportError

logger = logging.getLogger(__name__)

# Connection constants
RECV_TIMEOUT = 1.0  # seconds (for periodic checks)
INITIAL_RECONNECT_DELAY = 1.0  # seconds
MAX_RECONNECT_DELAY = 60.0  # seconds
RECONNECT_BACKOFF_MULTIPLIER = 2.0

# Inbound frame callback type
FrameHandler = Callable[[str], Awaitable[None]]


def build_url(host: str) -> str:
    """Compose the socket URL for a chat host."""
    return f"wss://{host}/socket.io/websocket"


class WsManager:
    """
    Manages the WebSocket connection to a Turntable chat server.

    Handles:
    - Connection establishment
    - Automatic reconnection with exponential backoff
    - Delivering inbound text frames to a single frame handler
    - Notifying open/close so callers can handshake or fail pending requests
    """

    def __init__(self, config: Config):
        """
        Initialize WebSocket manager.

        Args:
            config: Application configuration
        """
        self.config = config
        self.url = build_url(config.turntable.host)
        self.debug = config.logging.debug

        # Connection state
        self._ws: Optional[ClientConnection] = None
        self._is_connected = False
        self._should_run = False

        # Reconnection state
        self._reconnect_delay = INITIAL_RECONNECT_DELAY

        # Tasks
        self._receive_task: Optional[asyncio.Task[None]] = None

        # Callbacks
        self._on_frame: Optional[FrameHandler] = None
        self._on_connected: Optional[Callable[[], None]] = None
        self._on_disconnected: Optional[Callable[[], None]] = None

    def on_frame(self, handler: FrameHandler) -> None:
        """Register the handler for inbound text frames."""
        self._on_frame = handler

    def on_connected(self, callback: Callable[[], None]) -> None:
        """Register callback for successful connection."""
        self._on_connected = callback

    def on_disconnected(self, callback: Callable[[], None]) -> None:
        """Register callback for disconnection."""
        self._on_disconnected = callback

    async def start(self) -> None:
        """Start WebSocket connection loop."""
        if self._receive_task and not self._receive_task.done():
            logger.debug("WebSocket manager already running")
            return

        self._should_run = True
        self._receive_task = asyncio.create_task(self._connection_loop())
        logger.info("WebSocket manager started")

    async def stop(self) -> None:
        """Stop WebSocket connection."""
        self._should_run = False
        if self._ws:
            await self._ws.close()
        if self._receive_task:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None
        logger.info("WebSocket manager stopped")

    @property
    def is_connected(self) -> bool:
        """Check if currently connected."""
        return self._is_connected

    async def send_text(self, data: str) -> None:
        """
        Send a pre-encoded frame.

        Args:
            data: Framed text

        Raises:
            TransportError: Not connected, or the write failed
        """
        if not self._ws or not self._is_connected:
            raise TransportError("Not connected")

        if self.debug:
            logger.debug(f"> {data}")
        try:
            await self._ws.send(data)
        except websockets.ConnectionClosed as e:
            raise TransportError(f"Connection closed: {e}") from e
        except OSError as e:
            raise TransportError(f"Failed to send frame: {e}") from e

    # -------------------------------------------------------------------------
    # Connection Loop
    # -------------------------------------------------------------------------

    async def _connection_loop(self) -> None:
        """Main connection loop with reconnection logic."""
        while self._should_run:
            try:
                await self._connect_and_run()
            except Exception as e:
                logger.error(f"Connection error: {e}")

            if not self._should_run:
                break

            # Exponential backoff
            logger.info(f"Reconnecting in {self._reconnect_delay:.1f}s...")
            await asyncio.sleep(self._reconnect_delay)
            self._reconnect_delay = min(
                self._reconnect_delay * RECONNECT_BACKOFF_MULTIPLIER,
                MAX_RECONNECT_DELAY,
            )

    async def _connect_and_run(self) -> None:
        """Connect and pump inbound frames until the socket closes."""
        logger.info(f"Connecting to {self.url}...")

        try:
            async with websockets.connect(self.url) as ws:
                self._ws = ws
                self._is_connected = True
                self._reconnect_delay = INITIAL_RECONNECT_DELAY  # Reset backoff
                logger.info("Connected")

                if self._on_connected:
                    self._on_connected()

                await self._receive_loop()

        except websockets.ConnectionClosed as e:
            logger.warning(f"Connection closed: {e}")
        except (OSError, websockets.InvalidHandshake) as e:
            logger.error(f"Connection failed: {e}")
        finally:
            was_connected = self._is_connected
            self._is_connected = False
            self._ws = None
            if was_connected and self._on_disconnected:
                self._on_disconnected()

    async def _receive_loop(self) -> None:
        """Receive and deliver frames."""
        while self._should_run and self._ws:
            try:
                data = await asyncio.wait_for(
                    self._ws.recv(),
                    timeout=RECV_TIMEOUT,
                )
            except asyncio.TimeoutError:
                continue

            await self._handle_message(data)

    async def _handle_message(self, data: "str | bytes") -> None:
        """Hand one inbound frame to the frame handler."""
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")

        if self.debug:
            logger.debug(f"< {data}")

        if not self._on_frame:
            return
        try:
            await self._on_frame(data)
        except Exception as e:
            logger.error(f"Frame handler error: {e}", exc_info=True)
