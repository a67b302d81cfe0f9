"""
Turntable bot application.

Orchestrator that runs a room client until interrupted, logging room activity.
"""

import asyncio
import logging
import signal
from typing import Any, Optional

from turntable_client.client import TurntableClient
from turntable_client.config import Config
from turntable_client.connect.types import Command

logger = logging.getLogger(__name__)


class TurntableBot:
    """
    Room bot application.

    Usage:
        config = load_config(...)
        bot = TurntableBot(config)
        await bot.run()
    """

    def __init__(self, config: Config, client: Optional[TurntableClient] = None):
        """
        Initialize bot.

        Args:
            config: Validated configuration
            client: Client override (defaults to one built from config)
        """
        self._config = config
        self._client = client or TurntableClient(config)
        self._is_running = False
        self._shutdown_event = asyncio.Event()

        self._client.on(Command.SPEAK, self._on_speak)
        self._client.on(Command.NEW_SONG, self._on_new_song)
        self._client.on(Command.NO_SONG, self._on_no_song)
        self._client.on(Command.ADD_DJ, self._on_add_dj)
        self._client.on(Command.REM_DJ, self._on_rem_dj)
        self._client.on(Command.PMMED, self._on_pm)

    @property
    def client(self) -> TurntableClient:
        return self._client

    @property
    def is_running(self) -> bool:
        """Check if the application is running."""
        return self._is_running

    async def start(self) -> None:
        """Open the connection; the handshake runs once it is up."""
        logger.info(f"Starting bot for room {self._config.turntable.room_id}...")
        await self._client.start()
        self._is_running = True

    async def stop(self) -> None:
        """Stop the client."""
        if not self._is_running:
            return

        logger.info("Stopping bot...")
        self._is_running = False
        try:
            await self._client.stop()
        except Exception as e:
            logger.warning(f"Error stopping client: {e}")
        logger.info("Bot stopped")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def run(self) -> None:
        """
        Run until interrupted.

        Sets up signal handlers for graceful shutdown on SIGINT/SIGTERM.
        """
        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Shutdown signal received")
            self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, handle_signal)

        try:
            await self.start()
            await self._shutdown_event.wait()
        finally:
            await self.stop()

    # -------------------------------------------------------------------------
    # Room activity
    # -------------------------------------------------------------------------

    def _on_speak(self, message: dict[str, Any]) -> None:
        logger.info(f"[chat] {message.get('name', '?')}: {message.get('text', '')}")

    def _on_new_song(self, message: dict[str, Any]) -> None:
        song = ((message.get("room") or {}).get("metadata") or {}).get("current_song") or {}
        meta = song.get("metadata") or {}
        logger.info(
            f"[song] {meta.get('artist', '?')} - {meta.get('song', '?')} "
            f"(dj={self._client.current_dj_id})"
        )

    def _on_no_song(self, message: dict[str, Any]) -> None:
        logger.info("[song] nothing playing")

    def _on_add_dj(self, message: dict[str, Any]) -> None:
        for user in message.get("user") or []:
            logger.info(f"[dj] {user.get('name', user.get('userid', '?'))} stepped up")

    def _on_rem_dj(self, message: dict[str, Any]) -> None:
        for user in message.get("user") or []:
            logger.info(f"[dj] {user.get('name', user.get('userid', '?'))} stepped down")

    def _on_pm(self, message: dict[str, Any]) -> None:
        logger.info(f"[pm] {message.get('senderid', '?')}: {message.get('text', '')}")
