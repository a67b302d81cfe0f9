"""
Broadcast event dispatcher.

Fans server-initiated commands out to registered handlers.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Union

from .types import BroadcastEvent, Command

logger = logging.getLogger(__name__)

# Handlers receive the raw message dict; they may be plain functions or coroutines
EventHandler = Callable[[dict[str, Any]], Union[None, Awaitable[None]]]


class EventDispatcher:
    """
    Maps command names to ordered handler lists.

    Handlers are never deduplicated or removed, so long-lived processes that
    keep registering will grow these lists.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def on(self, command: Union[Command, str], handler: EventHandler) -> None:
        """
        Register a handler for a command.

        Args:
            command: Command enum member or raw command name
            handler: Callback receiving the message dict
        """
        name = command.value if isinstance(command, Command) else command
        self._handlers[name].append(handler)
        logger.debug(f"Registered handler for command {name!r}")

    def handler_count(self, command: Union[Command, str]) -> int:
        """Number of handlers registered for a command."""
        name = command.value if isinstance(command, Command) else command
        return len(self._handlers.get(name, []))

    def dispatch(self, event: BroadcastEvent) -> None:
        """
        Invoke every handler registered for the event's command, in order.

        Coroutine handlers are scheduled, not awaited. A failing handler is
        logged and does not stop the remaining handlers.
        """
        handlers = self._handlers.get(event.name)
        if not handlers:
            if event.command == Command.UNKNOWN:
                logger.debug(f"Dropping unknown command {event.name!r}")
            else:
                logger.debug(f"No handler for command {event.name!r}")
            return

        for handler in list(handlers):
            try:
                result = handler(event.data)
            except Exception as e:
                logger.error(f"Handler error for command {event.name!r}: {e}", exc_info=True)
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._background_tasks.add(task)
                task.add_done_callback(self._on_task_done(event.name))

    def _on_task_done(self, name: str) -> Callable[["asyncio.Future[Any]"], None]:
        def done(task: "asyncio.Future[Any]") -> None:
            self._background_tasks.discard(task)  # type: ignore[arg-type]
            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                logger.error(f"Async handler error for command {name!r}: {exc}")

        return done

    async def drain(self) -> None:
        """Wait for scheduled coroutine handlers to finish."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
