"""
Shared types for the Turntable room protocol.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ApiVerb(str, Enum):
    """Outbound request verbs (the `api` field)."""

    PRESENCE_UPDATE = "presence.update"
    USER_SET_BOT = "user.set_bot"
    USER_BECOME_FAN = "user.become_fan"
    USER_REMOVE_FAN = "user.remove_fan"
    ROOM_REGISTER = "room.register"
    ROOM_DEREGISTER = "room.deregister"
    ROOM_INFO = "room.info"
    ROOM_SPEAK = "room.speak"
    ROOM_ADD_MODERATOR = "room.add_moderator"
    ROOM_REM_MODERATOR = "room.rem_moderator"
    ROOM_BOOT_USER = "room.boot_user"
    ROOM_ADD_DJ = "room.add_dj"
    ROOM_REM_DJ = "room.rem_dj"
    ROOM_STOP_SONG = "room.stop_song"
    ROOM_VOTE = "room.vote"
    PM_SEND = "pm.send"
    PM_HISTORY = "pm.history"
    SNAG_ADD = "snag.add"
    PLAYLIST_ADD = "playlist.add"
    PLAYLIST_REMOVE = "playlist.remove"
    PLAYLIST_ALL = "playlist.all"
    PLAYLIST_LIST_ALL = "playlist.list_all"
    PLAYLIST_CREATE = "playlist.create"
    PLAYLIST_DELETE = "playlist.delete"
    PLAYLIST_SWITCH = "playlist.switch"
    FILE_SEARCH = "file.search"


class Command(str, Enum):
    """Inbound broadcast commands (the `command` field)."""

    REGISTERED = "registered"
    DEREGISTERED = "deregistered"
    ADD_DJ = "add_dj"
    REM_DJ = "rem_dj"
    NEW_SONG = "newsong"
    NO_SONG = "nosong"
    SNAGGED = "snagged"
    UPDATE_VOTES = "update_votes"
    UPDATE_ROOM = "update_room"
    SPEAK = "speak"
    PMMED = "pmmed"
    SEARCH_COMPLETE = "search_complete"
    UNKNOWN = ""

    @classmethod
    def parse(cls, name: Optional[str]) -> "Command":
        """Map a raw command name to a Command, falling back to UNKNOWN."""
        if not name:
            return cls.UNKNOWN
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN


class SessionState(Enum):
    """Logical session states."""

    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


@dataclass
class BroadcastEvent:
    """Server-initiated message not tied to an outstanding request."""

    name: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def command(self) -> Command:
        return Command.parse(self.name)
