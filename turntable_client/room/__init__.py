"""
Room module.

Session state machine, now-playing tracking and song search aggregation.
"""

from .models import NowPlaying, SongResult
from .search import PollingWaiter, ResultWaiter, SearchResultAggregator
from .session import RoomSession, SessionSnapshot

__all__ = [
    "NowPlaying",
    "SongResult",
    "RoomSession",
    "SessionSnapshot",
    "SearchResultAggregator",
    "ResultWaiter",
    "PollingWaiter",
]
