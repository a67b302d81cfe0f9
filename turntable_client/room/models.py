"""
Room data models.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class SongResult:
    """One song document from a file search."""

    id: str
    source: str = ""
    source_id: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def artist(self) -> str:
        return str(self.metadata.get("artist", ""))

    @property
    def title(self) -> str:
        return str(self.metadata.get("song", ""))

    @property
    def length(self) -> int:
        return int(self.metadata.get("length", 0) or 0)

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> "SongResult":
        """Create from a search_complete doc."""
        return cls(
            id=str(doc.get("_id", "")),
            source=str(doc.get("source", "")),
            source_id=str(doc.get("sourceid", "")),
            metadata=dict(doc.get("metadata") or {}),
        )


@dataclass
class NowPlaying:
    """Current DJ and song, as carried in room metadata."""

    dj_id: Optional[str] = None
    song_id: Optional[str] = None

    @classmethod
    def from_room(cls, room: Optional[dict[str, Any]]) -> "NowPlaying":
        """
        Extract from a room object (room.info reply or newsong event).

        A missing current_song means nothing is playing.
        """
        metadata = (room or {}).get("metadata") or {}
        song = metadata.get("current_song") or {}
        return cls(dj_id=metadata.get("current_dj"), song_id=song.get("_id"))
