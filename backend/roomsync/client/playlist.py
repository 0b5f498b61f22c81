from typing import List, NamedTuple, Optional

from roomsync.models.room import MediaRef


class PlaylistItem(NamedTuple):
    media_ref: MediaRef
    title: str = ""


class Playlist:
    """Client-side queue. The server only knows the current media."""

    def __init__(self, items: Optional[List[PlaylistItem]] = None):
        self.items: List[PlaylistItem] = list(items or [])
        self.index = 0

    def __len__(self) -> int:
        return len(self.items)

    def add(self, media_ref: MediaRef, title: str = ""):
        self.items.append(PlaylistItem(media_ref, title))

    @property
    def current(self) -> Optional[PlaylistItem]:
        if not self.items:
            return None
        return self.items[self.index]

    def select(self, index: int) -> Optional[PlaylistItem]:
        if not self.items:
            return None
        self.index = index % len(self.items)
        return self.items[self.index]

    def advance(self, step: int = 1) -> Optional[PlaylistItem]:
        # Wraps around in both directions
        return self.select(self.index + step)

    def follow(self, media_ref: MediaRef):
        """Point at media someone else started, if it is in our list."""
        for i, item in enumerate(self.items):
            if item.media_ref == media_ref:
                self.index = i
                return
