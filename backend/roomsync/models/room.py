import asyncio
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MediaKind(str, Enum):
    FILE = "file"   # uploaded file url
    VIDEO = "video" # externally hosted video id


class MediaRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: MediaKind
    value: str = Field(min_length=1)


class PlaybackState(str, Enum):
    EMPTY = "empty"
    LOADED = "loaded"


class Playback(BaseModel):
    media_ref: MediaRef
    title: str = ""
    stored_position: float = Field(default=0.0, ge=0) # Position as of last_update (absolute when paused)
    is_playing: bool = False
    last_update: Optional[float] = None # Monotonic server time, only set while playing


class Member(BaseModel):
    sid: str
    display_name: str
    is_owner: bool = False


class Connection(BaseModel):
    model_config = ConfigDict(frozen=True)

    sid: str
    room_id: str
    display_name: str
    is_owner: bool = False


class Room(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    members: Dict[str, Member] = Field(default_factory=dict) # sid -> Member, join order
    playback: Optional[Playback] = None # None while the room is Empty
    public_control: bool = False
    created_at: float

    # Runtime-only, never serialized
    lock: asyncio.Lock = Field(default_factory=asyncio.Lock, exclude=True)
    ticker: Optional[asyncio.Task] = Field(default=None, exclude=True)

    @property
    def state(self) -> PlaybackState:
        return PlaybackState.EMPTY if self.playback is None else PlaybackState.LOADED

    @property
    def is_playing(self) -> bool:
        return self.playback is not None and self.playback.is_playing

    def roster(self) -> List[str]:
        return [m.display_name for m in self.members.values()]
