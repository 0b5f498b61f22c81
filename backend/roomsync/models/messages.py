from typing import Optional

from pydantic import BaseModel, Field

from roomsync.models.room import MediaRef


# Incoming Socket.IO payloads. Unknown keys are ignored.

class JoinRequest(BaseModel):
    room_id: Optional[str] = Field(default=None, max_length=64)
    display_name: Optional[str] = Field(default=None, max_length=64)
    secret: Optional[str] = None


class RoomRequest(BaseModel):
    room_id: str = Field(min_length=1)


class PlayRequest(RoomRequest):
    media_ref: MediaRef
    title: str = ""
    position: float = Field(default=0.0, ge=0, allow_inf_nan=False)


class AdjustTimeRequest(RoomRequest):
    media_ref: MediaRef
    position: float = Field(ge=0, allow_inf_nan=False)


class CommandAuthorityRequest(RoomRequest):
    enabled: bool
