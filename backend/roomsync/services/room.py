import logging
import secrets
import string
import time
from typing import Callable, Dict, List, Optional

from roomsync.models.room import MediaRef, Member, Playback, Room
from roomsync.services.clock import live_position

logger = logging.getLogger(__name__)

ROOM_ID_ALPHABET = string.ascii_uppercase + string.digits
ROOM_ID_LENGTH = 6


class RoomRegistry:
    """
    In-memory table of live rooms.

    Every mutator is a single synchronous transition, so a caller that holds
    `room.lock` around the call (and any broadcast that follows) sees a
    consistent (stored_position, last_update, is_playing) triple. Mutators on
    an unknown room id are no-ops: the room may just have been destroyed by a
    concurrent disconnect.
    """

    def __init__(self, public_control_default: bool = False, wall_clock: Callable[[], float] = time.time):
        self._rooms: Dict[str, Room] = {}
        self._public_control_default = public_control_default
        self._wall_clock = wall_clock

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def get_or_create(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(
                id=room_id,
                public_control=self._public_control_default,
                created_at=self._wall_clock(),
            )
            self._rooms[room_id] = room
            logger.info(f"Created room {room_id}")
        return room

    def generate_room_id(self) -> str:
        while True:
            room_id = "".join(secrets.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))
            if room_id not in self._rooms:
                return room_id

    def add_member(self, room_id: str, member: Member) -> Room:
        room = self.get_or_create(room_id)
        room.members[member.sid] = member
        return room

    def remove_member(self, room_id: str, sid: str) -> Optional[Room]:
        """Remove a member. Returns the room if this emptied and destroyed it."""
        room = self._rooms.get(room_id)
        if room is None:
            return None
        room.members.pop(sid, None)
        if room.members:
            return None
        del self._rooms[room_id]
        logger.info(f"Room {room_id} is empty, destroyed")
        return room

    def set_playback(self, room_id: str, media_ref: MediaRef, title: str, position: float, now: float) -> Optional[Room]:
        room = self._rooms.get(room_id)
        if room is None:
            return None
        # Replaces whatever was loaded before
        room.playback = Playback(
            media_ref=media_ref,
            title=title,
            stored_position=max(0.0, position),
            is_playing=True,
            last_update=now,
        )
        return room

    def set_paused(self, room_id: str, now: float) -> Optional[Room]:
        room = self._rooms.get(room_id)
        if room is None or room.playback is None:
            return None
        playback = room.playback
        # Must stay idempotent: a repeated pause cannot add elapsed time again
        playback.stored_position = live_position(playback, now)
        playback.is_playing = False
        playback.last_update = None
        return room

    def adjust_time(self, room_id: str, media_ref: MediaRef, position: float, now: float) -> bool:
        room = self._rooms.get(room_id)
        if room is None or room.playback is None:
            return False
        playback = room.playback
        if playback.media_ref != media_ref:
            # Stray sample for media that has since been replaced
            logger.debug(f"Discarding stale sample for {media_ref.value} in room {room_id}")
            return False
        playback.stored_position = max(0.0, position)
        if playback.is_playing:
            playback.last_update = now
        return True

    def set_public_control(self, room_id: str, enabled: bool) -> Optional[Room]:
        room = self._rooms.get(room_id)
        if room is None:
            return None
        room.public_control = enabled
        return room
