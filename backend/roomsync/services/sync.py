import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from roomsync.config import DEFAULT_SYNC_INTERVAL
from roomsync.models.messages import (
    AdjustTimeRequest,
    CommandAuthorityRequest,
    JoinRequest,
    PlayRequest,
    RoomRequest,
)
from roomsync.models.room import Connection, Member, Room
from roomsync.services.authority import AuthorityGate
from roomsync.services.clock import live_position
from roomsync.services.room import RoomRegistry
from roomsync.services.session import SessionManager
from roomsync.services.uploads import UploadStore

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", bound=BaseModel)


class RoomSync:
    """
    Room transport protocol.

    `sio` is anything with the `socketio.AsyncServer` emit / enter_room /
    leave_room interface. Every mutation of a room and the broadcast it
    causes happen while holding that room's lock, so members observe
    changes in the order they were applied. Requests that are malformed,
    unauthorized or aimed at a room that no longer exists are dropped.
    `play`, `pause` and `adjust_time` are relayed to the other members only.
    """

    def __init__(
        self,
        sio,
        registry: RoomRegistry,
        sessions: SessionManager,
        authority: AuthorityGate,
        uploads: Optional[UploadStore] = None,
        clock: Callable[[], float] = time.monotonic,
        sync_interval: float = DEFAULT_SYNC_INTERVAL,
    ):
        self.sio = sio
        self.registry = registry
        self.sessions = sessions
        self.authority = authority
        self.uploads = uploads
        self.clock = clock
        self.sync_interval = sync_interval

    # Helpers

    def _parse(self, model: Type[RequestT], data: Any, sid: str, event: str) -> Optional[RequestT]:
        try:
            return model.model_validate(data if data is not None else {})
        except ValidationError as e:
            logger.warning(f"Ignoring malformed {event} from {sid}: {e.errors()}")
            return None

    def _connection(self, sid: str, room_id: str) -> Optional[Connection]:
        connection = self.sessions.get(sid)
        if connection is None or connection.room_id != room_id:
            logger.debug(f"{sid} is not a member of room {room_id}")
            return None
        return connection

    @asynccontextmanager
    async def _locked(self, room_id: str) -> AsyncIterator[Optional[Room]]:
        room = self.registry.get(room_id)
        if room is None:
            yield None
            return
        async with room.lock:
            # The room may have been destroyed while we waited
            yield room if self.registry.get(room_id) is room else None

    def _state_payload(self, room: Room) -> Optional[dict]:
        playback = room.playback
        if playback is None:
            return None
        return {
            "media_ref": playback.media_ref.model_dump(mode="json"),
            "title": playback.title,
            "position": live_position(playback, self.clock()),
            "is_playing": playback.is_playing,
        }

    async def _emit_roster(self, room: Room):
        await self.sio.emit("roster", room.roster(), room=room.id)

    # Drift ticker, one per playing room

    def _start_ticker(self, room: Room):
        if self.sync_interval <= 0:
            return
        if room.ticker is not None and not room.ticker.done():
            return
        room.ticker = asyncio.create_task(self._tick(room))

    def _stop_ticker(self, room: Room):
        if room.ticker is not None:
            room.ticker.cancel()
            room.ticker = None

    async def _tick(self, room: Room):
        while True:
            await asyncio.sleep(self.sync_interval)
            async with room.lock:
                if self.registry.get(room.id) is not room or not room.is_playing:
                    return
                playback = room.playback
                try:
                    await self.sio.emit("adjust_time", {
                        "media_ref": playback.media_ref.model_dump(mode="json"),
                        "position": live_position(playback, self.clock()),
                    }, room=room.id)
                except Exception as e:
                    logger.error(f"Drift broadcast failed for room {room.id}: {e}", exc_info=True)

    # Protocol

    async def join(self, sid: str, data: Any) -> Optional[dict]:
        request = self._parse(JoinRequest, data, sid, "join_room")
        if request is None:
            return None

        # One room per connection
        if self.sessions.get(sid) is not None:
            await self.leave(sid)

        room_id = request.room_id or self.registry.generate_room_id()
        display_name = request.display_name or f"Guest_{sid[:4]}"
        is_owner = self.authority.authenticate(request.secret)
        connection = Connection(sid=sid, room_id=room_id, display_name=display_name, is_owner=is_owner)

        # Bound before waiting on the room so a disconnect in between finds it
        self.sessions.bind(connection)

        while True:
            room = self.registry.get_or_create(room_id)
            async with room.lock:
                if self.registry.get(room_id) is not room:
                    continue
                if self.sessions.get(sid) is not connection:
                    # Disconnected while waiting, never add a member without a socket
                    logger.info(f"[Room] {display_name} left {room_id} before joining")
                    if not room.members:
                        self.registry.remove_member(room_id, sid)
                    return None
                self.registry.add_member(room_id, Member(sid=sid, display_name=display_name, is_owner=is_owner))
                await self.sio.enter_room(sid, room_id)
                logger.info(f"[Room] {display_name} joined {room_id} (owner={is_owner})")

                await self._emit_roster(room)

                # Late joiners start from the live position, not from zero
                state = self._state_payload(room)
                if state is not None:
                    await self.sio.emit("play", state, to=sid)

                return {
                    "room_id": room_id,
                    "is_owner": is_owner,
                    "can_control": self.authority.can_control(connection, room),
                    "open_control": self.authority.open_control,
                    "public_control": room.public_control,
                    "roster": room.roster(),
                    "state": state,
                }

    async def request_state(self, sid: str, data: Any):
        request = self._parse(RoomRequest, data, sid, "request_state")
        if request is None or self._connection(sid, request.room_id) is None:
            return
        async with self._locked(request.room_id) as room:
            if room is None:
                return
            state = self._state_payload(room)
            if state is not None:
                await self.sio.emit("play", state, to=sid)

    async def play(self, sid: str, data: Any):
        request = self._parse(PlayRequest, data, sid, "play")
        if request is None:
            return
        connection = self._connection(sid, request.room_id)
        if connection is None:
            return
        async with self._locked(request.room_id) as room:
            if room is None:
                return
            if not self.authority.can_control(connection, room):
                logger.info(f"Dropping play from {connection.display_name} in {room.id}: not allowed")
                return
            self.registry.set_playback(room.id, request.media_ref, request.title, request.position, self.clock())
            logger.info(f"[Play] Room {room.id}: {request.title or request.media_ref.value} ({request.media_ref.kind.value})")
            await self.sio.emit("play", self._state_payload(room), room=room.id, skip_sid=sid)
            self._start_ticker(room)

    async def pause(self, sid: str, data: Any):
        request = self._parse(RoomRequest, data, sid, "pause")
        if request is None:
            return
        connection = self._connection(sid, request.room_id)
        if connection is None:
            return
        async with self._locked(request.room_id) as room:
            if room is None:
                return
            if not self.authority.can_control(connection, room):
                logger.info(f"Dropping pause from {connection.display_name} in {room.id}: not allowed")
                return
            if self.registry.set_paused(room.id, self.clock()) is None:
                return
            self._stop_ticker(room)
            logger.info(f"[Pause] Room {room.id} at {room.playback.stored_position:.2f}s")
            await self.sio.emit("pause", {"position": room.playback.stored_position}, room=room.id, skip_sid=sid)

    async def adjust_time(self, sid: str, data: Any):
        request = self._parse(AdjustTimeRequest, data, sid, "adjust_time")
        if request is None:
            return
        connection = self._connection(sid, request.room_id)
        if connection is None:
            return
        async with self._locked(request.room_id) as room:
            if room is None or not self.authority.can_control(connection, room):
                return
            if not self.registry.adjust_time(room.id, request.media_ref, request.position, self.clock()):
                return
            await self.sio.emit("adjust_time", {
                "media_ref": request.media_ref.model_dump(mode="json"),
                "position": room.playback.stored_position,
            }, room=room.id, skip_sid=sid)

    async def set_command_authority(self, sid: str, data: Any):
        request = self._parse(CommandAuthorityRequest, data, sid, "set_command_authority")
        if request is None:
            return
        connection = self._connection(sid, request.room_id)
        if connection is None:
            return
        async with self._locked(request.room_id) as room:
            if room is None:
                return
            if not self.authority.can_toggle(connection):
                logger.info(f"Dropping command authority change from {connection.display_name} in {room.id}")
                return
            self.registry.set_public_control(room.id, request.enabled)
            logger.info(f"Room {room.id} public control set to {request.enabled}")
            await self.sio.emit("command_authority", {"enabled": request.enabled}, room=room.id)

    async def leave(self, sid: str):
        connection = self.sessions.unbind(sid)
        if connection is None:
            return
        await self.sio.leave_room(sid, connection.room_id)

        destroyed = None
        async with self._locked(connection.room_id) as room:
            if room is None:
                return
            destroyed = self.registry.remove_member(room.id, sid)
            logger.info(f"[Room] {connection.display_name} left {room.id}")
            if destroyed is None:
                await self._emit_roster(room)
            else:
                self._stop_ticker(destroyed)

        if destroyed is not None and destroyed.playback is not None and self.uploads is not None:
            media_ref = destroyed.playback.media_ref
            if self.uploads.owns(media_ref):
                await self.uploads.release(media_ref)

    async def shutdown(self):
        for room in self.registry.rooms():
            self._stop_ticker(room)
