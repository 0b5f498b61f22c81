import asyncio
import logging
from typing import List, Optional

import socketio
from pydantic import ValidationError

from roomsync.client.echo import EchoGuard
from roomsync.client.player import LocalPlayer
from roomsync.client.playlist import Playlist
from roomsync.models.room import MediaRef

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_INTERVAL = 2.0 # seconds between local drift samples
DEFAULT_DRIFT_THRESHOLD = 0.5 # seconds of drift tolerated before seeking


class SyncClient:
    """
    Keeps a LocalPlayer in step with a room.

    Server pushes are applied under the echo guard; the player callbacks
    (`on_local_*`) only reach the server when the guard is idle, so applying
    a remote change never bounces back as a command.
    """

    def __init__(
        self,
        player: LocalPlayer,
        room_id: Optional[str] = None,
        display_name: Optional[str] = None,
        secret: Optional[str] = None,
        sio=None,
        guard: Optional[EchoGuard] = None,
        playlist: Optional[Playlist] = None,
        sample_interval: float = DEFAULT_SAMPLE_INTERVAL,
        drift_threshold: float = DEFAULT_DRIFT_THRESHOLD,
    ):
        self.player = player
        self.room_id = room_id
        self.display_name = display_name
        self.secret = secret
        self.sio = sio if sio is not None else socketio.AsyncClient()
        self.guard = guard or EchoGuard()
        self.playlist = playlist or Playlist()
        self.sample_interval = sample_interval
        self.drift_threshold = drift_threshold

        self.is_owner = False
        self.open_control = False
        self.public_control = False
        self.roster: List[str] = []
        self.title = ""
        self._sampler: Optional[asyncio.Task] = None

        self.sio.on("play", self._on_play)
        self.sio.on("pause", self._on_pause)
        self.sio.on("adjust_time", self._on_adjust_time)
        self.sio.on("roster", self._on_roster)
        self.sio.on("command_authority", self._on_command_authority)
        self.sio.on("error", self._on_error)

    @property
    def can_control(self) -> bool:
        return self.is_owner or self.open_control or self.public_control

    # Connection

    async def connect(self, url: str) -> dict:
        await self.sio.connect(url)
        return await self.join()

    async def join(self) -> dict:
        ack = await self.sio.call("join_room", {
            "room_id": self.room_id,
            "display_name": self.display_name,
            "secret": self.secret,
        })
        if not ack:
            raise ConnectionError(f"Could not join room {self.room_id}")
        self.room_id = ack["room_id"]
        self.is_owner = ack["is_owner"]
        self.open_control = ack.get("open_control", False)
        self.public_control = ack["public_control"]
        self.roster = ack["roster"]
        logger.info(f"Joined room {self.room_id} as {self.display_name} (owner={self.is_owner})")
        self.start_sampler()
        return ack

    async def disconnect(self):
        self.stop_sampler()
        await self.sio.disconnect()

    # User intents. Return False when this client has no control.

    async def play(self, media_ref: MediaRef, title: str = "", position: float = 0.0) -> bool:
        if not self.can_control:
            return False
        with self.guard.applying():
            self._load(media_ref, position)
            self.player.play()
        self.title = title
        self.playlist.follow(media_ref)
        await self._emit_play(media_ref, title, position)
        return True

    async def resume(self) -> bool:
        media_ref = self.player.media_ref
        if media_ref is None:
            return False
        return await self.play(media_ref, self.title, self.player.position)

    async def pause(self) -> bool:
        if not self.can_control or self.player.media_ref is None:
            return False
        with self.guard.applying():
            self.player.pause()
        await self.sio.emit("pause", {"room_id": self.room_id})
        return True

    async def seek(self, position: float) -> bool:
        media_ref = self.player.media_ref
        if not self.can_control or media_ref is None:
            return False
        with self.guard.applying():
            self.player.seek(position)
        await self._emit_adjust_time(media_ref, position)
        return True

    async def advance_track(self, step: int = 1) -> bool:
        item = self.playlist.advance(step)
        if item is None:
            return False
        return await self.play(item.media_ref, item.title, 0.0)

    # Local player notifications

    async def on_local_play(self):
        media_ref = self.player.media_ref
        if media_ref is None or not self.can_control or not self.guard.allows_emit():
            return
        await self._emit_play(media_ref, self.title, self.player.position)

    async def on_local_pause(self):
        if self.player.media_ref is None or not self.can_control or not self.guard.allows_emit():
            return
        await self.sio.emit("pause", {"room_id": self.room_id})

    async def on_local_seeked(self):
        media_ref = self.player.media_ref
        if media_ref is None or not self.can_control or not self.guard.allows_emit():
            return
        await self._emit_adjust_time(media_ref, self.player.position)

    async def on_local_ended(self):
        # Track advance is our decision; the server only hears the resulting play
        if self.can_control and len(self.playlist):
            await self.advance_track()

    # Drift sampling

    async def sample_once(self) -> bool:
        media_ref = self.player.media_ref
        if media_ref is None or not self.player.is_playing:
            return False
        if not self.can_control or not self.guard.allows_emit():
            return False
        await self._emit_adjust_time(media_ref, self.player.position)
        return True

    def start_sampler(self):
        if self.sample_interval <= 0:
            return
        if self._sampler is None or self._sampler.done():
            self._sampler = asyncio.create_task(self._sample_loop())

    def stop_sampler(self):
        if self._sampler is not None:
            self._sampler.cancel()
            self._sampler = None

    async def _sample_loop(self):
        while True:
            await asyncio.sleep(self.sample_interval)
            try:
                await self.sample_once()
            except Exception as e:
                logger.error(f"Drift sample failed: {e}", exc_info=True)

    # Server pushes

    async def _on_play(self, data):
        try:
            media_ref = MediaRef.model_validate(data["media_ref"])
            position = float(data.get("position", 0.0))
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring malformed play: {e}")
            return
        with self.guard.applying():
            self._load(media_ref, position)
            if data.get("is_playing", True):
                self.player.play()
            else:
                self.player.pause()
        self.title = data.get("title", "")
        self.playlist.follow(media_ref)

    async def _on_pause(self, data):
        try:
            position = (data or {}).get("position")
            if position is not None:
                position = float(position)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed pause: {e}")
            return
        with self.guard.applying():
            if position is not None:
                self.player.seek(position)
            self.player.pause()

    async def _on_adjust_time(self, data):
        try:
            media_ref = MediaRef.model_validate(data["media_ref"])
            position = float(data["position"])
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring malformed adjust_time: {e}")
            return
        if media_ref != self.player.media_ref:
            return
        if abs(self.player.position - position) <= self.drift_threshold:
            return
        with self.guard.applying():
            self.player.seek(position)

    async def _on_roster(self, data):
        self.roster = list(data or [])

    async def _on_command_authority(self, data):
        self.public_control = bool((data or {}).get("enabled"))

    async def _on_error(self, data):
        logger.error(f"Server error: {(data or {}).get('message')}")

    # Helpers

    def _load(self, media_ref: MediaRef, position: float):
        if self.player.media_ref == media_ref:
            self.player.seek(position)
        else:
            self.player.load(media_ref, position)

    async def _emit_play(self, media_ref: MediaRef, title: str, position: float):
        await self.sio.emit("play", {
            "room_id": self.room_id,
            "media_ref": media_ref.model_dump(mode="json"),
            "title": title,
            "position": position,
        })

    async def _emit_adjust_time(self, media_ref: MediaRef, position: float):
        await self.sio.emit("adjust_time", {
            "room_id": self.room_id,
            "media_ref": media_ref.model_dump(mode="json"),
            "position": position,
        })
