import asyncio
from collections import defaultdict
from typing import List, NamedTuple, Optional

import pytest

from roomsync.models.room import MediaKind, MediaRef
from roomsync.services.authority import AuthorityGate
from roomsync.services.room import RoomRegistry
from roomsync.services.session import SessionManager
from roomsync.services.sync import RoomSync

OWNER_SECRET = "letmein"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class Delivery(NamedTuple):
    sid: str
    event: str
    data: object


class FakeServer:
    """Stands in for socketio.AsyncServer and records who received what."""

    def __init__(self, yield_on_emit: bool = False):
        self.rooms = defaultdict(set)
        self.deliveries: List[Delivery] = []
        # Suspend on every call, like a real transport, so other tasks can interleave
        self.yield_on_emit = yield_on_emit

    async def _maybe_yield(self):
        if self.yield_on_emit:
            await asyncio.sleep(0)

    async def enter_room(self, sid, room):
        await self._maybe_yield()
        self.rooms[room].add(sid)

    async def leave_room(self, sid, room):
        await self._maybe_yield()
        self.rooms[room].discard(sid)

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None):
        await self._maybe_yield()
        if to is not None:
            recipients = {to}
        else:
            recipients = set(self.rooms.get(room, ()))
        recipients.discard(skip_sid)
        for sid in sorted(recipients):
            self.deliveries.append(Delivery(sid, event, data))

    def received(self, sid: str, event: Optional[str] = None) -> list:
        return [d.data for d in self.deliveries if d.sid == sid and (event is None or d.event == event)]

    def clear(self):
        self.deliveries.clear()


class FakeUploads:
    def __init__(self):
        self.released: List[MediaRef] = []

    def owns(self, media_ref):
        return media_ref is not None and media_ref.kind == MediaKind.FILE and media_ref.value.startswith("/uploads/")

    async def release(self, media_ref):
        self.released.append(media_ref)
        return True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def uploads():
    return FakeUploads()


@pytest.fixture(scope="session")
def authority():
    # argon2 hashing is slow, share one gate
    return AuthorityGate(OWNER_SECRET)


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def sync(server, registry, authority, uploads, clock):
    return RoomSync(server, registry, SessionManager(), authority, uploads=uploads, clock=clock, sync_interval=0)


def file_ref(value: str = "/uploads/x.mp3") -> dict:
    return {"kind": "file", "value": value}


def video_ref(value: str = "dQw4w9WgXcQ") -> dict:
    return {"kind": "video", "value": value}


async def settle(rounds: int = 10):
    """Let every runnable task advance until it blocks."""
    for _ in range(rounds):
        await asyncio.sleep(0)
