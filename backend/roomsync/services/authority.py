import logging
from typing import Optional

from passlib.context import CryptContext

from roomsync.models.room import Connection, Room

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


class AuthorityGate:
    """
    Decides who may change a room's transport state.

    The owner is whoever presented the shared secret at join time. The owner
    can open control to everybody in the room through `public_control`.
    `open_control` is the ownerless mode where every connection controls.
    """

    def __init__(self, owner_secret: Optional[str] = None, open_control: bool = False):
        self._secret_hash = pwd_context.hash(owner_secret) if owner_secret else None
        self.open_control = open_control
        if self._secret_hash is None and not open_control:
            logger.warning("No owner secret configured, playback is only controllable in public rooms")

    def authenticate(self, secret: Optional[str]) -> bool:
        if not self._secret_hash or not secret:
            return False
        return pwd_context.verify(secret, self._secret_hash)

    def can_control(self, connection: Connection, room: Room) -> bool:
        return self.open_control or connection.is_owner or room.public_control

    def can_toggle(self, connection: Connection) -> bool:
        # Delegation is never delegated
        return connection.is_owner
