from typing import Dict, Optional

from roomsync.models.room import Connection


class SessionManager:
    """Which room and identity each Socket.IO session joined as."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def bind(self, connection: Connection):
        self._connections[connection.sid] = connection

    def get(self, sid: str) -> Optional[Connection]:
        return self._connections.get(sid)

    def unbind(self, sid: str) -> Optional[Connection]:
        return self._connections.pop(sid, None)
