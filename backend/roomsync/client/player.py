from abc import ABC, abstractmethod
from typing import Optional

from roomsync.models.room import MediaRef


class LocalPlayer(ABC):
    """The local playback engine a SyncClient drives (audio element, video widget, ...)."""

    @property
    @abstractmethod
    def media_ref(self) -> Optional[MediaRef]:
        ...

    @property
    @abstractmethod
    def position(self) -> float:
        ...

    @property
    @abstractmethod
    def is_playing(self) -> bool:
        ...

    @abstractmethod
    def load(self, media_ref: MediaRef, position: float = 0.0):
        ...

    @abstractmethod
    def play(self):
        ...

    @abstractmethod
    def pause(self):
        ...

    @abstractmethod
    def seek(self, position: float):
        ...
