import time
from contextlib import contextmanager
from enum import Enum
from typing import Callable

DEFAULT_WINDOW = 0.2 # seconds


class GuardState(str, Enum):
    IDLE = "idle"
    APPLYING_REMOTE_UPDATE = "applying_remote_update"


class EchoGuard:
    """
    Keeps remote updates from being echoed back to the server.

    While a server-pushed change is being applied, and for `window` seconds
    afterwards, the local player's own notifications (started, paused,
    seeked) are consequences of that change and must not be sent as user
    commands. Each remote update pushes the deadline forward, so a second
    update that lands inside the window keeps the guard closed until the
    window of the latest one has passed.
    """

    def __init__(self, window: float = DEFAULT_WINDOW, clock: Callable[[], float] = time.monotonic):
        self.window = window
        self.clock = clock
        self._depth = 0
        self._deadline = float("-inf")

    @property
    def state(self) -> GuardState:
        if self._depth > 0 or self.clock() < self._deadline:
            return GuardState.APPLYING_REMOTE_UPDATE
        return GuardState.IDLE

    def allows_emit(self) -> bool:
        return self.state is GuardState.IDLE

    def mark_remote_update(self):
        self._deadline = max(self._deadline, self.clock() + self.window)

    @contextmanager
    def applying(self):
        self._depth += 1
        try:
            yield
        finally:
            self._depth -= 1
            # Window starts once the update has been handed to the player
            self.mark_remote_update()
