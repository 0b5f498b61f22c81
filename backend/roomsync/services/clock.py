from roomsync.models.room import Playback


def live_position(playback: Playback, now: float) -> float:
    """
    Reconstruct the live playback position at `now`.

    `now` must come from the same monotonic clock that stamped
    `playback.last_update`. A paused playback is frozen at its stored
    position; a clock that appears to run backwards contributes no elapsed
    time.
    """
    if not playback.is_playing or playback.last_update is None:
        return playback.stored_position
    elapsed = max(0.0, now - playback.last_update)
    return playback.stored_position + elapsed
