import math


def epoch_window(now_ms: float, duration_ms: int) -> tuple[int, int]:
    """Most recently completed epoch at ``now_ms`` as a half-open (start, end) pair.

    ``now`` is injected so callers and tests never depend on the wall clock.
    """
    if duration_ms <= 0:
        raise ValueError("duration_ms must be positive")
    start = math.floor((now_ms - 1) / duration_ms) * duration_ms
    return int(start), int(start + duration_ms)


def epoch_containing(timestamp_ms: float, duration_ms: int) -> tuple[int, int]:
    if duration_ms <= 0:
        raise ValueError("duration_ms must be positive")
    start = math.floor(timestamp_ms / duration_ms) * duration_ms
    return int(start), int(start + duration_ms)


def next_epoch_boundary(now_ms: float, duration_ms: int) -> int:
    """First epoch boundary strictly after ``now_ms``."""
    return epoch_containing(now_ms, duration_ms)[1]
