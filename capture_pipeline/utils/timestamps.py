"""Wall-clock helpers shared by components that build timestamped names."""

import time
from collections.abc import Callable

Clock = Callable[[], int]


def now_millis() -> int:
    """Current Unix time in whole milliseconds."""
    return int(time.time() * 1000)
