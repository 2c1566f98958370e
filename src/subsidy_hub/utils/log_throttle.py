"""Per-key log throttling for repetitive events."""

import threading
import time
from typing import Callable, Dict, Hashable


class LogThrottle:
    """
    Decide whether an event for a key may be logged again.

    A key is allowed once, then suppressed until ``interval`` seconds have
    passed on ``clock``. Thread-safe.

    Examples:
        >>> throttle = LogThrottle(interval=60)
        >>> throttle.should_log(("SM-S928N", "MNP"))
        True
        >>> throttle.should_log(("SM-S928N", "MNP"))
        False
    """

    def __init__(
        self, interval: float, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.interval = interval
        self._clock = clock
        self._last_logged: Dict[Hashable, float] = {}
        self._suppressed: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def should_log(self, key: Hashable) -> bool:
        now = self._clock()
        with self._lock:
            last = self._last_logged.get(key)
            if last is not None and now - last < self.interval:
                self._suppressed[key] = self._suppressed.get(key, 0) + 1
                return False
            self._last_logged[key] = now
            return True

    def suppressed_count(self, key: Hashable) -> int:
        with self._lock:
            return self._suppressed.get(key, 0)

    def reset(self) -> None:
        with self._lock:
            self._last_logged.clear()
            self._suppressed.clear()
