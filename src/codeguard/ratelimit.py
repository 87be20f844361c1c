"""速率限制状态 — 同一证据源的所有并发调用共享一个实例."""

import threading
import time
from collections.abc import Callable


class RateLimiter:
    """线程安全的调用节流.

    - min_interval: 两次调用之间的最小间隔（秒）
    - block(): 服务端返回限流信号后，在窗口期内拒绝新调用
    """

    def __init__(
        self,
        min_interval: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = 0.0
        self._blocked_until = 0.0

    def acquire(self, max_wait: float) -> bool:
        """预约一个调用时隙. 需要等待超过 max_wait 秒则放弃并返回 False."""
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot, self._blocked_until)
            wait = slot - now
            if wait > max_wait:
                return False
            self._next_slot = slot + self.min_interval

        if wait > 0:
            self._sleep(wait)
        return True

    def block(self, seconds: float) -> None:
        """进入限流窗口."""
        with self._lock:
            until = self._clock() + max(seconds, 0.0)
            self._blocked_until = max(self._blocked_until, until)

    @property
    def blocked_for(self) -> float:
        """限流窗口剩余秒数."""
        with self._lock:
            return max(0.0, self._blocked_until - self._clock())
