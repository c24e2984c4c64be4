import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Union


@dataclass(frozen=True)
class Admission:
    admitted: bool
    retry_after: float = 0.0
    remaining: Union[int, None] = None


class FixedWindowRateLimiter:
    """Process-wide admission gate: at most ``capacity`` requests per ``window`` seconds.

    The count drops to zero exactly when a window boundary passes. Elapsed windows are
    skipped by whole window lengths, so the boundary grid never drifts and a late caller
    gets no partial credit. A capacity of 0 or None disables limiting.
    """

    def __init__(
        self,
        capacity: Union[int, None],
        window: float = 1.0,
        clock: Union[Callable[[], float], None] = None,
    ):
        if window <= 0:
            raise ValueError("rate limit window must be positive")
        self.capacity = capacity or 0
        self.window = float(window)
        self._clock = clock or time.monotonic
        self._count = 0
        self._reset_at = self._clock() + self.window
        self._lock = threading.Lock()
        self._logger = logging.getLogger("lyrics_proxy")

    @property
    def enabled(self) -> bool:
        return self.capacity > 0

    @property
    def count(self) -> int:
        return self._count

    @property
    def reset_at(self) -> float:
        return self._reset_at

    def _roll_window(self, now: float) -> None:
        if now < self._reset_at:
            return
        skipped = int((now - self._reset_at) // self.window) + 1
        self._reset_at += skipped * self.window
        self._count = 0

    def try_admit(self) -> Admission:
        if not self.enabled:
            return Admission(admitted=True)
        with self._lock:
            now = self._clock()
            self._roll_window(now)
            if self._count < self.capacity:
                self._count += 1
                return Admission(admitted=True, remaining=self.capacity - self._count)
            retry_after = max(0.0, self._reset_at - now)
        self._logger.debug(f"rate budget exhausted; retry in {retry_after:.3f}s")
        return Admission(admitted=False, retry_after=retry_after, remaining=0)
