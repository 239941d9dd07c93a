"""In-process sliding-window rate limiter keyed by owner."""

from __future__ import annotations

import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, Sequence, Tuple


class RateLimiter:
    """
    Admit at most ``limit`` hits per ``window`` seconds for each key.

    Several windows may be combined (for example per minute and per hour); a
    hit is admitted only when every window has room. Rejected hits are not
    recorded, so a caller that backs off regains capacity as hits age out.
    """

    def __init__(
        self,
        windows: Sequence[Tuple[int, float]],
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._windows = [(limit, window) for limit, window in windows if limit > 0]
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)

    def attempt(self, key: str) -> bool:
        """Record a hit for ``key`` and return whether it was admitted."""
        if not self._windows:
            return True
        now = self._clock()
        hits = self._hits[key]
        longest = max(window for _, window in self._windows)
        while hits and now - hits[0] >= longest:
            hits.popleft()

        for limit, window in self._windows:
            recent = sum(1 for stamp in hits if now - stamp < window)
            if recent >= limit:
                return False

        hits.append(now)
        return True

    def remaining(self, key: str) -> int:
        """Hits still available for ``key`` in the tightest window."""
        if not self._windows:
            return -1
        now = self._clock()
        hits = self._hits.get(key, ())
        return min(
            limit - sum(1 for stamp in hits if now - stamp < window)
            for limit, window in self._windows
        )

    def reset(self, key: str | None = None) -> None:
        if key is None:
            self._hits.clear()
        else:
            self._hits.pop(key, None)


__all__ = ["RateLimiter"]
