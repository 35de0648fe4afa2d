import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass
class RateLimitEntry:
    count: int
    window_reset_at: float


@dataclass
class RateLimitStatus:
    remaining: int
    reset_at: float
    is_limited: bool
    reset_in_s: float = 0.0


class RateLimiter:
    """
    Fixed-window request counter keyed by caller identity.

    Entries are created lazily on first use and swept once their window
    has elapsed. All mutation happens on the event loop thread, so the
    counter map needs no locking.
    """

    def __init__(
        self,
        window_ms: int,
        max_requests: int,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_ms <= 0 or max_requests <= 0:
            raise ValueError("window_ms and max_requests must be positive")
        self.window_s = window_ms / 1000
        self.max_requests = max_requests
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        entry = self._entries.get(key)

        if entry is None or now >= entry.window_reset_at:
            self._entries[key] = RateLimitEntry(count=1, window_reset_at=now + self.window_s)
            return True

        if entry.count < self.max_requests:
            entry.count += 1
            return True

        self.logger.warning(
            f"Rate limit exceeded | key={key} count={entry.count} "
            f"max={self.max_requests} resets_in={entry.window_reset_at - now:.1f}s"
        )
        return False

    def get_status(self, key: str) -> RateLimitStatus:
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None or now >= entry.window_reset_at:
            return RateLimitStatus(
                remaining=self.max_requests,
                reset_at=now + self.window_s,
                is_limited=False,
                reset_in_s=self.window_s,
            )
        return RateLimitStatus(
            remaining=max(0, self.max_requests - entry.count),
            reset_at=entry.window_reset_at,
            is_limited=entry.count >= self.max_requests,
            reset_in_s=entry.window_reset_at - now,
        )

    def reset(self, key: str) -> None:
        self._entries.pop(key, None)

    def cleanup(self) -> int:
        """Remove entries whose window has elapsed. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.window_reset_at]
        for key in expired:
            del self._entries[key]
        if expired:
            self.logger.debug(f"Rate limiter swept {len(expired)} expired entries")
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    # ----------------------------
    # Periodic sweep
    # ----------------------------
    def start_sweeper(self, interval_s: float) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(interval_s))

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _sweep_loop(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self.cleanup()
