# sliding-window rate limiter: at most `limit` actions per user inside `window`
# timestamps older than the window are pruned on every call, so memory per user stays bounded by `limit`

from __future__ import annotations
from datetime import datetime, timedelta
from typing import Deque, Dict
from collections import deque
import asyncio
import logging

from relaybot.services.expiring_store import Clock, utc_now

logger = logging.getLogger(__name__)


class UsageTracker:
    def __init__(self, *, limit: int = 10, window: timedelta = timedelta(minutes=10), clock: Clock = utc_now) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window <= timedelta(0):
            raise ValueError("window must be positive")
        self._limit = limit
        self._window = window
        self._clock = clock
        self._usage: Dict[int, Deque[datetime]] = {}
        self._lock = asyncio.Lock()

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window(self) -> timedelta:
        return self._window

    def _prune(self, user_id: int, now: datetime) -> Deque[datetime]:
        # caller holds the lock
        stamps = self._usage.get(user_id)
        if stamps is None:
            return deque()
        cutoff = now - self._window
        while stamps and stamps[0] <= cutoff:
            stamps.popleft()
        if not stamps:
            self._usage.pop(user_id, None)
        return stamps

    async def try_acquire(self, user_id: int) -> bool:
        """Check and record in one locked step. Returns False when the user is over the limit."""
        now = self._clock()
        async with self._lock:
            stamps = self._prune(user_id, now)
            if len(stamps) >= self._limit:
                return False
            self._usage.setdefault(user_id, stamps).append(now)
            return True

    async def can_act(self, user_id: int) -> bool:
        now = self._clock()
        async with self._lock:
            return len(self._prune(user_id, now)) < self._limit

    async def record_action(self, user_id: int) -> None:
        now = self._clock()
        async with self._lock:
            self._usage.setdefault(user_id, deque()).append(now)

    async def time_until_reset(self, user_id: int) -> timedelta:
        now = self._clock()
        async with self._lock:
            stamps = self._prune(user_id, now)
            if len(stamps) < self._limit:
                return timedelta(0)
            # the slot frees up when the oldest in-window action ages out
            return max(timedelta(0), self._window - (now - stamps[0]))

    async def sweep(self) -> int:
        now = self._clock()
        async with self._lock:
            before = len(self._usage)
            for user_id in list(self._usage):
                self._prune(user_id, now)
            return before - len(self._usage)

    async def run_sweeper(self, interval: timedelta) -> None:
        seconds = max(1.0, interval.total_seconds())
        while True:
            await asyncio.sleep(seconds)
            try:
                dropped = await self.sweep()
                if dropped:
                    logger.info("usage: dropped %d idle users", dropped)
            except Exception:
                logger.exception("usage: sweep failed")
