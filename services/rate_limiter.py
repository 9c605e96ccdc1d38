"""Sliding-window rate limiters for chat events.

Each key (user, room) counts its accepted events inside the window. An event
is accepted while fewer than ``max_events`` remain after dropping those older
than ``window_seconds``.

Two backends:
- RedisSlidingWindowRateLimiter: one sorted set per key, shared by every
  worker process. Used whenever REDIS_URL is configured.
- SlidingWindowRateLimiter: in-process deques, for tests and single-process
  runs without Redis.

Usage:
    limiter = build_rate_limiter(max_events=30, redis_url=REDIS_URL)
    limiter.check(user_id, conversation_id)  # raises RateLimitedError
"""

import logging
import math
import threading
import time
import uuid
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

import redis

from services.errors import RateLimitedError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Base limiter. Subclasses implement try_acquire."""

    def __init__(self, max_events: int, window_seconds: float = 60.0):
        if max_events <= 0:
            raise ValueError("max_events must be positive")
        self.max_events = max_events
        self.window_seconds = window_seconds

    def try_acquire(self, user_id: str, room: str) -> bool:
        raise NotImplementedError

    def check(self, user_id: str, room: str) -> None:
        if not self.try_acquire(user_id, room):
            raise RateLimitedError(
                f"Too many messages: limit is {self.max_events} per {int(self.window_seconds)} seconds"
            )


class SlidingWindowRateLimiter(RateLimiter):
    """Per-(user, room) limiter held in this process."""

    def __init__(self, max_events: int, window_seconds: float = 60.0,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize the limiter.

        Args:
            max_events: Events allowed per key inside one window.
            window_seconds: Window length in seconds.
            clock: Monotonic time source, injectable for tests.
        """
        super().__init__(max_events, window_seconds)
        self._clock = clock
        self._hits: Dict[Tuple[str, str], Deque[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def _expire(self, hits: Deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        """Drop every key whose window has emptied. Caller holds the lock."""
        for key in list(self._hits):
            hits = self._hits[key]
            self._expire(hits, now)
            if not hits:
                del self._hits[key]
        self._last_sweep = now

    def try_acquire(self, user_id: str, room: str) -> bool:
        """Record an event if the key is under its limit.

        Returns:
            True if accepted, False if the limit is reached.
        """
        now = self._clock()
        key = (user_id, room)
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            hits = self._hits.get(key)
            if hits is not None:
                self._expire(hits, now)
            if hits and len(hits) >= self.max_events:
                return False
            if not hits:
                hits = self._hits[key] = deque()
            hits.append(now)
            return True

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def __len__(self):
        with self._lock:
            return len(self._hits)


class RedisSlidingWindowRateLimiter(RateLimiter):
    """
    Per-(user, room) limiter on a Redis sorted set keyed ``rate:{user}:{room}``.
    Scores are wall-clock seconds so every worker shares one window.
    """

    def __init__(self, max_events: int, window_seconds: float = 60.0, redis_url: Optional[str] = None,
                 client=None, clock: Callable[[], float] = time.time, prefix: str = "rate"):
        super().__init__(max_events, window_seconds)
        self._redis_url = redis_url or "redis://localhost:6379/0"
        self._client = client
        self._clock = clock
        self.prefix = prefix

    def _get_redis(self):
        """Get Redis client (lazy initialization)."""
        if self._client is None:
            self._client = redis.from_url(self._redis_url)
        return self._client

    def key_for(self, user_id: str, room: str) -> str:
        return f"{self.prefix}:{user_id}:{room}"

    def try_acquire(self, user_id: str, room: str) -> bool:
        now = self._clock()
        key = self.key_for(user_id, room)
        member = f"{now:.6f}:{uuid.uuid4().hex}"
        client = self._get_redis()

        pipe = client.pipeline()
        pipe.zremrangebyscore(key, 0, now - self.window_seconds)
        pipe.zcard(key)
        pipe.zadd(key, {member: now})
        pipe.expire(key, math.ceil(self.window_seconds))
        _, count, _, _ = pipe.execute()

        if count >= self.max_events:
            client.zrem(key, member)
            return False
        return True

    def reset(self, user_id: str, room: str) -> None:
        self._get_redis().delete(self.key_for(user_id, room))


def build_rate_limiter(max_events: int, redis_url: Optional[str] = None,
                       window_seconds: float = 60.0) -> RateLimiter:
    """Redis-backed limiter when a URL is configured, in-process otherwise."""
    if redis_url:
        logger.info("Rate limiting chat through Redis")
        return RedisSlidingWindowRateLimiter(max_events, window_seconds, redis_url=redis_url)
    return SlidingWindowRateLimiter(max_events, window_seconds)
