# tannery/auth.py
"""
API key auth and pluggable sliding-window rate limiter.

Env vars:
- MOCK_AUTH (default: true): bypass auth in dev
- API_KEYS: comma-separated allowed keys
- API_KEYS_FILE: optional path to file with one key per line
- RATE_LIMIT_PER_MINUTE (default: 60)
- REDIS_URL: optional, enables Redis-based distributed limiter
- NOTIFICATION_CLEANUP_CRON_SECRET: bearer secret for the cleanup cron
"""

import collections
import hmac
import os
import threading
import time
import uuid
from typing import Deque, Optional, Set, Tuple

import redis

from tannery import monitoring

# Configuration
MOCK_AUTH = os.getenv("MOCK_AUTH", "true").lower() in ("1", "true", "yes")
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))
API_KEYS_ENV = os.getenv("API_KEYS", "")
API_KEYS_FILE = os.getenv("API_KEYS_FILE", "")
REDIS_URL = os.getenv("REDIS_URL", "")
CRON_SECRET = os.getenv("NOTIFICATION_CLEANUP_CRON_SECRET", "")


def _load_api_keys() -> Set[str]:
    keys: Set[str] = set()
    if API_KEYS_ENV:
        for k in API_KEYS_ENV.split(","):
            k = k.strip()
            if k:
                keys.add(k)
    if API_KEYS_FILE and os.path.exists(API_KEYS_FILE):
        try:
            with open(API_KEYS_FILE, "r", encoding="utf-8") as f:
                for line in f:
                    k = line.strip()
                    if k:
                        keys.add(k)
        except OSError:
            monitoring.logger.exception("Could not read API_KEYS_FILE", extra={"path": API_KEYS_FILE})
    return keys


API_KEYS = _load_api_keys()


class SlidingWindowLimiter:
    """Thread-safe in-memory sliding-window limiter (per-process).

    Each identity keeps the timestamps of its requests inside the window.
    Identities idle for a full window are evicted every `sweep_interval`
    seconds, and at most `max_identities` are tracked (oldest activity goes
    first), so memory stays bounded under a spray of distinct clients.
    """

    def __init__(
        self,
        limit: int = 60,
        window_seconds: float = 60.0,
        max_identities: int = 10000,
        sweep_interval: float = 60.0,
        clock=time.monotonic,
    ):
        self.limit = limit
        self.window = window_seconds
        self.max_identities = max_identities
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._hits: "collections.OrderedDict[str, Deque[float]]" = collections.OrderedDict()
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def _evict(self, now: float):
        cutoff = now - self.window
        for identity in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[identity]
        self._last_sweep = now

    def allow_request(self, identity: str) -> Tuple[bool, Optional[int]]:
        now = self._clock()
        with self._lock:
            if now - self._last_sweep >= self.sweep_interval:
                self._evict(now)
            hits = self._hits.get(identity)
            if hits is None:
                while len(self._hits) >= self.max_identities:
                    self._hits.popitem(last=False)
                hits = self._hits[identity] = collections.deque()
            self._hits.move_to_end(identity)
            cutoff = now - self.window
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= self.limit:
                return False, 0
            hits.append(now)
            return True, self.limit - len(hits)

    def retry_after(self, identity: str) -> int:
        with self._lock:
            hits = self._hits.get(identity)
            if not hits:
                return 0
            return max(int(hits[0] + self.window - self._clock()) + 1, 1)

    @property
    def tracked(self) -> int:
        return len(self._hits)

    def reset(self):
        """Reset all state (useful for tests)."""
        with self._lock:
            self._hits.clear()


class RedisSlidingWindowLimiter:
    """Redis sorted-set log: one member per request, scored by its timestamp."""

    def __init__(self, redis_url: str, limit: int = 60, window_seconds: float = 60.0, client=None):
        self.limit = limit
        self.window = window_seconds
        self._client = client or redis.Redis.from_url(redis_url, decode_responses=True)

    def allow_request(self, identity: str) -> Tuple[bool, Optional[int]]:
        now = time.time()
        key = f"rate:{identity}"
        try:
            pipe = self._client.pipeline()
            pipe.zremrangebyscore(key, 0, now - self.window)
            pipe.zcard(key)
            _, count = pipe.execute()
            if int(count) >= self.limit:
                return False, 0
            pipe = self._client.pipeline()
            pipe.zadd(key, {f"{now}:{uuid.uuid4().hex[:8]}": now})
            pipe.expire(key, int(self.window) + 1)
            pipe.execute()
            return True, self.limit - int(count) - 1
        except redis.RedisError as e:
            # Fail open on Redis errors
            monitoring.logger.warning("Redis rate limiter unavailable", extra={"error": str(e)})
            return True, None

    def retry_after(self, identity: str) -> int:
        return int(self.window)

    def reset(self):
        pass


def _build_limiter():
    if REDIS_URL:
        try:
            return RedisSlidingWindowLimiter(REDIS_URL, RATE_LIMIT_PER_MINUTE)
        except (redis.RedisError, ValueError):
            monitoring.logger.exception("Redis limiter init failed, using in-memory limiter")
    return SlidingWindowLimiter(RATE_LIMIT_PER_MINUTE)


_rate_limiter = _build_limiter()


def is_key_allowed(api_key: Optional[str]) -> bool:
    """Check if API key is valid. If MOCK_AUTH=true, always returns True."""
    if MOCK_AUTH:
        return True
    if not api_key:
        return False
    if not API_KEYS:
        return False
    return api_key in API_KEYS


def client_identity(api_key: Optional[str], forwarded_for: Optional[str], host: Optional[str]) -> str:
    if api_key:
        return f"key:{api_key}"
    if forwarded_for:
        return f"ip:{forwarded_for.split(',')[0].strip()}"
    return f"ip:{host or 'unknown'}"


def check_rate_limit(identity: str) -> Tuple[bool, Optional[int]]:
    """Check and consume quota. Returns (allowed, remaining)."""
    if MOCK_AUTH:
        return True, None
    return _rate_limiter.allow_request(identity)


def retry_after(identity: str) -> int:
    return _rate_limiter.retry_after(identity)


def is_cron_authorized(authorization: Optional[str]) -> bool:
    if not CRON_SECRET or not authorization:
        return False
    return hmac.compare_digest(authorization.encode(), f"Bearer {CRON_SECRET}".encode())


def get_limiter():
    """Return the current limiter instance (for testing)."""
    return _rate_limiter
