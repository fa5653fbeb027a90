from __future__ import annotations

import logging
import os
import threading
import time
import uuid
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple

import redis

from mindscape.models import AdmissionDecision

log = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)) or default)
    except ValueError:
        return default


MAX_REQUESTS: int = _env_int("RATE_MAX_REQUESTS", 5)
WINDOW_SECONDS: int = _env_int("RATE_WINDOW_SECONDS", 3600)
REDIS_URL = os.getenv("REDIS_URL", "").strip()
try:
    REDIS_TIMEOUT = float(os.getenv("REDIS_TIMEOUT_SECS", "0.5") or 0.5)
except ValueError:
    REDIS_TIMEOUT = 0.5
KEY_PREFIX = os.getenv("RATE_KEY_PREFIX", "rl:visualize").strip() or "rl:visualize"
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "1").lower() in {"1", "true", "yes", "on"}

# (allowed, hits counted in the window after this call, timestamp of the oldest counted hit)
HitResult = Tuple[bool, int, float]


class MemoryWindowStore:
    """In-process sliding-window log. One deque of hit timestamps per key."""

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}
        self._last_purge = 0.0

    def hit(self, key: str, now: float, window_seconds: float, limit: int) -> HitResult:
        cutoff = now - window_seconds
        with self._lock:
            if now - self._last_purge >= window_seconds:
                self._purge_locked(cutoff)
                self._last_purge = now
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()
            allowed = len(hits) < limit
            if allowed:
                hits.append(now)
            oldest = hits[0] if hits else now
            used = len(hits)
            if not hits:
                del self._hits[key]
            return allowed, used, oldest

    def _purge_locked(self, cutoff: float) -> None:
        stale = [k for k, q in self._hits.items() if not q or q[-1] <= cutoff]
        for k in stale:
            del self._hits[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)


# Trim, check and record in one server-side step so two concurrent requests
# from the same client can never both see "under limit".
_SLIDING_WINDOW_LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local used = redis.call('ZCARD', key)
local allowed = 0
if used < limit then
  redis.call('ZADD', key, now, ARGV[4])
  used = used + 1
  allowed = 1
end
redis.call('PEXPIRE', key, math.ceil(window * 1000))
local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
local oldest_ts = ARGV[1]
if oldest[2] then oldest_ts = oldest[2] end
return {allowed, used, oldest_ts}
"""


class RedisWindowStore:
    """Sliding-window log kept in a Redis sorted set per client."""

    name = "redis"

    def __init__(self, redis_url: Optional[str] = None, client: Optional["redis.Redis"] = None) -> None:
        if client is None:
            url = (redis_url or REDIS_URL).strip()
            if not url:
                raise ValueError("RedisWindowStore needs a redis_url or client")
            # Lazy: no network traffic until the first hit()
            client = redis.from_url(
                url,
                decode_responses=True,
                socket_timeout=REDIS_TIMEOUT,
                socket_connect_timeout=REDIS_TIMEOUT,
            )
        self._client = client
        self._script = client.register_script(_SLIDING_WINDOW_LUA)

    def hit(self, key: str, now: float, window_seconds: float, limit: int) -> HitResult:
        member = f"{now:.6f}-{uuid.uuid4().hex[:8]}"
        allowed, used, oldest = self._script(keys=[key], args=[repr(now), window_seconds, limit, member])
        return bool(int(allowed)), int(used), float(oldest)


class RateLimiter:
    """Per-client sliding-window admission control.

    Every admitted call is charged against the client's budget immediately,
    whatever happens downstream. If the store is missing or fails, the
    limiter admits the request: it is an abuse guard, not a billing control.
    """

    def __init__(
        self,
        store=None,
        max_requests: Optional[int] = None,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        key_prefix: str = KEY_PREFIX,
    ) -> None:
        self.store = store
        self.max_requests = int(max_requests if max_requests is not None else MAX_REQUESTS)
        self.window_seconds = float(window_seconds if window_seconds is not None else WINDOW_SECONDS)
        self.key_prefix = key_prefix
        self._clock = clock

    @property
    def backend(self) -> str:
        return getattr(self.store, "name", "disabled") if self.store is not None else "disabled"

    def _key(self, client_id: str) -> str:
        return f"{self.key_prefix}:{(client_id or '').strip() or 'anon'}"

    def _open(self, now: float, backend: str) -> AdmissionDecision:
        return AdmissionDecision(
            allowed=True,
            limit=self.max_requests,
            remaining=self.max_requests,
            reset_at=now + self.window_seconds,
            backend=backend,
        )

    def admit(self, client_id: str) -> AdmissionDecision:
        now = self._clock()
        if self.store is None:
            return self._open(now, "disabled")
        try:
            allowed, used, oldest = self.store.hit(self._key(client_id), now, self.window_seconds, self.max_requests)
        except (redis.RedisError, OSError) as exc:
            log.warning("ratelimit.admit: store=%s unavailable, failing open client=%s err=%r", self.backend, client_id, exc)
            return self._open(now, "fail-open")
        decision = AdmissionDecision(
            allowed=allowed,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - used),
            reset_at=oldest + self.window_seconds,
            backend=self.backend,
        )
        log.info(
            "ratelimit.admit: client=%s allowed=%s remaining=%d reset_in=%ds",
            client_id,
            decision.allowed,
            decision.remaining,
            int(decision.reset_at - now),
        )
        return decision


def build_rate_limiter() -> RateLimiter:
    """Limiter wired from the environment: Redis when REDIS_URL is set, else in-process."""
    if not RATE_LIMIT_ENABLED:
        log.warning("ratelimit: disabled by RATE_LIMIT_ENABLED; all requests will be admitted")
        return RateLimiter(store=None)
    if REDIS_URL and not os.getenv("PYTEST_CURRENT_TEST"):
        try:
            return RateLimiter(store=RedisWindowStore(REDIS_URL))
        except (redis.RedisError, ValueError) as exc:
            log.warning("ratelimit: could not configure Redis store (%r); using in-process store", exc)
    return RateLimiter(store=MemoryWindowStore())
