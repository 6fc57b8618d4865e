"""
Fixed-window rate limiting.

Each RateLimiter counts hits per key inside a window of window_ms. The first
hit opens the window; hits are allowed while the count stays within
max_requests; once the window has passed, the next hit starts a new one.

Window state lives behind a RateLimitStore so several processes can share
counters (RedisRateLimitStore) without changing any call site.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import redis
from fastapi import Request

from subscriptn.config import get_settings
from subscriptn.exceptions import RateLimitError

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class WindowState:
    count: int
    reset_time: int  # epoch ms


class RateLimitStore:
    """Key -> WindowState mapping used by RateLimiter."""

    def hit(self, key: str, window_ms: int, now_ms: int) -> WindowState:
        """Count one hit, opening a new window if none is live. Returns the updated state."""
        raise NotImplementedError

    def get(self, key: str) -> Optional[WindowState]:
        raise NotImplementedError

    def purge_expired(self, now_ms: int) -> int:
        """Drop windows whose reset time has passed. Returns how many were dropped."""
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class MemoryRateLimitStore(RateLimitStore):
    """In-process store. Counters are not shared between workers."""

    def __init__(self):
        self._windows: dict[str, WindowState] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, window_ms: int, now_ms: int) -> WindowState:
        with self._lock:
            state = self._windows.get(key)
            if state is None or now_ms > state.reset_time:
                state = WindowState(count=1, reset_time=now_ms + window_ms)
                self._windows[key] = state
            else:
                state.count += 1
            return WindowState(state.count, state.reset_time)

    def get(self, key: str) -> Optional[WindowState]:
        with self._lock:
            state = self._windows.get(key)
            return WindowState(state.count, state.reset_time) if state else None

    def purge_expired(self, now_ms: int) -> int:
        with self._lock:
            expired = [key for key, state in self._windows.items() if now_ms > state.reset_time]
            for key in expired:
                del self._windows[key]
            return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()

    def __len__(self) -> int:
        return len(self._windows)


class RedisRateLimitStore(RateLimitStore):
    """Shared store. Redis key expiry closes the window, so purging is a no-op."""

    def __init__(self, client: redis.Redis, prefix: str):
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"ratelimit:{self._prefix}:{key}"

    def hit(self, key: str, window_ms: int, now_ms: int) -> WindowState:
        redis_key = self._key(key)
        pipe = self._client.pipeline()
        pipe.incr(redis_key)
        pipe.pexpire(redis_key, window_ms, nx=True)
        pipe.pttl(redis_key)
        count, _, ttl = pipe.execute()
        return WindowState(count=int(count), reset_time=now_ms + max(int(ttl), 0))

    def get(self, key: str) -> Optional[WindowState]:
        redis_key = self._key(key)
        count = self._client.get(redis_key)
        if count is None:
            return None
        ttl = self._client.pttl(redis_key)
        return WindowState(count=int(count), reset_time=_now_ms() + max(int(ttl), 0))

    def purge_expired(self, now_ms: int) -> int:
        return 0

    def clear(self) -> None:
        for redis_key in self._client.scan_iter(match=self._key("*")):
            self._client.delete(redis_key)


class RateLimiter:
    """Fixed-window limiter for one concern (auth, webhooks, ...)."""

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_ms: int,
        store: Optional[RateLimitStore] = None,
        clock: Callable[[], int] = _now_ms,
    ):
        self.name = name
        self.max_requests = max_requests
        self.window_ms = window_ms
        self.store = store or MemoryRateLimitStore()
        self._clock = clock

    def is_allowed(self, key: str) -> bool:
        state = self.store.hit(key, self.window_ms, self._clock())
        allowed = state.count <= self.max_requests
        if not allowed:
            logger.warning(f"[RATE_LIMIT] {self.name}: rejected {key} ({state.count}/{self.max_requests})")
        return allowed

    def remaining_window_ms(self, key: str) -> int:
        state = self.store.get(key)
        if state is None:
            return 0
        return max(0, state.reset_time - self._clock())

    def cleanup(self) -> int:
        return self.store.purge_expired(self._clock())

    def reset(self) -> None:
        self.store.clear()


# ============================================================================
# Named limiters
# ============================================================================

_redis_client: Optional[redis.Redis] = None


def _make_store(prefix: str) -> RateLimitStore:
    global _redis_client
    settings = get_settings()
    if not settings.rate_limit_redis_url:
        return MemoryRateLimitStore()
    if _redis_client is None:
        _redis_client = redis.Redis.from_url(settings.rate_limit_redis_url, decode_responses=True)
        logger.info("Rate limiter using shared Redis store")
    return RedisRateLimitStore(_redis_client, prefix)


def _build_limiter(name: str) -> RateLimiter:
    settings = get_settings()
    return RateLimiter(
        name=name,
        max_requests=getattr(settings, f"{name}_rate_limit_max_requests"),
        window_ms=getattr(settings, f"{name}_rate_limit_window_ms"),
        store=_make_store(name),
    )


auth_rate_limiter = _build_limiter("auth")
api_rate_limiter = _build_limiter("api")
webhook_rate_limiter = _build_limiter("webhook")
shop_rate_limiter = _build_limiter("shop")
subscription_rate_limiter = _build_limiter("subscription")
server_rate_limiter = _build_limiter("server")

ALL_LIMITERS = (
    auth_rate_limiter,
    api_rate_limiter,
    webhook_rate_limiter,
    shop_rate_limiter,
    subscription_rate_limiter,
    server_rate_limiter,
)


def cleanup_all_limiters() -> int:
    """Purge expired windows from every limiter."""
    purged = 0
    for limiter in ALL_LIMITERS:
        try:
            purged += limiter.cleanup()
        except redis.RedisError as e:
            logger.error(f"[RATE_LIMIT] cleanup of {limiter.name} failed: {e}")
    if purged:
        logger.debug(f"[RATE_LIMIT] purged {purged} expired windows")
    return purged


def client_key(request: Request) -> str:
    """Identify the caller by network address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client:
        return request.client.host
    return "unknown"


def rate_limit(limiter: RateLimiter, detail: str = "Too many requests. Please try again later."):
    """FastAPI dependency that rejects callers over the limiter's budget with 429."""
    def dependency(request: Request) -> None:
        key = client_key(request)
        if not limiter.is_allowed(key):
            raise RateLimitError(detail, retry_after_ms=limiter.remaining_window_ms(key))

    return dependency
