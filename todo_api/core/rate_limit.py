import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from todo_api.core.errors import RateLimitedError

logger = logging.getLogger(__name__)


@dataclass
class _Bucket:
    tokens: float
    last_refill: float
    evicted: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)


class RateLimiter:
    """
    Token bucket per client key.

    Buckets start full at ``burst`` tokens and refill continuously at ``rate``
    tokens per second. Each bucket is updated under its own lock; the registry
    lock only guards inserting a bucket for a key seen for the first time.

    A bucket left alone for ``burst / rate`` seconds has refilled completely and
    is indistinguishable from a new one, so such buckets are dropped when new
    keys arrive.
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate <= 0:
            raise ValueError("rate must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self.rate = rate
        self.burst = burst
        self._clock = clock
        self._idle_after = burst / rate
        self._buckets: dict[str, _Bucket] = {}
        self._registry_lock = threading.Lock()
        self._last_sweep = clock()

    def _sweep_idle(self, now: float) -> None:
        # Caller holds the registry lock. Buckets busy in admit() are skipped.
        for key, bucket in list(self._buckets.items()):
            if not bucket.lock.acquire(blocking=False):
                continue
            try:
                if now - bucket.last_refill >= self._idle_after:
                    bucket.evicted = True
                    del self._buckets[key]
            finally:
                bucket.lock.release()
        self._last_sweep = now

    def _bucket_for(self, key: str) -> _Bucket:
        bucket = self._buckets.get(key)
        if bucket is not None:
            return bucket
        with self._registry_lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                now = self._clock()
                if now - self._last_sweep >= self._idle_after:
                    self._sweep_idle(now)
                bucket = _Bucket(tokens=float(self.burst), last_refill=now)
                self._buckets[key] = bucket
            return bucket

    def admit(self, key: str) -> bool:
        while True:
            bucket = self._bucket_for(key)
            with bucket.lock:
                if bucket.evicted:
                    continue
                now = self._clock()
                elapsed = now - bucket.last_refill
                if elapsed > 0:
                    bucket.tokens = min(self.burst, bucket.tokens + elapsed * self.rate)
                    bucket.last_refill = now
                if bucket.tokens < 1:
                    return False
                bucket.tokens -= 1
                return True

    def check(self, key: str) -> None:
        if not self.admit(key):
            raise RateLimitedError()

    def __len__(self) -> int:
        return len(self._buckets)


def client_key(request: Request, trust_proxy_headers: bool = False) -> str:
    """
    Key a request by client address.

    Forwarding headers are client-controlled, so they are only read when the
    app runs behind a proxy that overwrites them.
    """
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
        real_ip = request.headers.get("x-real-ip")
        if real_ip and real_ip.strip():
            return real_ip.strip()
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self, app, limiter: RateLimiter, trust_proxy_headers: bool = False
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.trust_proxy_headers = trust_proxy_headers

    async def dispatch(self, request: Request, call_next) -> Response:
        key = client_key(request, self.trust_proxy_headers)
        if not self.limiter.admit(key):
            logger.debug("Rate limit exceeded for %s", key)
            return JSONResponse(
                status_code=429,
                content={"detail": RateLimitedError.detail_default},
            )
        return await call_next(request)
