"""
api/limiter.py -- Per-client, per-route-class token-bucket rate limiter.

Each (client IP, route class) pair owns a token bucket: it starts full at
`burst` tokens, refills continuously at `refill_per_second`, and every request
takes one token. A request that finds less than one token is denied.

    Route class  Default   Burst   Matches
    login        5/minute  5       .../auth/login
    register     3/minute  3       .../auth/register
    refresh      10/minute 10      .../auth/refresh
    write        30/minute 30      other POST/PUT/PATCH/DELETE
    read         60/minute 60      everything else

Rates are "N/period" strings from Settings, parsed with limits.parse() -- the
same notation slowapi's @limiter.limit() decorators take. The client key comes
from slowapi's get_remote_address(). slowapi's own Limiter is not used for the
decision: its strategies are window counters, and these limits need
burst-then-steady-refill semantics.

Concurrency:
  Every bucket carries its own lock, so two requests from the same client
  serialize on that bucket while unrelated clients never wait on each other.
  The registry lock is held only for the dict lookup/insert.

Memory:
  Buckets live in an LRU map capped at max_buckets. When a new client pushes
  the map over the cap, the least recently used bucket is dropped. A dropped
  client that comes back starts with a full bucket -- a bounded, acceptable
  drift for an in-memory limiter that a restart resets anyway.

enforce_rate_limit() is the FastAPI guard. Routers list it in their
dependencies so it runs before the bearer-auth guard and the handler.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from fastapi import Request, Response
from limits import parse
from slowapi.util import get_remote_address

from auth.errors import RateLimitExceeded
from core.config import Settings

logger = logging.getLogger("inkwell.api.limiter")

_WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class RouteClass(str, Enum):
    login = "login"
    register = "register"
    refresh = "refresh"
    write = "write"
    read = "read"


@dataclass(frozen=True)
class BucketPolicy:
    refill_per_second: float
    burst: int

    @classmethod
    def from_rate(cls, rate: str, burst: int | None = None) -> BucketPolicy:
        """Build a policy from an "N/period" string such as "5/minute"."""
        item = parse(rate)
        refill = item.amount / item.get_expiry()
        return cls(refill_per_second=refill, burst=burst or item.amount)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_after: int  # seconds until the next token, 0 when allowed


class _Bucket:
    __slots__ = ("tokens", "updated_at", "lock")

    def __init__(self, tokens: float, now: float) -> None:
        self.tokens = tokens
        self.updated_at = now
        self.lock = threading.Lock()


def classify_route(method: str, path: str) -> RouteClass:
    """Map an HTTP method and path to a route class."""
    path = path.rstrip("/")
    if path.endswith("/auth/login"):
        return RouteClass.login
    if path.endswith("/auth/register"):
        return RouteClass.register
    if path.endswith("/auth/refresh"):
        return RouteClass.refresh
    if method.upper() in _WRITE_METHODS:
        return RouteClass.write
    return RouteClass.read


def policies_from_settings(settings: Settings) -> dict[RouteClass, BucketPolicy]:
    return {
        RouteClass.login: BucketPolicy.from_rate(settings.rate_limit_login, settings.rate_limit_login_burst),
        RouteClass.register: BucketPolicy.from_rate(settings.rate_limit_register, settings.rate_limit_register_burst),
        RouteClass.refresh: BucketPolicy.from_rate(settings.rate_limit_refresh, settings.rate_limit_refresh_burst),
        RouteClass.write: BucketPolicy.from_rate(settings.rate_limit_write, settings.rate_limit_write_burst),
        RouteClass.read: BucketPolicy.from_rate(settings.rate_limit_read, settings.rate_limit_read_burst),
    }


class RateLimiter:
    """Usage:
    limiter = RateLimiter(policies_from_settings(settings))
    if not limiter.allow("203.0.113.9", RouteClass.login): ...
    """

    def __init__(
        self,
        policies: dict[RouteClass, BucketPolicy],
        max_buckets: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        missing = set(RouteClass) - set(policies)
        if missing:
            raise ValueError(f"No policy for route classes: {sorted(c.value for c in missing)}")
        self.policies = policies
        self.max_buckets = max_buckets
        self._clock = clock
        self._buckets: OrderedDict[tuple[str, RouteClass], _Bucket] = OrderedDict()
        self._registry_lock = threading.Lock()

    def allow(self, client_key: str, route_class: RouteClass) -> bool:
        return self.check(client_key, route_class).allowed

    def check(self, client_key: str, route_class: RouteClass) -> RateLimitDecision:
        """Take one token from the (client_key, route_class) bucket if available."""
        policy = self.policies[route_class]
        bucket = self._bucket((client_key, route_class), policy)
        with bucket.lock:
            now = self._clock()
            elapsed = max(0.0, now - bucket.updated_at)
            tokens = min(float(policy.burst), bucket.tokens + elapsed * policy.refill_per_second)
            bucket.updated_at = now
            if tokens >= 1.0:
                bucket.tokens = tokens - 1.0
                return RateLimitDecision(allowed=True, remaining=int(bucket.tokens), reset_after=0)
            bucket.tokens = tokens
            wait = math.ceil((1.0 - tokens) / policy.refill_per_second)
            return RateLimitDecision(allowed=False, remaining=0, reset_after=max(1, wait))

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._buckets)

    def _bucket(self, key: tuple[str, RouteClass], policy: BucketPolicy) -> _Bucket:
        with self._registry_lock:
            bucket = self._buckets.get(key)
            if bucket is not None:
                self._buckets.move_to_end(key)
                return bucket
            bucket = _Bucket(float(policy.burst), self._clock())
            self._buckets[key] = bucket
            while len(self._buckets) > self.max_buckets:
                self._buckets.popitem(last=False)
            return bucket


def enforce_rate_limit(request: Request, response: Response) -> None:
    """FastAPI guard: raise RateLimitExceeded when the caller's bucket is empty.

    A no-op when app.state.rate_limiter is None (RATE_LIMIT_ENABLED=false).
    """
    limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        return
    route_class = classify_route(request.method, request.url.path)
    client = get_remote_address(request)
    decision = limiter.check(client, route_class)
    if not decision.allowed:
        logger.warning("Rate limit hit: client=%s class=%s", client, route_class.value)
        raise RateLimitExceeded(remaining=decision.remaining, reset_after=decision.reset_after)
    response.headers["X-Rate-Limit-Remaining"] = str(decision.remaining)
