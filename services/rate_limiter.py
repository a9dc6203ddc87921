# services/rate_limiter.py

"""
Fixed-window request rate limiter.

Each caller is identified by a fingerprint of its IP + user-agent and
counted separately per endpoint. Counters live in a RateLimitStore; the
default in-memory store is per process and is lost on restart, so
multi-process deployments need a shared store behind the same interface.

If anything inside the limiter fails, check() lets the request through
(fail open) and says so on the result.
"""

import hashlib
import logging
import math
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    window_ms: int
    max_requests: int


DEFAULT_ENDPOINT = "default"

FAIL_OPEN_STORE = "store"
FAIL_OPEN_INTERNAL = "internal"

DEFAULT_ENDPOINT_CONFIGS: Dict[str, RateLimitConfig] = {
    "login": RateLimitConfig(window_ms=15 * 60 * 1000, max_requests=5),
    "register": RateLimitConfig(window_ms=60 * 60 * 1000, max_requests=3),
    DEFAULT_ENDPOINT: RateLimitConfig(window_ms=60 * 1000, max_requests=60),
}


@dataclass
class RateLimitRecord:
    count: int
    reset_time: float  # epoch ms


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    retry_after: Optional[int] = None
    remaining: Optional[int] = None
    fail_open: bool = False
    fail_open_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success}
        if self.retry_after is not None:
            out["retryAfter"] = self.retry_after
        if self.remaining is not None:
            out["remaining"] = self.remaining
        return out


@dataclass(frozen=True)
class RateLimitStatus:
    remaining: int
    reset_time: float


class RateLimitStoreError(Exception):
    """The backing store could not be read or written."""


# --------------------------------------------------
# Stores
# --------------------------------------------------

class RateLimitStore:
    def get(self, key: str) -> Optional[RateLimitRecord]:
        raise NotImplementedError

    def set(self, key: str, record: RateLimitRecord) -> None:
        raise NotImplementedError

    def delete_expired(self, now_ms: float) -> int:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class InMemoryRateLimitStore(RateLimitStore):
    def __init__(self) -> None:
        self._records: Dict[str, RateLimitRecord] = {}

    def get(self, key: str) -> Optional[RateLimitRecord]:
        return self._records.get(key)

    def set(self, key: str, record: RateLimitRecord) -> None:
        self._records[key] = record

    def delete_expired(self, now_ms: float) -> int:
        expired = [k for k, r in self._records.items() if now_ms > r.reset_time]
        for k in expired:
            del self._records[k]
        return len(expired)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


# --------------------------------------------------
# Caller identity
# --------------------------------------------------

def client_ip(request: Any) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or "unknown"
    client = getattr(request, "client", None)
    if client is not None and client.host:
        return client.host
    return "unknown"


def fingerprint(ip: str, user_agent: str) -> str:
    return hashlib.sha256(f"{ip}:{user_agent}".encode("utf-8")).hexdigest()[:16]


def request_key(request: Any, endpoint: Optional[str] = None) -> str:
    user_agent = request.headers.get("user-agent") or "unknown"
    return f"{endpoint or DEFAULT_ENDPOINT}:{fingerprint(client_ip(request), user_agent)}"


# --------------------------------------------------
# Limiter
# --------------------------------------------------

class RateLimiter:
    def __init__(
        self,
        store: Optional[RateLimitStore] = None,
        configs: Optional[Dict[str, RateLimitConfig]] = None,
        cleanup_probability: float = 0.1,
        clock: Callable[[], float] = time.time,
        rng: Callable[[], float] = random.random,
    ):
        self.store = store if store is not None else InMemoryRateLimitStore()
        self.configs = dict(configs if configs is not None else DEFAULT_ENDPOINT_CONFIGS)
        self.configs.setdefault(DEFAULT_ENDPOINT, DEFAULT_ENDPOINT_CONFIGS[DEFAULT_ENDPOINT])
        self.cleanup_probability = cleanup_probability
        self._clock = clock
        self._rng = rng
        self._lock = threading.Lock()

    def config_for(self, endpoint: Optional[str]) -> RateLimitConfig:
        return self.configs.get(endpoint or DEFAULT_ENDPOINT) or self.configs[DEFAULT_ENDPOINT]

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def check(self, request: Any, endpoint: Optional[str] = None) -> RateLimitResult:
        """
        Count one request for this caller + endpoint.

        Returns a granted result with `remaining`, or a denied one with
        `retry_after` seconds. Any fault inside the limiter grants the
        request with `fail_open` set; `fail_open_reason` tells a store
        outage ("store") from anything else ("internal").
        """
        key = f"{endpoint or DEFAULT_ENDPOINT}:?"
        try:
            config = self.config_for(endpoint)
            key = request_key(request, endpoint)
            with self._lock:
                now = self._now_ms()
                if self._rng() < self.cleanup_probability:
                    self.store.delete_expired(now)
                return self._count(key, config, now)
        except RateLimitStoreError as e:
            logger.error("[rate_limiter] Store error, allowing request %s: %s", key, e)
            return RateLimitResult(success=True, fail_open=True, fail_open_reason=FAIL_OPEN_STORE)
        except Exception:
            logger.exception("[rate_limiter] Internal error, allowing request %s", key)
            return RateLimitResult(success=True, fail_open=True, fail_open_reason=FAIL_OPEN_INTERNAL)

    def _count(self, key: str, config: RateLimitConfig, now: float) -> RateLimitResult:
        record = self.store.get(key)

        if record is None or now > record.reset_time:
            self.store.set(key, RateLimitRecord(count=1, reset_time=now + config.window_ms))
            return RateLimitResult(success=True, remaining=config.max_requests - 1)

        if record.count >= config.max_requests:
            retry_after = math.ceil((record.reset_time - now) / 1000)
            return RateLimitResult(success=False, retry_after=retry_after)

        record = RateLimitRecord(count=record.count + 1, reset_time=record.reset_time)
        self.store.set(key, record)
        return RateLimitResult(success=True, remaining=config.max_requests - record.count)

    def status(self, request: Any, endpoint: Optional[str] = None) -> Optional[RateLimitStatus]:
        """Remaining requests and window reset time, or None if never seen."""
        key = request_key(request, endpoint)
        with self._lock:
            record = self.store.get(key)
        if record is None:
            return None

        config = self.config_for(endpoint)
        return RateLimitStatus(
            remaining=max(0, config.max_requests - record.count),
            reset_time=record.reset_time,
        )

    def reset(self) -> None:
        with self._lock:
            self.store.clear()
