"""Sliding-window rate limiting keyed by user or client address."""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Mapping

Clock = Callable[[], float]

DEFAULT_WINDOW_SECONDS = 60.0


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float


class SlidingWindowRateLimiter:
    """Keeps the timestamps of recent hits per key and evicts them once they age out."""

    def __init__(self, clock: Clock = time.time, sweep_seconds: float = DEFAULT_WINDOW_SECONDS) -> None:
        self._clock = clock
        self._sweep_seconds = sweep_seconds
        self._lock = threading.Lock()
        self._hits: Dict[str, Deque[float]] = {}
        self._windows: Dict[str, float] = {}
        self._last_sweep = clock()

    def _evict(self, key: str, now: float, window_seconds: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        while hits and hits[0] <= now - window_seconds:
            hits.popleft()
        if not hits:
            del self._hits[key]
            self._windows.pop(key, None)
        return hits

    def _prune_locked(self, now: float) -> int:
        stale = [
            key
            for key, hits in self._hits.items()
            if not hits or hits[-1] <= now - self._windows.get(key, DEFAULT_WINDOW_SECONDS)
        ]
        for key in stale:
            del self._hits[key]
            self._windows.pop(key, None)
        self._last_sweep = now
        return len(stale)

    def _maybe_sweep(self, now: float) -> None:
        if now - self._last_sweep >= self._sweep_seconds:
            self._prune_locked(now)

    def prune(self) -> int:
        """Drop every key whose newest hit has left its window."""
        with self._lock:
            return self._prune_locked(self._clock())

    def _decide(self, hits: Deque[float], now: float, max_requests: int, window_seconds: float) -> RateLimitDecision:
        reset_at = (hits[0] if hits else now) + window_seconds
        remaining = max(0, max_requests - len(hits))
        return RateLimitDecision(allowed=remaining > 0, remaining=remaining, reset_at=reset_at)

    def check(self, key: str, max_requests: int, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            return self._decide(self._evict(key, now, window_seconds), now, max_requests, window_seconds)

    def record(self, key: str, max_requests: int, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            self._evict(key, now, window_seconds)
            hits = self._hits.setdefault(key, deque())
            self._windows[key] = window_seconds
            hits.append(now)
            decision = self._decide(hits, now, max_requests, window_seconds)
            return RateLimitDecision(
                allowed=len(hits) <= max_requests,
                remaining=decision.remaining,
                reset_at=decision.reset_at,
            )

    def hit(self, key: str, max_requests: int, window_seconds: float = DEFAULT_WINDOW_SECONDS) -> RateLimitDecision:
        """Record the request when quota remains; report the post-hit quota either way."""
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            hits = self._evict(key, now, window_seconds)
            if len(hits) >= max_requests:
                return RateLimitDecision(allowed=False, remaining=0, reset_at=hits[0] + window_seconds)
            hits = self._hits.setdefault(key, hits)
            self._windows[key] = window_seconds
            hits.append(now)
            decision = self._decide(hits, now, max_requests, window_seconds)
            return RateLimitDecision(allowed=True, remaining=decision.remaining, reset_at=decision.reset_at)

    def __len__(self) -> int:
        return len(self._hits)


def ratelimit_headers(remaining: int, reset_at: float) -> Dict[str, str]:
    return {
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(math.ceil(reset_at)),
    }


def client_ip(headers: Mapping[str, str]) -> str:
    """Best-effort origin address behind proxies and CDNs."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for header in ("cf-connecting-ip", "x-real-ip", "x-client-ip"):
        value = headers.get(header)
        if value:
            return value
    return "unknown"


__all__ = ["Clock", "RateLimitDecision", "SlidingWindowRateLimiter", "ratelimit_headers", "client_ip"]
