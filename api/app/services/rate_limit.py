"""Per-actor sliding-window burst limiter for the action endpoints.

This sits in front of the daily quota: it stops request floods, the quota
caps what a tier may spend in a day.
"""
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request


@dataclass
class RateDecision:
    allowed: bool
    retry_after_seconds: int
    remaining: int = 0


class SlidingWindowLimiter:
    def __init__(self, clock=time.monotonic) -> None:
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()
        self._clock = clock

    def check(self, key: str, limit: int, window_seconds: int) -> RateDecision:
        now = self._clock()
        cutoff = now - window_seconds
        with self._lock:
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if len(hits) >= limit:
                wait = max(1, int(hits[0] + window_seconds - now))
                return RateDecision(allowed=False, retry_after_seconds=wait)
            hits.append(now)
            return RateDecision(allowed=True, retry_after_seconds=0, remaining=limit - len(hits))

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()


limiter = SlidingWindowLimiter()


def _caller_key(request: Request) -> str:
    actor = request.headers.get("x-actor-user-id", "").strip().lower()
    if actor:
        return f"actor:{actor}"
    forwarded = request.headers.get("x-forwarded-for", "").strip()
    if forwarded:
        return f"ip:{forwarded.split(',')[0].strip()}"
    if request.client and request.client.host:
        return f"ip:{request.client.host}"
    return "unknown"


def rate_limit_dependency(route_key: str, limit: int, window_seconds: int):
    def _dep(request: Request) -> None:
        decision = limiter.check(f"{route_key}:{_caller_key(request)}", limit=limit, window_seconds=window_seconds)
        if not decision.allowed:
            raise HTTPException(
                status_code=429,
                detail=f"Too many match actions. Retry in {decision.retry_after_seconds}s",
                headers={"Retry-After": str(decision.retry_after_seconds)},
            )

    return Depends(_dep)
