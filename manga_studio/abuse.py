"""Cooldown for users who keep submitting regions without any readable text."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, Tuple

from .ratelimit import Clock

logger = logging.getLogger(__name__)

STRIKE_WINDOW_SECONDS = 10 * 60
MAX_STRIKES = 3
BLOCK_SECONDS = 30 * 60


@dataclass
class _Strikes:
    count: int
    last_at: float
    blocked_until: float = 0.0


class EmptyResultTracker:
    """Counts consecutive empty OCR passes; the last strike in the window starts a cooldown."""

    def __init__(
        self,
        clock: Clock = time.time,
        window_seconds: float = STRIKE_WINDOW_SECONDS,
        max_strikes: int = MAX_STRIKES,
        block_seconds: float = BLOCK_SECONDS,
    ) -> None:
        self._clock = clock
        self._window_seconds = window_seconds
        self._max_strikes = max_strikes
        self._block_seconds = block_seconds
        self._lock = threading.Lock()
        self._strikes: Dict[str, _Strikes] = {}

    def is_blocked(self, user_id: str) -> Tuple[bool, float]:
        with self._lock:
            strikes = self._strikes.get(user_id)
            if strikes is not None and strikes.blocked_until > self._clock():
                return True, strikes.blocked_until
            return False, 0.0

    def note_empty(self, user_id: str) -> Tuple[int, float]:
        """Return the current streak and, when it tripped, the end of the cooldown."""
        with self._lock:
            now = self._clock()
            strikes = self._strikes.get(user_id)
            if strikes is None:
                strikes = self._strikes[user_id] = _Strikes(count=0, last_at=now)
            consecutive = strikes.count + 1 if now - strikes.last_at <= self._window_seconds else 1
            strikes.count = consecutive
            strikes.last_at = now
            if consecutive >= self._max_strikes:
                strikes.blocked_until = now + self._block_seconds
                strikes.count = 0
                logger.warning("User %s blocked until %.0f after repeated empty OCR", user_id, strikes.blocked_until)
                return self._max_strikes, strikes.blocked_until
            return consecutive, 0.0

    def reset(self, user_id: str) -> None:
        with self._lock:
            strikes = self._strikes.get(user_id)
            if strikes is None:
                return
            strikes.count = 0
            strikes.blocked_until = 0.0

    def prune(self) -> int:
        """Drop users whose streak has expired and who are not in a cooldown."""
        with self._lock:
            now = self._clock()
            stale = [
                user_id
                for user_id, strikes in self._strikes.items()
                if strikes.blocked_until <= now and now - strikes.last_at > self._window_seconds
            ]
            for user_id in stale:
                del self._strikes[user_id]
            return len(stale)


__all__ = ["EmptyResultTracker", "STRIKE_WINDOW_SECONDS", "MAX_STRIKES", "BLOCK_SECONDS"]
