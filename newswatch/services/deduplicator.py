"""
SignalDeduplicator - Suppresses repeated correlation signals.

A key marked as seen is reported as a duplicate until its suppression
window (30 minutes by default) has elapsed. Expired keys are swept lazily
on every lookup, so no timers are needed.
"""

import time
from datetime import timedelta
from typing import Any, Callable

from loguru import logger


class SignalDeduplicator:
    """
    Time-windowed set of recently emitted signal keys.

    Usage:
        dedup = SignalDeduplicator()

        if not dedup.is_duplicate(key):
            emit(signal)
            dedup.mark_seen(key)
    """

    def __init__(
        self,
        window: timedelta = timedelta(minutes=30),
        clock: Callable[[], float] = time.monotonic,
        debug: bool = False,
    ):
        self._window = window.total_seconds()
        self._clock = clock
        self._expires_at: dict[str, float] = {}
        self._debug = debug
        self._stats = DeduplicatorStats()

    def is_duplicate(self, key: str) -> bool:
        """True while ``key`` is inside its suppression window."""
        self._sweep()
        if key in self._expires_at:
            self._stats.suppressed += 1
            self._log(f"SUPPRESS: {key[:50]}")
            return True
        return False

    def mark_seen(self, key: str) -> None:
        """Start (or restart) the suppression window for ``key``."""
        self._expires_at[key] = self._clock() + self._window
        self._stats.emitted += 1
        self._log(f"SEEN: {key[:50]}")

    def clear(self) -> None:
        self._expires_at.clear()

    def _sweep(self) -> None:
        now = self._clock()
        expired = [k for k, expires in self._expires_at.items() if expires <= now]
        for key in expired:
            del self._expires_at[key]
        if expired:
            self._log(f"EXPIRE: {len(expired)} keys")

    def __len__(self) -> int:
        self._sweep()
        return len(self._expires_at)

    def get_stats(self) -> "DeduplicatorStats":
        self._stats.active = len(self)
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[SignalDeduplicator] {message}")


class DeduplicatorStats:
    """Statistics for signal deduplication."""

    def __init__(self):
        self.emitted: int = 0
        self.suppressed: int = 0
        self.active: int = 0

    @property
    def suppression_rate(self) -> float:
        total = self.emitted + self.suppressed
        if total == 0:
            return 0.0
        return self.suppressed / total

    def to_dict(self) -> dict[str, Any]:
        return {
            "emitted": self.emitted,
            "suppressed": self.suppressed,
            "active": self.active,
            "suppression_rate": f"{self.suppression_rate:.2%}",
        }
