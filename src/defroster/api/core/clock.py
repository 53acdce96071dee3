"""
Clock

Injectable time source. Every TTL, expiry and watermark decision in the engine
reads time through a Clock so tests can drive it deterministically.
"""

from __future__ import annotations

import time
from typing import Protocol

import deal


__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
]


class Clock(Protocol):
    """Source of the current time in epoch milliseconds."""

    def now(self) -> int: ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> int:
        return time.time_ns() // 1_000_000


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: int = 0) -> None:
        self._now = start

    def now(self) -> int:
        return self._now

    @deal.pre(lambda self, timestamp: timestamp >= self._now, message="Clock cannot move backwards")  # type: ignore[misc,arg-type]
    def set(self, timestamp: int) -> None:
        self._now = timestamp

    @deal.pre(lambda self, delta_ms: delta_ms >= 0, message="Clock cannot move backwards")  # type: ignore[misc,arg-type]
    def advance(self, delta_ms: int) -> None:
        self._now += delta_ms
