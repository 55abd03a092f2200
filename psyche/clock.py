"""
psyche/clock.py — Simulated millisecond clock
==============================================

Every subsystem of one instance reads time from the same ``SimClock``.
The clock never moves on its own: ``InstanceController.tick(delta_ms)``
advances it, so cooldowns, retention periods and regulation ramps are
deterministic and testable without sleeping.
"""
from __future__ import annotations

from dataclasses import dataclass


MS_PER_SECOND = 1_000
MS_PER_MINUTE = 60 * MS_PER_SECOND
MS_PER_HOUR   = 60 * MS_PER_MINUTE
MS_PER_DAY    = 24 * MS_PER_HOUR
MS_PER_YEAR   = 365 * MS_PER_DAY


@dataclass
class SimClock:
    """
    Monotonic simulated clock.

    now_ms : float
        Current simulated time in milliseconds since instance birth.
    """
    now_ms: float = 0.0

    def now(self) -> float:
        return self.now_ms

    def advance(self, delta_ms: float) -> float:
        """Move forward by ``delta_ms``. Negative deltas are rejected."""
        if delta_ms < 0:
            raise ValueError(f"clock cannot run backwards (delta={delta_ms!r})")
        self.now_ms += delta_ms
        return self.now_ms

    def advance_to(self, t_ms: float) -> float:
        """Jump forward to ``t_ms``; no-op if already past it."""
        if t_ms > self.now_ms:
            self.now_ms = t_ms
        return self.now_ms

    def since(self, t_ms: float) -> float:
        """Elapsed milliseconds since ``t_ms``."""
        return self.now_ms - t_ms
