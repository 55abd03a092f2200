"""
psyche/memory/scoring.py — Value, corruption risk, leak heuristics
===================================================================

Pure functions of a block (and the current time).  The ledger uses them
to decide what to evict under pressure and what to report as leaked.

    value           = 0.4·charge + min(access/10, 0.3) + 0.2·integrity
                      + 0.1·(emotions/5), capped at 1
    corruption_risk = min(1, 0.3·age/1y + max(0, (access − 100)/1000)
                      + 0.4·(1 − emotional_stability) + 0.2·fragmented)
    leak_score      = 0.4·min(age/1h, 1) + 0.3·min(idle/30min, 1)
                      + 0.2·max(0, (5 − access)/5) + 0.1·max(0, (0.5 − charge)/0.5),
                      capped at 1
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List

from psyche.clock import MS_PER_HOUR, MS_PER_MINUTE, MS_PER_YEAR
from psyche.config import POOL_SHORT_TERM
from psyche.memory.blocks import MemoryBlock


LOW_VALUE_THRESHOLD = 0.3
GC_VALUE_THRESHOLD  = 0.5

LEAK_MIN_AGE_MS    = 30 * MS_PER_MINUTE
LEAK_MIN_IDLE_MS   = 10 * MS_PER_MINUTE
LEAK_MAX_ACCESSES  = 3
LEAK_MAX_CHARGE    = 0.3

LEAK_AGE_WEIGHT    = 0.4
LEAK_IDLE_WEIGHT   = 0.3
LEAK_ACCESS_WEIGHT = 0.2
LEAK_CHARGE_WEIGHT = 0.1
LEAK_AGE_SCALE_MS  = MS_PER_HOUR
LEAK_IDLE_SCALE_MS = 30 * MS_PER_MINUTE
LEAK_ACCESS_SCALE  = 5
LEAK_CHARGE_SCALE  = 0.5


def memory_value(block: MemoryBlock) -> float:
    value = block.emotional_charge * 0.4
    value += min(block.access_count / 10, 0.3)
    value += block.integrity_score * 0.2
    value += (len(block.associated_emotions) / 5) * 0.1
    return min(value, 1.0)


def corruption_risk(block: MemoryBlock, now: float) -> float:
    risk = max(0.0, now - block.created_at) / MS_PER_YEAR * 0.3
    risk += max(0.0, (block.access_count - 100) / 1000)
    risk += (1.0 - block.emotional_stability) * 0.4
    if block.fragmented:
        risk += 0.2
    return min(risk, 1.0)


# ── Leak detection ───────────────────────────────────────────────────────────

def is_leak_candidate(block: MemoryBlock, now: float) -> bool:
    return (
        now - block.created_at > LEAK_MIN_AGE_MS
        and now - block.last_accessed > LEAK_MIN_IDLE_MS
        and block.access_count < LEAK_MAX_ACCESSES
        and block.emotional_charge < LEAK_MAX_CHARGE
        and block.type == POOL_SHORT_TERM
    )


def leak_score(block: MemoryBlock, now: float) -> float:
    age  = min(1.0, max(0.0, now - block.created_at) / LEAK_AGE_SCALE_MS)
    idle = min(1.0, max(0.0, now - block.last_accessed) / LEAK_IDLE_SCALE_MS)
    low_access = max(0.0, (LEAK_ACCESS_SCALE - block.access_count) / LEAK_ACCESS_SCALE)
    low_charge = max(0.0, (LEAK_CHARGE_SCALE - block.emotional_charge) / LEAK_CHARGE_SCALE)
    score = (LEAK_AGE_WEIGHT * age
             + LEAK_IDLE_WEIGHT * idle
             + LEAK_ACCESS_WEIGHT * low_access
             + LEAK_CHARGE_WEIGHT * low_charge)
    return min(score, 1.0)


@dataclass
class LeakReport:
    id:           str
    age_ms:       float
    access_count: int
    size:         int
    leak_score:   float

    def to_dict(self) -> dict:
        return {
            "id":           self.id,
            "type":         "potential_leak",
            "age_ms":       self.age_ms,
            "access_count": self.access_count,
            "size":         self.size,
            "leak_score":   self.leak_score,
        }


def detect_leaks(blocks: Iterable[MemoryBlock], now: float) -> List[LeakReport]:
    """Leak candidates, highest score first."""
    reports = [
        LeakReport(
            id=b.id,
            age_ms=now - b.created_at,
            access_count=b.access_count,
            size=b.size,
            leak_score=leak_score(b, now),
        )
        for b in blocks if is_leak_candidate(b, now)
    ]
    reports.sort(key=lambda r: r.leak_score, reverse=True)
    return reports
