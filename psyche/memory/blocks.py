"""
psyche/memory/blocks.py — Memory blocks, pools, capacity ledger
================================================================

    MemoryBlock    — one simulated memory, owned by exactly one pool
    MemoryPool     — retention bucket (shortTerm / longTerm / traumatic /
                     suppressed / procedural) with its own size accounting
    MemoryCapacity — total / allocated / available / reserved
    AccessPattern  — retrieval bookkeeping that feeds leak detection

Invariant kept by ``MemoryCapacity.recount``:
    allocated + available == total
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from psyche.config import (
    POOL_LONG_TERM,
    POOL_PROCEDURAL,
    POOL_SHORT_TERM,
    POOL_SUPPRESSED,
    POOL_TRAUMATIC,
    PoolConfig,
)


POOL_TYPES = (POOL_SHORT_TERM, POOL_LONG_TERM, POOL_TRAUMATIC,
              POOL_SUPPRESSED, POOL_PROCEDURAL)

BASE_SIZE          = 100
PER_DESCRIPTION    = 2
PER_SENSORY_DETAIL = 50
PER_EMOTION        = 10
COMPRESSION_RATIO  = 0.7
CORRUPTED_BELOW    = 0.3    # integrity under which a block is flagged corrupted
DAMAGED_BELOW      = 0.5    # integrity under which a block counts as a corrupted region


def calculate_memory_size(data: Dict[str, Any]) -> int:
    """
    Size in ledger units.

    (100 + 2·len(description) + 50·sensory details + 10·emotions) × (1 + intensity)
    """
    size = float(BASE_SIZE)
    size += len(data.get("description") or "") * PER_DESCRIPTION
    size += len(data.get("sensory_details") or {}) * PER_SENSORY_DETAIL
    size += len(data.get("emotions") or []) * PER_EMOTION
    intensity = data.get("emotional_intensity") or 0.0
    size *= 1.0 + intensity
    return int(round(size))


def structure_content(data: Dict[str, Any], pool: str, now: float) -> Dict[str, Any]:
    """Pool-specific content layout stored on the block."""
    content: Dict[str, Any] = {
        "narrative":        data.get("description") or "",
        "sensory_data":     dict(data.get("sensory_details") or {}),
        "contextual_info":  dict(data.get("context") or {}),
        "temporal_marker":  data.get("timestamp", now),
    }
    if pool == POOL_TRAUMATIC:
        content.update(
            trigger_warnings=list(data.get("triggers") or []),
            avoidance_patterns=list(data.get("avoidance_patterns") or []),
            flashback_potential=data.get("flashback_risk", 0.5),
            dissociation_level=data.get("dissociation_level", 0.0),
            processing_status="unprocessed",
            therapeutic_notes=[],
        )
    elif pool == POOL_PROCEDURAL:
        content.update(
            skill_level=data.get("skill_level", 0.0),
            steps=list(data.get("procedure_steps") or []),
            muscle_memory=data.get("muscle_memory", 0.0),
        )
    elif pool == POOL_SUPPRESSED:
        content.update(
            suppression_level=data.get("suppression_level", 0.8),
            access_difficulty=data.get("access_difficulty", 0.9),
            suppression_mechanism=data.get("suppression_mechanism", "emotional_blocking"),
            recovery_triggers=list(data.get("recovery_triggers") or []),
        )
    return content


def intensity_bucket(charge: float) -> str:
    if charge < 0.3:
        return "low"
    if charge < 0.7:
        return "medium"
    return "high"


# ── Access bookkeeping ───────────────────────────────────────────────────────

@dataclass
class AccessPattern:
    frequency:   int = 0
    last_access: Optional[float] = None
    intervals:   List[float] = field(default_factory=list)

    def record(self, now: float) -> None:
        self.frequency += 1
        if self.last_access is not None:
            self.intervals.append(now - self.last_access)
        self.last_access = now

    def to_dict(self) -> dict:
        return {"frequency": self.frequency, "last_access": self.last_access,
                "intervals": list(self.intervals)}

    @classmethod
    def from_dict(cls, d: dict) -> "AccessPattern":
        return cls(frequency=d.get("frequency", 0), last_access=d.get("last_access"),
                   intervals=list(d.get("intervals", [])))


# ── Block ────────────────────────────────────────────────────────────────────

@dataclass
class MemoryBlock:
    id:    str
    type:  str
    size:  int
    emotional_charge:    float
    associated_emotions: List[str]
    content:       Dict[str, Any]
    created_at:    float
    last_accessed: float
    access_count:  int   = 0
    integrity_score:     float = 1.0
    coherence_level:     float = 1.0
    emotional_stability: float = 1.0
    fragmented: bool = False
    compressed: bool = False
    corrupted:  bool = False
    protected:  bool = False
    region: Optional[Dict[str, Any]] = None
    debuggable: bool = True

    @property
    def description(self) -> str:
        return self.content.get("narrative", "")

    @property
    def damaged(self) -> bool:
        """Counts towards the instance's corrupted-region total."""
        return self.corrupted or self.integrity_score < DAMAGED_BELOW

    def index_keys(self) -> List[str]:
        bucket = intensity_bucket(self.emotional_charge)
        keys: List[str] = []
        for emotion in self.associated_emotions:
            keys.append(emotion)
            keys.append(f"{emotion}_{bucket}")
        return keys

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_accessed = now

    def damage(self, amount: float) -> None:
        self.integrity_score = max(0.0, self.integrity_score - amount)
        self.emotional_stability = max(0.0, self.emotional_stability - amount)
        self.fragmented = True
        if self.integrity_score < CORRUPTED_BELOW:
            self.corrupted = True

    def compress(self) -> None:
        self.compressed = True
        self.size = int(round(self.size * COMPRESSION_RATIO))

    def to_dict(self) -> dict:
        return {
            "id":    self.id,
            "type":  self.type,
            "size":  self.size,
            "emotional_charge":    self.emotional_charge,
            "associated_emotions": list(self.associated_emotions),
            "content":       copy.deepcopy(self.content),
            "created_at":    self.created_at,
            "last_accessed": self.last_accessed,
            "access_count":  self.access_count,
            "integrity_score":     self.integrity_score,
            "coherence_level":     self.coherence_level,
            "emotional_stability": self.emotional_stability,
            "fragmented": self.fragmented,
            "compressed": self.compressed,
            "corrupted":  self.corrupted,
            "protected":  self.protected,
            "region":     copy.deepcopy(self.region),
            "debuggable": self.debuggable,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "MemoryBlock":
        return cls(**copy.deepcopy(d))


# ── Pool ─────────────────────────────────────────────────────────────────────

class MemoryPool:
    """Ordered id → block map plus the pool's retention policy."""

    def __init__(self, name: str, config: PoolConfig) -> None:
        self.name   = name
        self.config = config
        self.blocks: Dict[str, MemoryBlock] = {}

    @property
    def size(self) -> int:
        return sum(b.size for b in self.blocks.values())

    @property
    def never_expires(self) -> bool:
        return self.config.retention_ms == float("inf")

    def expired(self, block: MemoryBlock, now: float) -> bool:
        return not self.never_expires and now - block.created_at > self.config.retention_ms

    def __len__(self) -> int:
        return len(self.blocks)

    def summary(self) -> dict:
        return {
            "count": len(self.blocks),
            "size":  self.size,
            "retention_ms": self.config.retention_ms,
            "compression_enabled": self.config.compression_enabled,
            "auto_cleanup": self.config.auto_cleanup,
        }


# ── Capacity ledger ──────────────────────────────────────────────────────────

@dataclass
class MemoryCapacity:
    total:     int
    reserved:  int
    allocated: int = 0
    available: int = 0

    def __post_init__(self) -> None:
        self.available = self.total - self.allocated

    def can_fit(self, size: int) -> bool:
        return self.available >= size

    def recount(self, blocks: Iterable[MemoryBlock]) -> None:
        self.allocated = sum(b.size for b in blocks)
        self.available = self.total - self.allocated

    @property
    def under_reserve(self) -> bool:
        return self.available < self.reserved

    def to_dict(self) -> dict:
        return {
            "total":     self.total,
            "allocated": self.allocated,
            "available": self.available,
            "reserved":  self.reserved,
        }
