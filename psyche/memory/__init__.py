"""
psyche.memory
=============
Memory ledger: pooled allocation, emotional indexes, leak detection and
eviction under pressure.

Exports:
    MemoryLedger     — per-instance memory subsystem (allocate, retrieve, tick)
    MemoryBlock      — one simulated memory
    MemoryPool       — retention bucket with its own size accounting
    MemoryCapacity   — total / allocated / available / reserved ledger
    AccessPattern    — retrieval bookkeeping
    LeakReport       — one leak candidate with its score
"""

from .blocks  import (MemoryBlock, MemoryPool, MemoryCapacity, AccessPattern,
                      POOL_TYPES, calculate_memory_size)
from .scoring import LeakReport, corruption_risk, leak_score, memory_value
from .ledger  import MemoryLedger

__all__ = [
    "MemoryLedger",
    "MemoryBlock",
    "MemoryPool",
    "MemoryCapacity",
    "AccessPattern",
    "POOL_TYPES",
    "calculate_memory_size",
    "LeakReport",
    "corruption_risk",
    "leak_score",
    "memory_value",
]
