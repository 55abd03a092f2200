"""
psyche/config.py — Instance configuration
==========================================

Plain dataclasses whose defaults are the simulation constants.  Every
class has ``from_dict()`` so a character definition (loaded and schema
checked elsewhere) can be handed over as-is; unknown keys are ignored.
"""
from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from psyche.clock import MS_PER_DAY, MS_PER_HOUR, MS_PER_YEAR


# ── Memory pools ─────────────────────────────────────────────────────────────

POOL_SHORT_TERM = "shortTerm"
POOL_LONG_TERM  = "longTerm"
POOL_TRAUMATIC  = "traumatic"
POOL_SUPPRESSED = "suppressed"
POOL_PROCEDURAL = "procedural"

DEFAULT_RETENTION_MS = {
    POOL_SHORT_TERM: MS_PER_HOUR,
    POOL_LONG_TERM:  MS_PER_YEAR,
    POOL_TRAUMATIC:  math.inf,
    POOL_SUPPRESSED: 90 * MS_PER_DAY,
    POOL_PROCEDURAL: math.inf,
}


def _known(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class PoolConfig:
    retention_ms:        float = MS_PER_DAY
    compression_enabled: bool  = True
    auto_cleanup:        bool  = True

    @classmethod
    def for_pool(cls, pool: str, overrides: Optional[Dict[str, Any]] = None) -> "PoolConfig":
        cfg = cls(retention_ms=DEFAULT_RETENTION_MS.get(pool, MS_PER_DAY))
        for k, v in _known(cls, overrides or {}).items():
            setattr(cfg, k, v)
        return cfg


@dataclass
class MemoryConfig:
    total_capacity:    int = 10_000
    reserved_capacity: int = 1_000
    pool_configs: Dict[str, PoolConfig] = field(default_factory=dict)
    base_memories: List[Dict[str, Any]] = field(default_factory=list)
    regions:       List[Dict[str, Any]] = field(default_factory=list)

    def pool(self, pool: str) -> PoolConfig:
        cfg = self.pool_configs.get(pool)
        return cfg if cfg is not None else PoolConfig.for_pool(pool)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "MemoryConfig":
        data = dict(data or {})
        pools = {
            name: PoolConfig.for_pool(name, raw)
            for name, raw in (data.pop("pool_configs", None) or {}).items()
        }
        return cls(pool_configs=pools, **_known(cls, data))


@dataclass
class EmotionalConfig:
    base_state:    Optional[Dict[str, Any]] = None
    initial_state: Optional[Dict[str, Any]] = None
    triggers:      Optional[List[Dict[str, Any]]] = None
    decay_rate:    float = 0.02
    max_history:   int   = 50

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EmotionalConfig":
        return cls(**_known(cls, data or {}))


@dataclass
class ResourceLimits:
    cpu_max:      float = 100.0
    memory_total: float = 10_000.0
    threads_max:  int   = 16

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ResourceLimits":
        return cls(**_known(cls, data or {}))


@dataclass
class InstanceConfig:
    id:          str = "instance-0"
    name:        str = "unnamed"
    version:     str = "1.0"
    tick_rate:   int = 100           # ms per tick when tick() gets no delta
    difficulty:  str = "intermediate"
    debug_mode:  bool = False
    reboot_ms:       int = 5_000
    quick_reboot_ms: int = 1_000
    stabilize_ms:    int = 3_000
    resources: ResourceLimits  = field(default_factory=ResourceLimits)
    memory:    MemoryConfig    = field(default_factory=MemoryConfig)
    emotional: EmotionalConfig = field(default_factory=EmotionalConfig)
    base_processes: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "InstanceConfig":
        data = dict(data or {})
        resources = ResourceLimits.from_dict(data.pop("resources", None))
        memory    = MemoryConfig.from_dict(data.pop("memory", None))
        emotional = EmotionalConfig.from_dict(data.pop("emotional", None))
        return cls(resources=resources, memory=memory, emotional=emotional,
                   **_known(cls, data))


def load_config(path: Union[str, Path]) -> InstanceConfig:
    """Read a JSON character/instance file into an ``InstanceConfig``."""
    with open(path, "r", encoding="utf-8") as fh:
        return InstanceConfig.from_dict(json.load(fh))
