"""
psyche/memory/ledger.py — MemoryLedger
=======================================

Pooled, indexed storage of a character's memories with simulated
capacity pressure.

Allocation:
    size = (100 + 2·desc + 50·sensory + 10·emotions) × (1 + intensity)
    available < size → None, and the pressure chain runs

Pressure chain (allocation failure, or a tick below the reserve):
    1. cleanup_expired_memories   — past the pool's retention, unprotected
    2. compress_old_memories      — older than 1h, non-traumatic, ×0.7 once
    3. cleanup_low_value_memories — value < 0.3, unprotected
    4. force_garbage_collection   — value < 0.5, only if still under reserve

Every mutation ends with ``update_capacity_metrics()`` so
``allocated + available == total`` holds between calls.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from psyche.clock import MS_PER_HOUR, MS_PER_MINUTE, SimClock
from psyche.config import (
    POOL_LONG_TERM,
    POOL_PROCEDURAL,
    POOL_SHORT_TERM,
    POOL_TRAUMATIC,
    MemoryConfig,
)
from psyche.errors import (
    MemoryBlockNotFoundError,
    NotInitializedError,
    PsycheError,
    UnknownSubsystemActionError,
)
from psyche.memory.blocks import (
    CORRUPTED_BELOW,
    POOL_TYPES,
    AccessPattern,
    MemoryBlock,
    MemoryCapacity,
    MemoryPool,
    calculate_memory_size,
    structure_content,
)
from psyche.memory.scoring import (
    GC_VALUE_THRESHOLD,
    LOW_VALUE_THRESHOLD,
    LeakReport,
    corruption_risk,
    detect_leaks,
    memory_value,
)
from psyche.syslog import LEVEL_DEBUG, LEVEL_WARNING, NullSystemLog, SystemLog

log = logging.getLogger(__name__)


COMPRESSION_AGE_MS     = MS_PER_HOUR
DEFRAG_THRESHOLD       = 0.3
FRAGMENTATION_HIGH     = 0.6
PRESSURE_CRITICAL_PCT  = 10
PRESSURE_WARNING_PCT   = 20
LEAK_EVENT_COUNT       = 5
MAINTENANCE_INTERVAL_MS = MS_PER_MINUTE

REGION_POOLS = {
    "episodic":   POOL_LONG_TERM,
    "emotional":  POOL_TRAUMATIC,
    "semantic":   POOL_PROCEDURAL,
    "procedural": POOL_PROCEDURAL,
}

_CAMEL_KEYS = {
    "emotionalIntensity": "emotional_intensity",
    "sensoryDetails":     "sensory_details",
    "timeStamp":          "timestamp",
    "flashbackRisk":      "flashback_risk",
    "procedureSteps":     "procedure_steps",
}


def _normalize(data: Dict[str, Any]) -> Dict[str, Any]:
    return {_CAMEL_KEYS.get(k, k): v for k, v in data.items()}


def region_emotions(region_type: str, label: str) -> List[str]:
    label = label.lower()
    if region_type == "episodic":
        return ["love", "nostalgia", "grief"] if "memor" in label else ["nostalgia", "contentment"]
    if region_type == "emotional":
        return ["grief", "sadness", "despair", "anger"] if "grief" in label else ["anxiety", "fear"]
    if region_type == "semantic":
        return ["pride", "satisfaction"]
    if region_type == "procedural":
        return ["confidence", "determination"]
    return []


class MemoryLedger:
    """
    Memory subsystem of one instance.

    Parameters
    ----------
    clock : SimClock
        Shared simulation clock.
    config : MemoryConfig, optional
        Capacity, pool policies, base memories and regions.
    system_log : SystemLog, optional
        Gameplay log sink; defaults to a no-op.
    """

    def __init__(
        self,
        clock: SimClock,
        config: Optional[MemoryConfig] = None,
        system_log: Optional[SystemLog] = None,
    ) -> None:
        self.clock      = clock
        self.config     = config or MemoryConfig()
        self.system_log = system_log if system_log is not None else NullSystemLog()

        self.pools: Dict[str, MemoryPool] = {
            name: MemoryPool(name, self.config.pool(name)) for name in POOL_TYPES
        }
        self.segments: Dict[str, MemoryBlock] = {}
        # key → ordered set of block ids (dict with None values)
        self.indexes: Dict[str, Dict[str, None]] = {}
        self.access_patterns: Dict[str, AccessPattern] = {}
        self.capacity = MemoryCapacity(total=self.config.total_capacity,
                                       reserved=self.config.reserved_capacity)
        self.fragmentation_level = 0.0
        self.leaks: List[LeakReport] = []
        self.initialized = False
        self._seq = 0
        self._last_maintenance: Optional[float] = None

    # ── setup ────────────────────────────────────────────────────────────────

    def initialize(self) -> None:
        for memory in self.config.base_memories:
            self._load_base_memory(memory)
        for region in self.config.regions:
            self._load_region(region)
        self.update_capacity_metrics()
        self.initialized = True
        log.info("memory ledger initialized: %d blocks, %d/%d units",
                 len(self.segments), self.capacity.allocated, self.capacity.total)

    def _load_base_memory(self, memory: Dict[str, Any]) -> None:
        data = _normalize(memory)
        data.setdefault("emotional_intensity", 0.5)
        block_id = self.allocate_memory(data, data.get("type", POOL_LONG_TERM))
        if block_id is None:
            log.warning("failed to load base memory: %.50s", data.get("description", ""))

    def _load_region(self, region: Dict[str, Any]) -> None:
        region_type = region.get("type", "episodic")
        label = region.get("label", "unnamed region")
        pool = REGION_POOLS.get(region_type, POOL_LONG_TERM)
        data = {
            "description": f"{label} - Memory region containing {region_type} memories",
            "emotional_intensity": region.get("corruptionRisk", region.get("corruption_risk", 0.5)),
            "emotions": region.get("emotions") or region_emotions(region_type, label),
            "context": {"address": region.get("address"), "region_type": region_type},
        }
        block_id = self.allocate_memory(data, pool, region=region)
        if block_id is None:
            log.warning("failed to load memory region: %s", label)
            return
        for memory in region.get("memories", []):
            detail = _normalize(memory)
            detail.setdefault("context", {})["region_source"] = label
            self.allocate_memory(detail, pool)

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise NotInitializedError("MemoryLedger not initialized", source="memory")

    # ── allocation ───────────────────────────────────────────────────────────

    def allocate_memory(self, data: Dict[str, Any], pool_type: str = POOL_SHORT_TERM,
                        region: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Store a memory; return its id, or None when capacity is short.

        A failed allocation runs the pressure chain but is not retried.
        """
        if pool_type not in self.pools:
            raise PsycheError(f"Unknown memory pool: {pool_type}", source="memory")
        data = _normalize(data or {})
        size = calculate_memory_size(data)
        if not self.capacity.can_fit(size):
            log.warning("allocation of %d units failed (%d available)",
                        size, self.capacity.available)
            self.trigger_memory_pressure()
            return None

        now = self.clock.now()
        self._seq += 1
        block = MemoryBlock(
            id=f"mem_{self._seq}",
            type=pool_type,
            size=size,
            emotional_charge=data.get("emotional_intensity") or 0.0,
            associated_emotions=list(data.get("emotions") or []),
            content=structure_content(data, pool_type, now),
            created_at=now,
            last_accessed=now,
            protected=pool_type == POOL_TRAUMATIC,
            region=dict(region) if region else None,
        )
        self.pools[pool_type].blocks[block.id] = block
        self.segments[block.id] = block
        self._index(block)
        self.update_capacity_metrics()

        self.system_log.push(
            now, LEVEL_DEBUG,
            f"Allocated {size} units for {pool_type} memory: {block.id}",
            "memory_management", memory_id=block.id,
        )
        log.debug("allocated %s (%s, %d units)", block.id, pool_type, size)
        return block.id

    def write_memory(self, address: str, content: Dict[str, Any]) -> Optional[str]:
        """Write-style entry point used to load starting memory fragments."""
        data = {
            "description": "External memory write",
            "emotional_intensity": 0.1,
            "emotions": [],
            "context": {"address": address, "source": "external"},
        }
        data.update(_normalize(content or {}))
        return self.allocate_memory(data, data.get("type", POOL_SHORT_TERM))

    # ── indexes ──────────────────────────────────────────────────────────────

    def _index(self, block: MemoryBlock) -> None:
        for key in block.index_keys():
            self.indexes.setdefault(key, {})[block.id] = None

    def _unindex(self, block: MemoryBlock) -> None:
        for key in block.index_keys():
            ids = self.indexes.get(key)
            if ids is not None:
                ids.pop(block.id, None)

    def rebuild_emotional_indexes(self) -> Dict[str, Any]:
        self.indexes = {}
        for block in self.segments.values():
            self._index(block)
        log.info("emotional indexes rebuilt (%d keys)", len(self.indexes))
        return {"success": True, "message": "Emotional indexes rebuilt",
                "index_count": len(self.indexes)}

    # ── retrieval ────────────────────────────────────────────────────────────

    def get_block(self, block_id: str) -> MemoryBlock:
        block = self.segments.get(block_id)
        if block is None:
            raise MemoryBlockNotFoundError(f"Memory block not found: {block_id}",
                                           source="memory", memory_address=block_id)
        return block

    def retrieve_memories_by_emotion(self, emotion: str, limit: int = 10) -> List[Dict[str, Any]]:
        ids = self.indexes.get(emotion, {})
        blocks = [self.segments[i] for i in ids if i in self.segments]
        blocks = [b for b in blocks if not b.corrupted]
        blocks.sort(key=lambda b: b.emotional_charge, reverse=True)
        blocks = blocks[:limit]
        for block in blocks:
            self._record_access(block)
        return [self._retrieval(b) for b in blocks]

    def _record_access(self, block: MemoryBlock) -> None:
        now = self.clock.now()
        block.touch(now)
        self.access_patterns.setdefault(block.id, AccessPattern()).record(now)

    def _retrieval(self, block: MemoryBlock) -> Dict[str, Any]:
        pattern = self.access_patterns.get(block.id)
        out = {
            "id": block.id,
            "type": block.type,
            "content": dict(block.content),
            "emotional_charge": block.emotional_charge,
            "created_at": block.created_at,
            "access_count": block.access_count,
            "associated_emotions": list(block.associated_emotions),
            "integrity_score": block.integrity_score,
            "coherence_level": block.coherence_level,
        }
        if block.debuggable:
            out["debug_info"] = {
                "access_pattern": pattern.to_dict() if pattern else None,
                "corruption_risk": corruption_risk(block, self.clock.now()),
            }
        return out

    # ── deletion & pressure chain ────────────────────────────────────────────

    def delete_memory(self, block_id: str) -> bool:
        block = self.segments.pop(block_id, None)
        if block is None:
            return False
        for pool in self.pools.values():
            pool.blocks.pop(block_id, None)
        self._unindex(block)
        self.access_patterns.pop(block_id, None)
        self.update_capacity_metrics()
        return True

    def trigger_memory_pressure(self) -> int:
        """Run the relief chain; return units freed."""
        before = self.capacity.available
        log.warning("memory pressure detected, triggering cleanup")
        self.cleanup_expired_memories()
        self.compress_old_memories()
        self.cleanup_low_value_memories()
        if self.capacity.under_reserve:
            self.force_garbage_collection()
        return self.capacity.available - before

    def cleanup_expired_memories(self) -> int:
        now = self.clock.now()
        freed = 0
        for pool in self.pools.values():
            if pool.never_expires or not pool.config.auto_cleanup:
                continue
            for block in list(pool.blocks.values()):
                if not block.protected and pool.expired(block, now):
                    freed += block.size
                    self.delete_memory(block.id)
        return freed

    def compress_old_memories(self) -> int:
        now = self.clock.now()
        compressed = 0
        for block in self.segments.values():
            if (not block.compressed
                    and block.type != POOL_TRAUMATIC
                    and self.pools[block.type].config.compression_enabled
                    and now - block.created_at > COMPRESSION_AGE_MS):
                block.compress()
                compressed += 1
        if compressed:
            self.update_capacity_metrics()
        return compressed

    def compress_memories(self, pool_type: Optional[str] = None) -> Dict[str, Any]:
        """Compress every eligible block in ``pool_type`` (default: all) now."""
        before = self.capacity.allocated
        count = 0
        for block in self.segments.values():
            if pool_type is not None and block.type != pool_type:
                continue
            if (not block.compressed and block.type != POOL_TRAUMATIC
                    and self.pools[block.type].config.compression_enabled):
                block.compress()
                count += 1
        self.update_capacity_metrics()
        return {"success": True, "compressed_count": count,
                "freed": before - self.capacity.allocated}

    def cleanup_low_value_memories(self) -> int:
        return self._evict_below(LOW_VALUE_THRESHOLD)

    def force_garbage_collection(self) -> int:
        log.warning("forcing memory garbage collection")
        return self._evict_below(GC_VALUE_THRESHOLD)

    def _evict_below(self, threshold: float) -> int:
        doomed = [b for b in self.segments.values()
                  if not b.protected and memory_value(b) < threshold]
        freed = sum(b.size for b in doomed)
        for block in doomed:
            self.delete_memory(block.id)
        return freed

    def clear_volatile(self) -> int:
        """Drop every unprotected short-term block (used by reboot)."""
        doomed = [b for b in self.pools[POOL_SHORT_TERM].blocks.values() if not b.protected]
        for block in doomed:
            self.delete_memory(block.id)
        return len(doomed)

    # ── maintenance ──────────────────────────────────────────────────────────

    def defragment_memory(self) -> Dict[str, Any]:
        fragmented = [b for b in self.segments.values() if b.fragmented]
        for block in fragmented:
            block.fragmented = False
            block.coherence_level = min(block.coherence_level + 0.1, 1.0)
        self.fragmentation_level = 0.0
        log.info("defragmented %d memory blocks", len(fragmented))
        return {"success": True, "defragmented_count": len(fragmented),
                "message": f"Defragmented {len(fragmented)} memory blocks"}

    def detect_leaks(self) -> List[LeakReport]:
        return detect_leaks(self.segments.values(), self.clock.now())

    def detect_and_report_leaks(self) -> List[LeakReport]:
        leaks = self.detect_leaks()
        if leaks:
            log.warning("detected %d potential memory leaks", len(leaks))
            self.system_log.push(
                self.clock.now(), LEVEL_WARNING,
                f"Memory leak detection: {len(leaks)} suspicious allocations",
                "memory_management", details=[l.to_dict() for l in leaks[:3]],
            )
        return leaks

    def update_capacity_metrics(self) -> None:
        self.capacity.recount(self.segments.values())
        if self.segments:
            fragmented = sum(1 for b in self.segments.values() if b.fragmented)
            self.fragmentation_level = fragmented / len(self.segments)
        else:
            self.fragmentation_level = 0.0

    # ── damage ───────────────────────────────────────────────────────────────

    def corrupt_region(self, block_id: str, severity: float = 0.1) -> bool:
        block = self.segments.get(block_id)
        if block is None:
            return False
        block.damage(severity)
        self.update_capacity_metrics()
        if block.corrupted:
            log.warning("memory block %s corrupted (integrity %.2f)",
                        block_id, block.integrity_score)
        return True

    def get_corrupted_regions(self) -> List[Dict[str, Any]]:
        now = self.clock.now()
        return [
            {"id": b.id, "type": b.type, "integrity_score": b.integrity_score,
             "corruption_risk": corruption_risk(b, now)}
            for b in self.segments.values() if b.damaged
        ]

    # ── player verbs ─────────────────────────────────────────────────────────

    def free(self, block_id: str) -> Dict[str, Any]:
        block = self.get_block(block_id)
        if block.protected:
            raise PsycheError(f"Memory block {block_id} is protected",
                              source="memory", memory_address=block_id)
        size = block.size
        self.delete_memory(block_id)
        return {"success": True, "freed": size, "message": f"Freed {size} units"}

    def dump(self, block_id: Optional[str] = None,
             pool_type: Optional[str] = None) -> Dict[str, Any]:
        if block_id is not None:
            return {"success": True, "blocks": [self.get_block(block_id).to_dict()]}
        blocks = [b.to_dict() for b in self.segments.values()
                  if pool_type is None or b.type == pool_type]
        return {"success": True, "blocks": blocks, "capacity": self.capacity.to_dict()}

    def peek(self, block_id: str) -> Dict[str, Any]:
        block = self.get_block(block_id)
        self._record_access(block)
        return {"success": True, "memory": self._retrieval(block),
                "value": memory_value(block)}

    def poke(self, block_id: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Overwrite content fields.  Writing by hand fragments the block."""
        block = self.get_block(block_id)
        if block.protected:
            raise PsycheError(f"Memory block {block_id} is protected",
                              source="memory", memory_address=block_id)
        block.content.update(data or {})
        block.damage(0.1)
        self.update_capacity_metrics()
        return {"success": True, "integrity_score": block.integrity_score,
                "corrupted": block.corrupted}

    def protect(self, block_id: str) -> Dict[str, Any]:
        self.get_block(block_id).protected = True
        return {"success": True, "message": f"Memory block {block_id} protected"}

    def unprotect(self, block_id: str) -> Dict[str, Any]:
        self.get_block(block_id).protected = False
        return {"success": True, "message": f"Memory block {block_id} unprotected"}

    def execute_action(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self._require_initialized()
        p = params or {}
        if action == "free":
            return self.free(p["memory_id"])
        if action == "dump":
            return self.dump(p.get("memory_id"), p.get("pool_type"))
        if action == "peek":
            return self.peek(p["memory_id"])
        if action == "poke":
            return self.poke(p["memory_id"], p.get("data"))
        if action == "protect":
            return self.protect(p["memory_id"])
        if action == "unprotect":
            return self.unprotect(p["memory_id"])
        if action == "defragment_memory":
            return self.defragment_memory()
        if action == "compress_memories":
            return self.compress_memories(p.get("pool_type"))
        if action == "cleanup_expired":
            return self.cleanup_expired_memories()
        if action == "rebuild_indexes":
            return self.rebuild_emotional_indexes()
        if action == "allocate_memory":
            return self.allocate_memory(p.get("data", {}), p.get("type", POOL_SHORT_TERM))
        if action == "retrieve_memories":
            return self.retrieve_memories_by_emotion(p["emotion"], p.get("limit", 10))
        if action == "delete_memory":
            return self.delete_memory(p["memory_id"])
        raise UnknownSubsystemActionError(f"Unknown memory action: {action}", source="memory")

    # ── queries ──────────────────────────────────────────────────────────────

    def get_resource_usage(self) -> Dict[str, float]:
        return {"memory": self.capacity.allocated, "threads": 0}

    def get_fragmentation(self) -> float:
        return self.fragmentation_level

    def get_debuggable_issues(self) -> Dict[str, Any]:
        return {
            "memory_leaks": [l.to_dict() for l in self.detect_leaks()],
            "corrupted_memories": [b.id for b in self.segments.values() if b.damaged],
            "fragmented_memories": [b.id for b in self.segments.values() if b.fragmented],
            "high_pressure_warning": self.capacity.under_reserve,
        }

    def get_state(self) -> Dict[str, Any]:
        return {
            "capacity": self.capacity.to_dict(),
            "pools": {name: pool.summary() for name, pool in self.pools.items()},
            "fragmentation_level": self.fragmentation_level,
            "total_memories": len(self.segments),
            "emotional_indexes": len(self.indexes),
            "debuggable_issues": self.get_debuggable_issues(),
            "is_initialized": self.initialized,
        }

    # ── tick ─────────────────────────────────────────────────────────────────

    def tick(self, delta_ms: Optional[float] = None) -> List[Dict[str, Any]]:
        """
        Pressure / fragmentation / leak / corruption events.

        Expiry, leak detection and compression run at most once per
        ``MAINTENANCE_INTERVAL_MS`` of simulated time; the leak event is
        raised from the last detection.
        """
        if not self.initialized:
            return []
        now = self.clock.now()
        if (self._last_maintenance is None
                or self.clock.since(self._last_maintenance) >= MAINTENANCE_INTERVAL_MS):
            self._last_maintenance = now
            self.cleanup_expired_memories()
            self.leaks = self.detect_and_report_leaks()
            self.compress_old_memories()
        if self.fragmentation_level > DEFRAG_THRESHOLD:
            self.defragment_memory()
        if self.capacity.under_reserve:
            self.trigger_memory_pressure()
        self.update_capacity_metrics()

        events: List[Dict[str, Any]] = []
        total = self.capacity.total or 1
        available_pct = self.capacity.available / total * 100
        if available_pct < PRESSURE_CRITICAL_PCT:
            events.append({"type": "memory_pressure_critical",
                           "available_memory": self.capacity.available,
                           "total_memory": self.capacity.total, "timestamp": now})
        elif available_pct < PRESSURE_WARNING_PCT:
            events.append({"type": "memory_pressure_warning",
                           "available_memory": self.capacity.available,
                           "total_memory": self.capacity.total, "timestamp": now})
        if self.fragmentation_level > FRAGMENTATION_HIGH:
            events.append({"type": "memory_fragmentation_high",
                           "fragmentation_level": self.fragmentation_level, "timestamp": now})
        if len(self.leaks) > LEAK_EVENT_COUNT:
            events.append({"type": "memory_leaks_detected",
                           "leak_count": len(self.leaks), "timestamp": now})
        corrupted = sum(1 for b in self.segments.values()
                        if b.corrupted or b.integrity_score < CORRUPTED_BELOW)
        if corrupted:
            events.append({"type": "memory_corruption_detected",
                           "corrupted_count": corrupted, "timestamp": now})
        return events

    # ── capture / restore ────────────────────────────────────────────────────

    def capture_state(self) -> Dict[str, Any]:
        return {
            "blocks": [b.to_dict() for b in self.segments.values()],
            "indexes": {k: list(v) for k, v in self.indexes.items()},
            "access_patterns": {k: p.to_dict() for k, p in self.access_patterns.items()},
            "capacity": self.capacity.to_dict(),
            "fragmentation_level": self.fragmentation_level,
            "seq": self._seq,
            "initialized": self.initialized,
        }

    def restore_state(self, captured: Optional[Dict[str, Any]]) -> bool:
        if not captured:
            return False
        for pool in self.pools.values():
            pool.blocks.clear()
        self.segments = {}
        for raw in captured.get("blocks", []):
            block = MemoryBlock.from_dict(raw)
            self.segments[block.id] = block
            self.pools[block.type].blocks[block.id] = block
        self.indexes = {k: dict.fromkeys(v) for k, v in captured.get("indexes", {}).items()}
        self.access_patterns = {k: AccessPattern.from_dict(p)
                                for k, p in captured.get("access_patterns", {}).items()}
        cap = captured.get("capacity", {})
        self.capacity.total = cap.get("total", self.capacity.total)
        self.capacity.reserved = cap.get("reserved", self.capacity.reserved)
        self._seq = captured.get("seq", len(self.segments))
        self.leaks = []
        self._last_maintenance = None
        self.initialized = captured.get("initialized", False)
        self.update_capacity_metrics()
        return True

    def shutdown(self) -> None:
        for pool in self.pools.values():
            pool.blocks.clear()
        self.segments.clear()
        self.indexes.clear()
        self.access_patterns.clear()
        self.leaks = []
        self._last_maintenance = None
        self.update_capacity_metrics()
        self.initialized = False
        log.info("memory ledger shut down")
