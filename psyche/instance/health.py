"""
psyche.instance.health
======================
Stability / corruption arithmetic and health evaluation.

Every function here is pure over its arguments so the controller's tick
can be tested number by number.

Stability delta (per tick)
--------------------------
    cpu > 90                  −0.010
    cpu > 80                  −0.005
    each error in last 5 s    −0.020
    mean primary > 0.8        −0.010
    cpu < 50 and no errors    +0.003

Corruption spread (per tick)
----------------------------
    corruption == 0           0
    stability < 0.3           corruption × 0.010
    stability < 0.5           corruption × 0.005
    + 0.005 per corrupted memory region
"""

from __future__ import annotations

from typing import Dict, List, Set

from psyche.config import ResourceLimits
from psyche.errors import SEVERITY_CRITICAL
from psyche.instance.lifecycle import ErrorRecord, HealthCondition, ResourceUsage


MIN_APPLIED_DELTA   = 0.001
CRITICAL_STABILITY  = 0.1
CASCADE_STABILITY   = 0.3
CASCADE_CORRUPTION  = 0.7
CASCADE_PROCESS_HIT = 0.2
CASCADE_MEMORY_HIT  = 0.1
CASCADE_INTENSIFY   = 0.1
CASCADE_STABILITY_HIT = 0.1


def aggregate_usage(process_usage: Dict[str, float],
                    memory_usage: Dict[str, float],
                    emotional_usage: Dict[str, float],
                    limits: ResourceLimits) -> ResourceUsage:
    """Sum subsystem usage reports and clamp to the instance maxima."""
    cpu = process_usage.get("total_cpu_usage", 0.0) + emotional_usage.get("cpu", 0.0)
    memory = (process_usage.get("total_memory_usage", 0.0)
              + memory_usage.get("memory", 0.0)
              + emotional_usage.get("memory", 0.0))
    threads = (process_usage.get("total_threads", 0)
               + memory_usage.get("threads", 0)
               + emotional_usage.get("threads", 0))
    return ResourceUsage(
        cpu=min(limits.cpu_max, cpu),
        memory=min(limits.memory_total, memory),
        threads=int(min(limits.threads_max, threads)),
    )


def stability_delta(cpu: float, recent_errors: int, emotional_intensity: float) -> float:
    delta = 0.0
    if cpu > 90:
        delta -= 0.01
    elif cpu > 80:
        delta -= 0.005
    delta -= recent_errors * 0.02
    if emotional_intensity > 0.8:
        delta -= 0.01
    if cpu < 50 and recent_errors == 0:
        delta += 0.003
    return delta


def corruption_spread(corruption: float, stability: float, corrupted_regions: int) -> float:
    if corruption == 0:
        return 0.0
    spread = 0.0
    if stability < 0.3:
        spread = corruption * 0.01
    elif stability < 0.5:
        spread = corruption * 0.005
    return spread + corrupted_regions * 0.005


def significant(delta: float) -> bool:
    return abs(delta) > MIN_APPLIED_DELTA


def should_cascade(error: ErrorRecord, stability: float, corruption: float) -> bool:
    return (error.severity == SEVERITY_CRITICAL
            or stability < CASCADE_STABILITY
            or corruption > CASCADE_CORRUPTION)


def active_conditions(stability: float, corruption: float, usage: ResourceUsage,
                      limits: ResourceLimits) -> Set[HealthCondition]:
    found: Set[HealthCondition] = set()
    if stability < CRITICAL_STABILITY:
        found.add(HealthCondition.CRITICAL)
    if corruption >= 1.0:
        found.add(HealthCondition.CORRUPTED)
    if usage.memory >= limits.memory_total:
        found.add(HealthCondition.MEMORY_EXHAUSTED)
    return found


def newly_latched(current: Set[HealthCondition],
                  latched: Set[HealthCondition]) -> List[HealthCondition]:
    """Conditions active now that were not latched before, in declaration order."""
    return [c for c in HealthCondition if c in current and c not in latched]
