"""
psyche.instance.lifecycle
=========================
Shared enums and records for the instance controller.

These are imported by health, snapshot and controller to avoid
circular imports.

Status machine
--------------
::

    UNINITIALIZED ──► INITIALIZING ──► RUNNING ──► SHUTDOWN
                                         │  ▲
                        reboot/stabilize ▼  │ completes
                              REBOOTING / STABILIZING
                                         │
                  stability < 0.1        ▼
                  corruption ≥ 1   ──►  CRITICAL / CORRUPTED / MEMORY_EXHAUSTED
                  memory ≥ total        (latched until reboot / stabilize)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set


# ─────────────────────────────────────────────
# Status
# ─────────────────────────────────────────────

class InstanceStatus(Enum):
    UNINITIALIZED    = "uninitialized"
    INITIALIZING     = "initializing"
    RUNNING          = "running"
    REBOOTING        = "rebooting"
    STABILIZING      = "stabilizing"
    DEFRAGMENTING    = "defragmenting"
    CRITICAL         = "critical"
    CORRUPTED        = "corrupted"
    MEMORY_EXHAUSTED = "memory_exhausted"
    SHUTDOWN         = "shutdown"


class HealthCondition(Enum):
    """
    Latched health conditions.  Independent of each other; the reported
    status is the last active one in declaration order.
    """
    CRITICAL         = "critical"
    CORRUPTED        = "corrupted"
    MEMORY_EXHAUSTED = "memory_exhausted"

    @property
    def status(self) -> InstanceStatus:
        return InstanceStatus(self.value)

    @property
    def event(self) -> str:
        return _CONDITION_EVENTS[self]


_CONDITION_EVENTS = {
    HealthCondition.CRITICAL:         "critical_state",
    HealthCondition.CORRUPTED:        "total_corruption",
    HealthCondition.MEMORY_EXHAUSTED: "resource_exhaustion",
}


# ─────────────────────────────────────────────
# Error log
# ─────────────────────────────────────────────

ERROR_MAX_AGE_MS   = 60_000
RECENT_ERROR_MS    = 5_000


@dataclass
class ErrorRecord:
    """
    One entry of the rolling error log.

    Fields
    ------
    type : str
        ``action_execution`` for failed player actions, ``tick_error``
        for exceptions caught inside a subsystem tick.
    severity : str
        ``error`` or ``critical``.
    source, memory_address : str | None
        Copied from the raised ``PsycheError`` when available; the
        cascade uses them to find related processes and regions.
    """
    timestamp: float
    type:      str
    message:   str
    severity:  str = "error"
    action:    Optional[str] = None
    source:    Optional[str] = None
    memory_address: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "type":      self.type,
            "message":   self.message,
            "severity":  self.severity,
            "action":    self.action,
            "source":    self.source,
            "memory_address": self.memory_address,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ErrorRecord":
        return cls(**{k: d.get(k) for k in
                      ("timestamp", "type", "message", "severity",
                       "action", "source", "memory_address")})


# ─────────────────────────────────────────────
# Resource usage
# ─────────────────────────────────────────────

@dataclass
class ResourceUsage:
    cpu:     float = 0.0
    memory:  float = 0.0
    threads: int   = 0

    def to_dict(self) -> dict:
        return {"cpu": self.cpu, "memory": self.memory, "threads": self.threads}

    @classmethod
    def from_dict(cls, d: Optional[dict]) -> "ResourceUsage":
        d = d or {}
        return cls(cpu=d.get("cpu", 0.0), memory=d.get("memory", 0.0),
                   threads=d.get("threads", 0))


# ─────────────────────────────────────────────
# Pending system operations
# ─────────────────────────────────────────────

@dataclass
class PendingOperation:
    """A reboot or stabilize waiting for its simulated completion time."""
    kind:         str                 # "reboot" | "stabilize"
    started_at:   float
    completes_at: float
    params:       Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> InstanceStatus:
        return InstanceStatus.REBOOTING if self.kind == "reboot" else InstanceStatus.STABILIZING

    def due(self, now: float) -> bool:
        return now >= self.completes_at

    def to_dict(self) -> dict:
        return {"kind": self.kind, "started_at": self.started_at,
                "completes_at": self.completes_at, "params": dict(self.params)}

    @classmethod
    def from_dict(cls, d: dict) -> "PendingOperation":
        return cls(kind=d["kind"], started_at=d["started_at"],
                   completes_at=d["completes_at"], params=dict(d.get("params", {})))


# ─────────────────────────────────────────────
# Core state
# ─────────────────────────────────────────────

def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


@dataclass
class InstanceState:
    status:     InstanceStatus = InstanceStatus.UNINITIALIZED
    stability:  float = 1.0
    corruption: float = 0.0
    uptime:     float = 0.0
    errors:     List[ErrorRecord] = field(default_factory=list)
    conditions: Set[HealthCondition] = field(default_factory=set)
    pending:    Optional[PendingOperation] = None

    # ── convenience ──────────────────────────────────────────────────────

    @property
    def is_live(self) -> bool:
        return self.status not in (InstanceStatus.UNINITIALIZED,
                                   InstanceStatus.INITIALIZING,
                                   InstanceStatus.SHUTDOWN)

    def recent_errors(self, now: float, window_ms: float = RECENT_ERROR_MS) -> int:
        return sum(1 for e in self.errors if now - e.timestamp < window_ms)

    def age_errors(self, now: float, max_age_ms: float = ERROR_MAX_AGE_MS) -> int:
        before = len(self.errors)
        self.errors = [e for e in self.errors if now - e.timestamp < max_age_ms]
        return before - len(self.errors)

    def apply(self, stability_delta: float = 0.0, corruption_delta: float = 0.0) -> None:
        self.stability  = clamp01(self.stability + stability_delta)
        self.corruption = clamp01(self.corruption + corruption_delta)

    def refresh_status(self) -> InstanceStatus:
        """Derive ``status`` from pending operation and latched conditions."""
        if not self.is_live:
            return self.status
        self.status = InstanceStatus.RUNNING
        for condition in HealthCondition:
            if condition in self.conditions:
                self.status = condition.status
        if self.pending is not None:
            self.status = self.pending.status
        return self.status

    def to_dict(self) -> dict:
        return {
            "status":     self.status.value,
            "stability":  self.stability,
            "corruption": self.corruption,
            "uptime":     self.uptime,
            "errors":     [e.to_dict() for e in self.errors],
            "conditions": [c.value for c in HealthCondition if c in self.conditions],
            "pending":    self.pending.to_dict() if self.pending else None,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "InstanceState":
        return cls(
            status=InstanceStatus(d.get("status", "uninitialized")),
            stability=d.get("stability", 1.0),
            corruption=d.get("corruption", 0.0),
            uptime=d.get("uptime", 0.0),
            errors=[ErrorRecord.from_dict(e) for e in d.get("errors", [])],
            conditions={HealthCondition(c) for c in d.get("conditions", [])},
            pending=PendingOperation.from_dict(d["pending"]) if d.get("pending") else None,
        )
