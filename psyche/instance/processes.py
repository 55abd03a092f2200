"""
psyche.instance.processes
=========================
Process-manager contract and the default in-memory process table.

The controller only relies on ``ProcessManager``:

    get_system_resource_usage()   — totals over running processes
    tick(delta_ms)                — per-tick update, returns events
    capture_state() / restore_state(snapshot)
    get_related_processes(source) / destabilize(pid, amount)
    throttle_all(factor) / stop_all() / restart_core()

``ProcessTable`` is the default implementation.  Processes that share a
``group`` are related: an error from one destabilizes the others.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from psyche.errors import (
    SEVERITY_CRITICAL,
    ProcessNotFoundError,
    PsycheError,
    UnknownSubsystemActionError,
)

log = logging.getLogger(__name__)


CRASH_BELOW = 0.1
NICE_MIN, NICE_MAX = -20, 19

RUNNING   = "running"
SUSPENDED = "suspended"
STOPPED   = "stopped"
CRASHED   = "crashed"

DEFAULT_PROCESSES: List[Dict[str, Any]] = [
    {"name": "consciousness_core", "cpu": 8.0, "memory": 200.0, "threads": 2,
     "group": "core", "priority": "critical", "core": True},
    {"name": "memory_indexer",     "cpu": 4.0, "memory": 120.0, "threads": 1,
     "group": "memory", "priority": "high", "core": True},
    {"name": "emotional_monitor",  "cpu": 6.0, "memory": 80.0,  "threads": 1,
     "group": "emotional", "priority": "high", "core": True},
]


# ─────────────────────────────────────────────────────────────────────────────
# Process record
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Process:
    pid:      str
    name:     str
    cpu:      float
    memory:   float
    threads:  int   = 1
    group:    Optional[str] = None
    priority: str   = "normal"
    core:     bool  = False
    status:   str   = RUNNING
    stability: float = 1.0
    nice:     int   = 0
    throttle: float = 1.0
    issues:   List[str] = field(default_factory=list)

    @property
    def cpu_usage(self) -> float:
        """CPU after throttle and niceness (positive nice yields CPU)."""
        return self.cpu * self.throttle * max(0.1, 1.0 - self.nice * 0.025)

    @property
    def is_running(self) -> bool:
        return self.status == RUNNING

    def to_dict(self) -> dict:
        return {
            "pid":      self.pid,
            "name":     self.name,
            "cpu":      self.cpu,
            "memory":   self.memory,
            "threads":  self.threads,
            "group":    self.group,
            "priority": self.priority,
            "core":     self.core,
            "status":   self.status,
            "stability": self.stability,
            "nice":     self.nice,
            "throttle": self.throttle,
            "issues":   list(self.issues),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Process":
        return cls(**{**d, "issues": list(d.get("issues", []))})


# ─────────────────────────────────────────────────────────────────────────────
# Contract
# ─────────────────────────────────────────────────────────────────────────────

class ProcessManager:
    """Interface consumed by the controller.  Subclass and override."""

    def get_system_resource_usage(self) -> Dict[str, float]:
        raise NotImplementedError

    def tick(self, delta_ms: float) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def capture_state(self) -> Dict[str, Any]:
        raise NotImplementedError

    def restore_state(self, snapshot: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def get_related_processes(self, source: Optional[str]) -> List[str]:
        return []

    def destabilize(self, pid: str, amount: float) -> None:
        pass

    def throttle_all(self, factor: float) -> None:
        pass

    def stop_all(self) -> None:
        pass

    def restart_core(self) -> None:
        pass

    def detect_anomalies(self) -> List[Dict[str, Any]]:
        return []

    def generate_process_tree(self) -> Dict[str, Any]:
        return {}

    def execute_action(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        raise UnknownSubsystemActionError(f"Unknown process action: {action}", source="process")


# ─────────────────────────────────────────────────────────────────────────────
# Default table
# ─────────────────────────────────────────────────────────────────────────────

class ProcessTable(ProcessManager):
    """
    In-memory process table.

    Usage
    -----
    ::

        table = ProcessTable()
        pid = table.spawn("grief_processor", cpu=45, memory=240, group="grief")
        table.nice(pid, 5)
        table.suspend(pid)
        table.ps()
    """

    def __init__(self) -> None:
        self._processes: Dict[str, Process] = {}
        self._next_pid = 1000

    # ── lifecycle ────────────────────────────────────────────────────────────

    def spawn(self, name: str, cpu: float = 10.0, memory: float = 100.0,
              threads: int = 1, group: Optional[str] = None,
              priority: str = "normal", core: bool = False) -> str:
        pid = f"proc_{self._next_pid}"
        self._next_pid += 1
        self._processes[pid] = Process(pid=pid, name=name, cpu=cpu, memory=memory,
                                       threads=threads, group=group or name,
                                       priority=priority, core=core)
        log.debug("spawned %s (%s)", pid, name)
        return pid

    def spawn_from_config(self, spec: Dict[str, Any]) -> str:
        return self.spawn(
            spec["name"],
            cpu=spec.get("cpu", 10.0),
            memory=spec.get("memory", 100.0),
            threads=spec.get("threads", 1),
            group=spec.get("group"),
            priority=spec.get("priority", "normal"),
            core=spec.get("core", False),
        )

    def get(self, pid_or_name: str) -> Process:
        proc = self._processes.get(pid_or_name)
        if proc is not None:
            return proc
        for proc in self._processes.values():
            if proc.name == pid_or_name:
                return proc
        raise ProcessNotFoundError(f"Process not found: {pid_or_name}", source="process")

    def __len__(self) -> int:
        return len(self._processes)

    # ── player verbs ─────────────────────────────────────────────────────────

    def ps(self) -> List[Dict[str, Any]]:
        return [dict(p.to_dict(), cpu_usage=p.cpu_usage) for p in self._processes.values()]

    def kill(self, pid: str) -> Dict[str, Any]:
        proc = self.get(pid)
        if proc.core:
            raise PsycheError(f"Cannot kill core process {proc.name}",
                              severity=SEVERITY_CRITICAL, source=proc.name)
        del self._processes[proc.pid]
        log.info("killed %s (%s)", proc.pid, proc.name)
        return {"success": True, "pid": proc.pid, "message": f"Killed {proc.name}"}

    def nice(self, pid: str, increment: int = 1) -> Dict[str, Any]:
        proc = self.get(pid)
        return self.renice(proc.pid, proc.nice + increment)

    def renice(self, pid: str, value: int = 0) -> Dict[str, Any]:
        proc = self.get(pid)
        proc.nice = max(NICE_MIN, min(NICE_MAX, int(value)))
        return {"success": True, "pid": proc.pid, "nice": proc.nice}

    def suspend(self, pid: str) -> Dict[str, Any]:
        proc = self.get(pid)
        if proc.status != RUNNING:
            raise PsycheError(f"Process {proc.name} is not running", source=proc.name)
        proc.status = SUSPENDED
        return {"success": True, "pid": proc.pid, "status": proc.status}

    def resume(self, pid: str) -> Dict[str, Any]:
        proc = self.get(pid)
        if proc.status != SUSPENDED:
            raise PsycheError(f"Process {proc.name} is not suspended", source=proc.name)
        proc.status = RUNNING
        return {"success": True, "pid": proc.pid, "status": proc.status}

    def execute_action(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        p = params or {}
        if action == "ps":
            return self.ps()
        if action == "kill":
            return self.kill(p["pid"])
        if action == "nice":
            return self.nice(p["pid"], p.get("increment", 1))
        if action == "renice":
            return self.renice(p["pid"], p.get("value", 0))
        if action == "suspend":
            return self.suspend(p["pid"])
        if action == "resume":
            return self.resume(p["pid"])
        return super().execute_action(action, p)

    # ── controller hooks ─────────────────────────────────────────────────────

    def get_system_resource_usage(self) -> Dict[str, float]:
        running = [p for p in self._processes.values() if p.is_running]
        return {
            "total_cpu_usage":    sum(p.cpu_usage for p in running),
            "total_memory_usage": sum(p.memory for p in running),
            "total_threads":      sum(p.threads for p in running),
            "active_process_count":   len(running),
            "critical_process_count": sum(1 for p in running if p.priority == "critical"),
            "issue_count":        sum(len(p.issues) for p in running),
        }

    def tick(self, delta_ms: float) -> List[Dict[str, Any]]:
        events: List[Dict[str, Any]] = []
        for proc in self._processes.values():
            if proc.is_running and proc.stability < CRASH_BELOW:
                proc.status = CRASHED
                log.warning("process %s (%s) crashed", proc.pid, proc.name)
                events.append({"type": "process_crashed", "pid": proc.pid, "name": proc.name})
        return events

    def get_related_processes(self, source: Optional[str]) -> List[str]:
        if source is None:
            return []
        try:
            origin = self.get(source)
        except ProcessNotFoundError:
            return []
        return [p.pid for p in self._processes.values() if p.group == origin.group]

    def destabilize(self, pid: str, amount: float) -> None:
        proc = self._processes.get(pid)
        if proc is None:
            return
        proc.stability = max(0.0, proc.stability - amount)
        if "destabilized" not in proc.issues:
            proc.issues.append("destabilized")

    def throttle_all(self, factor: float) -> None:
        for proc in self._processes.values():
            proc.throttle = max(0.0, min(1.0, factor))

    def stop_all(self) -> None:
        for proc in self._processes.values():
            proc.status = STOPPED

    def restart_core(self) -> None:
        """Drop non-core processes; bring core ones back fresh."""
        self._processes = {pid: p for pid, p in self._processes.items() if p.core}
        for proc in self._processes.values():
            proc.status = RUNNING
            proc.stability = 1.0
            proc.throttle = 1.0
            proc.issues = []

    # ── queries ──────────────────────────────────────────────────────────────

    def detect_anomalies(self) -> List[Dict[str, Any]]:
        return [
            {"pid": p.pid, "name": p.name, "stability": p.stability, "status": p.status}
            for p in self._processes.values()
            if p.stability < 0.5 or p.status == CRASHED
        ]

    def generate_process_tree(self) -> Dict[str, List[str]]:
        tree: Dict[str, List[str]] = {}
        for proc in self._processes.values():
            tree.setdefault(proc.group or proc.name, []).append(proc.pid)
        return tree

    def get_process_count(self) -> int:
        return len(self._processes)

    def get_running_count(self) -> int:
        return sum(1 for p in self._processes.values() if p.is_running)

    def get_error_count(self) -> int:
        return sum(1 for p in self._processes.values() if p.status == CRASHED)

    # ── capture / restore ────────────────────────────────────────────────────

    def capture_state(self) -> Dict[str, Any]:
        return {
            "processes": [p.to_dict() for p in self._processes.values()],
            "next_pid": self._next_pid,
        }

    def restore_state(self, snapshot: Dict[str, Any]) -> bool:
        if not snapshot:
            return False
        self._processes = {d["pid"]: Process.from_dict(d) for d in snapshot.get("processes", [])}
        self._next_pid = snapshot.get("next_pid", self._next_pid)
        return True
