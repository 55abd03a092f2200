"""
psyche.instance.controller
==========================
InstanceController — one simulated character's full mental-state runtime.

Composes the emotional engine, the memory ledger and a process manager
behind one externally driven tick and one action entry point.

Tick order
----------
1. advance the shared clock by ``delta_ms``
2. tick processes, emotional engine, memory ledger (collect events)
3. complete any due reboot / stabilize
4. aggregate resource usage, clamp to limits
5. stability delta + corruption spread from the post-tick state, apply
6. age out errors older than 60 s, add uptime
7. evaluate latched health conditions, emit transition events

Action order
------------
whitelist → initialized → stability ≥ 0.1 (unless ``force``) → snapshot →
dispatch → on failure: record, maybe cascade, re-raise → usage + health
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from psyche.clock import SimClock
from psyche.config import InstanceConfig
from psyche.emotion.engine import EmotionalEngine
from psyche.errors import (
    InstanceTooUnstableError,
    NotInitializedError,
    PsycheError,
    SEVERITY_ERROR,
    UnknownSubsystemActionError,
)
from psyche.instance import health, snapshot
from psyche.instance.actions import EMOTIONAL, MEMORY, PROCESS, SYSTEM, ActionRouter, category_of
from psyche.instance.lifecycle import (
    ErrorRecord,
    InstanceState,
    InstanceStatus,
    PendingOperation,
    ResourceUsage,
)
from psyche.instance.processes import DEFAULT_PROCESSES, ProcessManager, ProcessTable
from psyche.memory.ledger import MemoryLedger
from psyche.syslog import (
    LEVEL_ERROR,
    LEVEL_INFO,
    LEVEL_WARNING,
    NarrativeHooks,
    NullSystemLog,
    SystemLog,
)

log = logging.getLogger(__name__)


Listener = Callable[[Dict[str, Any]], None]

REBOOT_STABILITY        = 0.8
REBOOT_CORRUPTION_RELIEF = 0.1
STABILIZE_GAIN          = 0.3
DEFRAGMENT_GAIN         = 0.1
EMOTION_STABILITY_COST  = 0.1


class InstanceController:
    """
    Parameters
    ----------
    config : InstanceConfig, optional
    clock : SimClock, optional
        Shared by every subsystem.  A fresh clock at t=0 by default.
    system_log : SystemLog, optional
        Gameplay log sink, handed down to every subsystem.
    narrative : NarrativeHooks, optional
        Narrative engine collaborator.
    process_manager : ProcessManager, optional
        Defaults to a ``ProcessTable`` seeded from ``config.base_processes``.
    """

    def __init__(
        self,
        config: Optional[InstanceConfig] = None,
        clock: Optional[SimClock] = None,
        system_log: Optional[SystemLog] = None,
        narrative: Optional[NarrativeHooks] = None,
        process_manager: Optional[ProcessManager] = None,
    ) -> None:
        self.config     = config or InstanceConfig()
        self.clock      = clock if clock is not None else SimClock()
        self.system_log = system_log if system_log is not None else NullSystemLog()
        self.narrative  = narrative if narrative is not None else NarrativeHooks()

        self._seed_processes = process_manager is None
        self.processes: ProcessManager = (ProcessTable() if self._seed_processes
                                          else process_manager)
        self.memory = MemoryLedger(self.clock, self.config.memory, self.system_log)
        self.emotional = EmotionalEngine(self.clock, self.config.emotional,
                                         self.system_log, self.narrative)

        self.state   = InstanceState()
        self.usage   = ResourceUsage()
        self.history = snapshot.SnapshotHistory()
        self._listeners: Dict[str, List[Listener]] = {}
        self.router = ActionRouter({
            PROCESS:   self.processes.execute_action,
            MEMORY:    self.memory.execute_action,
            EMOTIONAL: self.emotional.execute_action,
            SYSTEM:    self.execute_system_action,
        })

    # ── events ───────────────────────────────────────────────────────────────

    def on(self, event: str, callback: Listener) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def _emit(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        payload = payload or {}
        for callback in list(self._listeners.get(event, [])):
            callback(payload)
        self.narrative.check_triggers(event, payload)

    # ── lifecycle ────────────────────────────────────────────────────────────

    @property
    def initialized(self) -> bool:
        return self.state.is_live

    def initialize(self) -> None:
        self.state.status = InstanceStatus.INITIALIZING
        if self._seed_processes and isinstance(self.processes, ProcessTable):
            for spec in self.config.base_processes or DEFAULT_PROCESSES:
                self.processes.spawn_from_config(spec)
        self.memory.initialize()
        self.emotional.initialize()
        self.state.status = InstanceStatus.RUNNING
        self._update_resource_usage()
        self._check_health()
        log.info("instance %s (%s) initialized", self.config.id, self.config.name)
        self._emit("initialized", {"id": self.config.id, "name": self.config.name})

    def shutdown(self) -> Dict[str, Any]:
        final = snapshot.capture(self)
        self.memory.shutdown()
        self.emotional.shutdown()
        self.processes.stop_all()
        self.state.pending = None
        self.history.clear()
        self.state.status = InstanceStatus.SHUTDOWN
        log.info("instance %s shut down", self.config.id)
        self._emit("shutdown", {"final_state": final})
        return final

    # ── tick ─────────────────────────────────────────────────────────────────

    def tick(self, delta_ms: Optional[float] = None) -> Dict[str, Any]:
        """
        Advance the whole instance by ``delta_ms`` (default: ``tick_rate``).

        Never raises.  A subsystem exception is logged and reported as a
        ``tick_error`` event.
        """
        if not self.initialized:
            return {"events": [], "status": self.state.status.value}
        dt = float(self.config.tick_rate if delta_ms is None else delta_ms)
        self.clock.advance(dt)
        now = self.clock.now()

        events: List[Dict[str, Any]] = []
        for name, step in (("process", self.processes.tick),
                           ("emotional", self.emotional.tick),
                           ("memory", self.memory.tick)):
            try:
                events.extend(step(dt))
            except Exception as exc:
                log.exception("%s subsystem tick failed", name)
                record = ErrorRecord(timestamp=now, type="tick_error", message=str(exc),
                                     source=name)
                self.state.errors.append(record)
                events.append({"type": "tick_error", "subsystem": name,
                               "message": str(exc), "timestamp": now})

        events.extend(self._complete_pending())
        self._update_resource_usage()

        stability_delta = health.stability_delta(
            self.usage.cpu,
            self.state.recent_errors(now),
            self.emotional.get_total_intensity(),
        )
        spread = health.corruption_spread(
            self.state.corruption,
            self.state.stability,
            len(self.memory.get_corrupted_regions()),
        )
        self.state.apply(
            stability_delta if health.significant(stability_delta) else 0.0,
            spread,
        )

        self.state.age_errors(now)
        self.state.uptime += dt
        events.extend(self._check_health())
        return {
            "timestamp":  now,
            "status":     self.state.status.value,
            "stability":  self.state.stability,
            "corruption": self.state.corruption,
            "stability_delta":   stability_delta,
            "corruption_spread": spread,
            "events":     events,
        }

    def _update_resource_usage(self) -> None:
        self.usage = health.aggregate_usage(
            self.processes.get_system_resource_usage(),
            self.memory.get_resource_usage(),
            self.emotional.get_resource_usage(),
            self.config.resources,
        )

    def _check_health(self) -> List[Dict[str, Any]]:
        current = health.active_conditions(self.state.stability, self.state.corruption,
                                           self.usage, self.config.resources)
        events: List[Dict[str, Any]] = []
        for condition in health.newly_latched(current, self.state.conditions):
            self.state.conditions.add(condition)
            payload = {"condition": condition.value, "stability": self.state.stability,
                       "corruption": self.state.corruption,
                       "memory": self.usage.memory}
            log.warning("instance %s entered %s", self.config.id, condition.value)
            self.system_log.push(self.clock.now(), LEVEL_ERROR,
                                 f"Instance entered {condition.value} state",
                                 "system_health", condition=condition.value)
            self._emit(condition.event, payload)
            events.append({"type": condition.event, **payload})
        self.state.refresh_status()
        return events

    # ── actions ──────────────────────────────────────────────────────────────

    def execute_action(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Validate, snapshot, dispatch.

        Raises
        ------
        InvalidActionError
            ``action`` is not on the whitelist.
        NotInitializedError
            The instance has not been initialized (or was shut down).
        InstanceTooUnstableError
            Stability < 0.1 and ``params["force"]`` is not set.
        PsycheError / Exception
            Whatever the handler raised, after recording and cascading.
        """
        params = dict(params or {})
        force = bool(params.pop("force", False))
        category_of(action)
        if not self.initialized:
            raise NotInitializedError("Consciousness instance not initialized")
        if self.state.stability < health.CRITICAL_STABILITY and not force:
            raise InstanceTooUnstableError("System too unstable for action execution")

        self.history.push(snapshot.capture(self))
        try:
            result = self.router.dispatch(action, params)
        except Exception as exc:
            self._handle_action_error(action, exc)
            raise
        self._update_resource_usage()
        self._check_health()
        return result

    def _handle_action_error(self, action: str, exc: Exception) -> None:
        now = self.clock.now()
        record = ErrorRecord(
            timestamp=now,
            type="action_execution",
            message=str(exc),
            severity=getattr(exc, "severity", SEVERITY_ERROR),
            action=action,
            source=getattr(exc, "source", None),
            memory_address=getattr(exc, "memory_address", None),
        )
        self.state.errors.append(record)
        self.system_log.push(now, LEVEL_ERROR, f"Action {action} failed: {exc}",
                             "action_execution", action=action)
        if health.should_cascade(record, self.state.stability, self.state.corruption):
            self._cascade(record)
        self._update_resource_usage()
        self._check_health()

    def _cascade(self, record: ErrorRecord) -> None:
        related = self.processes.get_related_processes(record.source)
        for pid in related:
            self.processes.destabilize(pid, health.CASCADE_PROCESS_HIT)
        if record.memory_address:
            self.memory.corrupt_region(record.memory_address, health.CASCADE_MEMORY_HIT)
        self.emotional.intensify_all(health.CASCADE_INTENSIFY)
        self.state.apply(stability_delta=-health.CASCADE_STABILITY_HIT)
        log.warning("error cascade from %s: %d related processes destabilized",
                    record.action, len(related))
        self.system_log.push(self.clock.now(), LEVEL_WARNING,
                             f"Error cascade triggered by {record.action}",
                             "error_cascade", related_processes=related,
                             memory_address=record.memory_address)

    def modify_emotional_state(self, emotion: str, modifier: float) -> bool:
        """Nudge one emotion directly; every nudge costs stability."""
        found = self.emotional.modify_emotion(emotion, modifier)
        self.state.apply(stability_delta=-abs(modifier) * EMOTION_STABILITY_COST)
        return found

    # ── system actions ───────────────────────────────────────────────────────

    def execute_system_action(self, action: str, params: Dict[str, Any]) -> Any:
        if action == "reboot":
            return self.reboot(quick=params.get("quick", False))
        if action == "stabilize":
            return self.stabilize(params.get("intensity", 0.5), params.get("duration"))
        if action == "defragment":
            return self.defragment(params.get("aggressive", False))
        if action == "analyze":
            return self.analyze(params.get("depth", "standard"))
        raise UnknownSubsystemActionError(f"Unknown system action: {action}", source="system")

    def _start_pending(self, kind: str, duration_ms: float, **params: Any) -> PendingOperation:
        if self.state.pending is not None:
            raise PsycheError(f"System operation already in progress: {self.state.pending.kind}",
                              source="system")
        now = self.clock.now()
        op = PendingOperation(kind=kind, started_at=now,
                              completes_at=now + duration_ms, params=params)
        self.state.pending = op
        self.state.refresh_status()
        return op

    def reboot(self, quick: bool = False) -> Dict[str, Any]:
        duration = self.config.quick_reboot_ms if quick else self.config.reboot_ms
        op = self._start_pending("reboot", duration, quick=quick)
        self.processes.stop_all()
        cleared = self.memory.clear_volatile()
        log.info("reboot started (%s, %d ms)", "quick" if quick else "full", duration)
        return {"action": "reboot", "duration": duration, "completes_at": op.completes_at,
                "volatile_memories_cleared": cleared}

    def stabilize(self, intensity: float = 0.5,
                  duration: Optional[float] = None) -> Dict[str, Any]:
        duration = self.config.stabilize_ms if duration is None else duration
        op = self._start_pending("stabilize", duration, intensity=intensity)
        self.processes.throttle_all(1.0 - intensity)
        return {"action": "stabilize", "intensity": intensity, "duration": duration,
                "completes_at": op.completes_at}

    def _complete_pending(self) -> List[Dict[str, Any]]:
        op = self.state.pending
        if op is None or not op.due(self.clock.now()):
            return []
        if op.kind == "reboot":
            self.processes.restart_core()
            self.state.stability = REBOOT_STABILITY
            self.state.apply(corruption_delta=-REBOOT_CORRUPTION_RELIEF)
            result = {"stability": self.state.stability, "corruption": self.state.corruption}
        else:
            gain = op.params.get("intensity", 0.5) * STABILIZE_GAIN
            self.state.apply(stability_delta=gain)
            self.processes.throttle_all(1.0)
            result = {"stability_gain": gain, "final_stability": self.state.stability}
        self.state.pending = None
        self.state.conditions.clear()
        self.state.refresh_status()
        log.info("%s completed", op.kind)
        self.system_log.push(self.clock.now(), LEVEL_INFO, f"System {op.kind} completed",
                             "system_action")
        return [{"type": f"{op.kind}_completed", "timestamp": self.clock.now(), **result}]

    def defragment(self, aggressive: bool = False) -> Dict[str, Any]:
        self.state.status = InstanceStatus.DEFRAGMENTING
        result = self.memory.defragment_memory()
        if aggressive:
            result["compressed"] = self.memory.compress_memories()["compressed_count"]
        self.state.apply(stability_delta=DEFRAGMENT_GAIN)
        self.state.refresh_status()
        return {"action": "defragment", **result, "stability_gain": DEFRAGMENT_GAIN}

    def analyze(self, depth: str = "standard") -> Dict[str, Any]:
        analysis: Dict[str, Any] = {"timestamp": self.clock.now(), "depth": depth,
                                    "findings": []}
        findings = analysis["findings"]
        anomalies = self.processes.detect_anomalies()
        if anomalies:
            findings.append({"type": "process_anomaly", "severity": "medium",
                             "details": anomalies})
        fragmentation = self.memory.get_fragmentation()
        if fragmentation > 0.3:
            findings.append({"type": "memory_fragmentation",
                             "severity": "high" if fragmentation > 0.6 else "medium",
                             "value": fragmentation,
                             "recommendation": "Run defragmentation"})
        volatility = self.emotional.get_volatility()
        if volatility > 0.5:
            findings.append({"type": "emotional_volatility",
                             "severity": "high" if volatility > 0.8 else "medium",
                             "value": volatility,
                             "recommendation": "Stabilize emotional processes"})
        if self.usage.cpu > 80:
            findings.append({"type": "cpu_pressure",
                             "severity": "high" if self.usage.cpu > 90 else "medium",
                             "value": self.usage.cpu,
                             "recommendation": "Reduce process load"})
        if depth == "deep":
            analysis["memory_map"] = self.memory.dump()["blocks"]
            analysis["process_tree"] = self.processes.generate_process_tree()
            analysis["emotional_profile"] = self.emotional.generate_profile()
            analysis["debuggable_issues"] = self.emotional.get_debuggable_issues()
        return analysis

    # ── snapshot / restore ───────────────────────────────────────────────────

    def capture_state(self) -> Dict[str, Any]:
        return snapshot.capture(self)

    def restore_state(self, snap: Dict[str, Any]) -> None:
        snapshot.restore(self, snap)
        self.state.refresh_status()
        log.info("instance %s restored to t=%.0f", self.config.id, snap["timestamp"])
        self._emit("state_restored", {"timestamp": snap["timestamp"]})

    def rollback(self) -> bool:
        """Restore the newest pre-action snapshot.  False if there is none."""
        snap = self.history.pop()
        if snap is None:
            return False
        self.restore_state(snap)
        return True

    # ── queries ──────────────────────────────────────────────────────────────

    def get_state(self) -> Dict[str, Any]:
        return {
            "id":        self.config.id,
            "name":      self.config.name,
            "core":      self.state.to_dict(),
            "resources": self.usage.to_dict(),
            "emotional": self.emotional.get_state(),
            "memory":    self.memory.get_state(),
        }

    def get_statistics(self) -> Dict[str, Any]:
        limits = self.config.resources
        counts = {}
        if isinstance(self.processes, ProcessTable):
            counts = {"total":   self.processes.get_process_count(),
                      "running": self.processes.get_running_count(),
                      "errors":  self.processes.get_error_count()}
        return {
            "uptime":     self.state.uptime,
            "status":     self.state.status.value,
            "stability":  self.state.stability,
            "corruption": self.state.corruption,
            "resource_usage": {
                "cpu":     self.usage.cpu,
                "memory":  f"{self.usage.memory:.0f}/{limits.memory_total:.0f}",
                "threads": f"{self.usage.threads}/{limits.threads_max}",
            },
            "processes": counts,
            "memory": {
                "fragmentation": self.memory.get_fragmentation(),
                "corrupted":     len(self.memory.get_corrupted_regions()),
                "allocated":     self.memory.capacity.allocated,
                "available":     self.memory.capacity.available,
            },
            "emotional": {
                "primary":    self.emotional.state.dominant,
                "intensity":  self.emotional.get_total_intensity(),
                "volatility": self.emotional.get_volatility(),
            },
            "errors": len(self.state.errors),
        }
