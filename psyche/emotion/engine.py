"""
psyche/emotion/engine.py — EmotionalEngine
===========================================

Owns one character's emotional state and everything that moves it:

  - input queue        → process_emotional_input() / process_emotional_queue()
  - processing threads → spawned above intensity 0.6, advanced every tick
  - regulation         → instant strategies (cooldown) + timed records
  - interventions      → keyword-scored puzzle answers on broken threads
  - decay              → primary ×(1 − rate), secondary ×(1 − rate/2)

``tick(delta_ms)`` order:
  queue → threads → timed regulation → aftereffects → decay → metrics → events

All time comes from the shared ``SimClock``; the engine never sleeps.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from psyche.clock import SimClock
from psyche.config import EmotionalConfig
from psyche.emotion.interventions import CATALOGUE, score_solution
from psyche.emotion.regulation import (
    COMPLETION_REG_GAIN,
    STRATEGY_REG_GAIN,
    SUPPRESSION_MECHANISMS,
    TRIGGER_BOOST,
    RegulationRecord,
    RegulationStrategy,
    SideEffect,
    Trigger,
    default_strategies,
    default_triggers,
)
from psyche.emotion.state import EmotionalStateVector, clamp01
from psyche.emotion.threads import SPAWN_THRESHOLD, EmotionalThread
from psyche.errors import NotInitializedError, UnknownSubsystemActionError
from psyche.syslog import (
    LEVEL_INFO,
    LEVEL_WARNING,
    NarrativeHooks,
    NullSystemLog,
    SystemLog,
)

log = logging.getLogger(__name__)


DEFAULT_INPUT_INTENSITY = 0.5
DEFAULT_INPUT_DURATION  = 5_000
IMMEDIATE_THRESHOLD     = 0.8
MIN_DAMPED_INTENSITY    = 0.1
PRIMARY_INPUT_WEIGHT    = 0.1
SECONDARY_INPUT_WEIGHT  = 0.05
COGNITIVE_LOAD_MS       = 10_000
REGULATION_BREAKDOWN    = 0.3


@dataclass
class EmotionalInput:
    id:          str
    type:        str
    intensity:   float
    duration_ms: float
    timestamp:   float
    source:      str = "external"
    triggers:    List[str] = field(default_factory=list)
    processed:   bool = False

    def expired(self, now: float) -> bool:
        return now - self.timestamp >= self.duration_ms

    def to_dict(self) -> dict:
        return {
            "id":          self.id,
            "type":        self.type,
            "intensity":   self.intensity,
            "duration_ms": self.duration_ms,
            "timestamp":   self.timestamp,
            "source":      self.source,
            "triggers":    list(self.triggers),
            "processed":   self.processed,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "EmotionalInput":
        return cls(**{k: d[k] for k in (
            "id", "type", "intensity", "duration_ms", "timestamp",
            "source", "triggers", "processed") if k in d})


@dataclass
class StabilityMetrics:
    variance:   float = 0.0
    volatility: float = 0.0
    coherence:  float = 1.0
    regulation: float = 0.5

    def to_dict(self) -> dict:
        return {
            "variance":   self.variance,
            "volatility": self.volatility,
            "coherence":  self.coherence,
            "regulation": self.regulation,
        }


@dataclass
class Aftereffect:
    """A delayed axis adjustment, e.g. clarity coming back after cognitive load."""
    due_at: float
    axis:   str
    key:    str
    delta:  float

    def to_dict(self) -> dict:
        return {"due_at": self.due_at, "axis": self.axis, "key": self.key, "delta": self.delta}


class EmotionalEngine:
    """
    Emotional subsystem of one instance.

    Parameters
    ----------
    clock : SimClock
        Shared simulation clock.  The owning instance advances it.
    config : EmotionalConfig, optional
    system_log : SystemLog, optional
        Gameplay log sink; defaults to a no-op.
    narrative : NarrativeHooks, optional
        Receives ``dominant_emotion_change`` and intervention events.
    """

    def __init__(
        self,
        clock: SimClock,
        config: Optional[EmotionalConfig] = None,
        system_log: Optional[SystemLog] = None,
        narrative: Optional[NarrativeHooks] = None,
    ) -> None:
        self.clock      = clock
        self.config     = config or EmotionalConfig()
        self.system_log = system_log if system_log is not None else NullSystemLog()
        self.narrative  = narrative if narrative is not None else NarrativeHooks()

        self.state = EmotionalStateVector.from_base(self.config.base_state)
        self.history: List[EmotionalStateVector] = []
        self.queue:   List[EmotionalInput] = []
        self.threads: Dict[str, EmotionalThread] = {}
        self.strategies:  Dict[str, RegulationStrategy] = default_strategies()
        self.triggers:    Dict[str, Trigger] = self._build_triggers()
        self.regulations: Dict[str, RegulationRecord] = {}
        self.aftereffects: List[Aftereffect] = []
        self.metrics = StabilityMetrics()
        self.initialized = False
        self._seq = 0

    # ── setup ────────────────────────────────────────────────────────────────

    def _build_triggers(self) -> Dict[str, Trigger]:
        if self.config.triggers is None:
            return default_triggers()
        return {t.name: t for t in (Trigger.from_dict(d) for d in self.config.triggers)}

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}_{self._seq}"

    def initialize(self, starting_state: Optional[Dict[str, Any]] = None) -> None:
        """Build the state from base + ``starting_state`` (or config initial state)."""
        base = EmotionalStateVector.from_base(self.config.base_state, self.clock.now())
        overrides = starting_state if starting_state is not None else self.config.initial_state
        self.state = base.merged(overrides, timestamp=self.clock.now())
        self.history = []
        self._save_history()
        self._update_metrics()
        self.initialized = True
        log.info("emotional engine initialized (dominant=%s)", self.state.dominant)

    def _require_initialized(self) -> None:
        if not self.initialized:
            raise NotInitializedError("EmotionalEngine not initialized", source="emotional")

    # ── input pipeline ───────────────────────────────────────────────────────

    def process_emotional_input(self, data: Dict[str, Any]) -> str:
        """
        Queue an input.  Above 0.6 a processing thread is spawned; above
        0.8 the state is also updated immediately, bypassing the queue.
        Returns the input id.
        """
        now = self.clock.now()
        inp = EmotionalInput(
            id=self._next_id("input"),
            type=data.get("type", self.state.dominant),
            intensity=clamp01(data.get("intensity") or DEFAULT_INPUT_INTENSITY),
            duration_ms=data.get("duration") or DEFAULT_INPUT_DURATION,
            timestamp=now,
            source=data.get("source") or "external",
            triggers=list(data.get("triggers") or []),
        )
        self.queue.append(inp)
        if inp.intensity > SPAWN_THRESHOLD:
            self._spawn_thread(inp)
        if inp.intensity > IMMEDIATE_THRESHOLD:
            self.update_emotional_state(inp.type, inp.intensity)
        return inp.id

    def process_emotional_queue(self) -> None:
        now = self.clock.now()
        for inp in self.queue:
            if not inp.processed:
                self.update_emotional_state(inp.type, self._damped(inp.intensity))
                self._check_triggers(inp)
                self._save_history()
                inp.processed = True
        self.queue = [inp for inp in self.queue if not inp.expired(now)]

    def _damped(self, intensity: float) -> float:
        now = self.clock.now()
        for strategy in self.strategies.values():
            if strategy.is_available(now):
                intensity *= strategy.damping_factor()
        return max(MIN_DAMPED_INTENSITY, intensity)

    def update_emotional_state(self, emotion: str, intensity: float) -> None:
        self.state.shift(emotion, intensity * PRIMARY_INPUT_WEIGHT,
                         intensity * SECONDARY_INPUT_WEIGHT)
        self._refresh_dominant()
        self.state.timestamp = self.clock.now()

    def _check_triggers(self, inp: EmotionalInput) -> None:
        for trigger in self.triggers.values():
            if inp.type in trigger.emotions and trigger.fires(inp.intensity):
                self._activate_trigger(trigger)

    def _activate_trigger(self, trigger: Trigger) -> None:
        trigger.record(self.clock.now())
        for emotion in trigger.emotions:
            if emotion in self.state.primary:
                self.state.shift(emotion, TRIGGER_BOOST, 0.0)
        self._refresh_dominant()
        log.info("emotional trigger activated: %s", trigger.name)

    def _refresh_dominant(self) -> None:
        previous = self.state.dominant
        current = self.state.recompute_dominant()
        if current == previous:
            return
        now = self.clock.now()
        self.system_log.push(
            now, LEVEL_INFO,
            f"Dominant emotion changed from {previous} to {current}",
            "emotional_state_change",
        )
        self.narrative.check_triggers("dominant_emotion_change", {
            "previous":  previous,
            "current":   current,
            "intensity": self.state.primary.get(current, 0.0),
        })

    def _save_history(self) -> None:
        self.history.append(self.state.copy())
        overflow = len(self.history) - self.config.max_history
        if overflow > 0:
            del self.history[:overflow]

    # ── threads ──────────────────────────────────────────────────────────────

    def _spawn_thread(self, inp: EmotionalInput) -> EmotionalThread:
        thread = EmotionalThread.spawn(
            f"thread_{inp.id}", inp.type, inp.intensity, self.clock.now(), trigger=inp.source,
        )
        self.threads[thread.id] = thread
        self.system_log.push(
            self.clock.now(), LEVEL_INFO,
            f"Emotional processing thread created for {inp.type}",
            "emotional_processing", thread_id=thread.id,
        )
        log.debug("spawned %s (%s %.2f)", thread.id, inp.type, inp.intensity)
        return thread

    def _update_threads(self) -> List[dict]:
        now = self.clock.now()
        events: List[dict] = []
        for thread in list(self.threads.values()):
            result = thread.advance(now)
            for kind in result.new_issues:
                events.append({
                    "type": "thread_issue_detected", "thread_id": thread.id,
                    "issue": kind.value, "timestamp": now,
                })
            if result.state_change:
                self.state.shift(thread.emotion, result.state_change * PRIMARY_INPUT_WEIGHT, 0.0)
                self.state.adjust_scalar("coherence", result.coherence_change)
                self.state.adjust_scalar("regulation", result.regulation_change)
                self._refresh_dominant()
            if result.completed:
                events.append({"type": "thread_completed", "thread_id": thread.id,
                               "emotion": thread.emotion, "timestamp": now})
                del self.threads[thread.id]
            elif result.crashed:
                events.append({"type": "thread_crashed", "thread_id": thread.id,
                               "emotion": thread.emotion, "timestamp": now})
                log.warning("emotional thread %s crashed", thread.id)
                del self.threads[thread.id]
        return events

    # ── interventions ────────────────────────────────────────────────────────

    def apply_emotional_intervention(self, thread_id: str, intervention_type: str,
                                     player_solution: str) -> Dict[str, Any]:
        """
        Score ``player_solution`` against ``intervention_type`` on a thread.

        Never raises: every failure is returned as ``success=False``.
        """
        thread = self.threads.get(thread_id)
        if thread is None or not thread.debuggable:
            return {"success": False, "message": "Thread not found or not debuggable"}
        intervention = CATALOGUE.get(intervention_type)
        if intervention is None:
            return {"success": False, "message": f"Unknown intervention type: {intervention_type}"}

        score = score_solution(intervention, player_solution)
        if not score.accepted:
            return {
                "success": False,
                "message": "Invalid solution",
                "hints": score.hints(),
                "requirements_met": len(score.met),
                "requirements_total": score.total,
            }

        now = self.clock.now()
        resolved = thread.resolve(intervention.resolves)
        thread.stability = clamp01(thread.stability + intervention.stability_bonus)
        thread.processing_efficiency = clamp01(
            thread.processing_efficiency + intervention.efficiency_bonus)
        thread.interventions_applied.append({
            "intervention": intervention_type,
            "applied_at": now,
            "resolved": [k.value for k in resolved],
        })
        self.system_log.push(
            now, LEVEL_INFO,
            f"Emotional intervention {intervention_type} applied to {thread.emotion} thread",
            "emotional_intervention", thread_id=thread_id, intervention=intervention_type,
        )
        self.narrative.check_triggers("emotional_intervention", {
            "thread_id": thread_id, "intervention": intervention_type,
        })
        return {
            "success": True,
            "message": f"{intervention_type} applied successfully",
            "resolved_issues": [k.value for k in resolved],
            "thread_health": {
                "stability": thread.stability,
                "efficiency": thread.processing_efficiency,
                "remaining_issues": len(thread.issues),
            },
        }

    # ── regulation: instant strategies ───────────────────────────────────────

    def apply_regulation_strategy(self, name: str, target_emotion: str) -> Dict[str, Any]:
        now = self.clock.now()
        strategy = self.strategies.get(name)
        if strategy is None or not strategy.is_available(now):
            return {"success": False, "message": "Strategy not available"}
        strategy.last_used = now
        self.state.scale_primary(target_emotion, strategy.damping_factor())
        self.state.adjust_scalar("regulation", strategy.effectiveness * STRATEGY_REG_GAIN)
        self._refresh_dominant()
        self.system_log.push(now, LEVEL_INFO, f"Applied {name} to {target_emotion}",
                             "emotional_regulation")
        return {
            "success": True,
            "message": f"Applied {name} to {target_emotion}",
            "effectiveness": strategy.effectiveness,
        }

    def available_strategies(self) -> List[str]:
        now = self.clock.now()
        return [n for n, s in self.strategies.items() if s.is_available(now)]

    # ── regulation: timed records ────────────────────────────────────────────

    def apply_emotional_regulation(self, strategy: str, target_emotion: str,
                                   intensity: float = 0.5,
                                   duration_ms: Optional[float] = None) -> Dict[str, Any]:
        record = RegulationRecord.start(
            self._next_id("reg"), strategy, target_emotion, intensity,
            self.clock.now(), duration_ms,
        )
        self.regulations[record.id] = record
        self.system_log.push(
            self.clock.now(), LEVEL_INFO,
            f"Emotional regulation started: {strategy} on {target_emotion}",
            "emotional_regulation", regulation_id=record.id,
        )
        return {
            "success": True,
            "regulation_id": record.id,
            "duration_ms": record.duration_ms,
            "effectiveness": record.effectiveness,
        }

    def _update_regulations(self) -> None:
        now = self.clock.now()
        for record in list(self.regulations.values()):
            if record.completed:
                if record.expired(now):
                    del self.regulations[record.id]
                continue
            self.state.shift(record.target_emotion, -record.step(now))
            if record.progress >= 1.0:
                self._complete_regulation(record)
        self._refresh_dominant()

    def _complete_regulation(self, record: RegulationRecord) -> None:
        now = self.clock.now()
        self.state.shift(record.target_emotion, -record.final_reduction())
        for effect in record.side_effects:
            self._apply_side_effect(effect, record)
        self.state.adjust_scalar("regulation", record.effectiveness * COMPLETION_REG_GAIN)
        record.completed = True
        record.completed_at = now
        self.system_log.push(
            now, LEVEL_INFO,
            f"Emotional regulation completed: {record.strategy}",
            "emotional_regulation", regulation_id=record.id,
        )

    def _apply_side_effect(self, effect: SideEffect, record: RegulationRecord) -> None:
        now = self.clock.now()
        if effect is SideEffect.REBOUND_RISK:
            log.warning("suppressed %s may rebound", record.target_emotion)
            self.system_log.push(
                now, LEVEL_WARNING,
                f"Suppressed {record.target_emotion} may rebound with greater intensity",
                "emotional_side_effect", side_effect=effect.value,
            )
        elif effect is SideEffect.EMOTIONAL_NUMBING:
            self.state.scale_all_primary(0.95)
        elif effect is SideEffect.COGNITIVE_LOAD:
            self.state.adjust_axis("cognitive", "clarity", -0.1)
            self.aftereffects.append(Aftereffect(now + COGNITIVE_LOAD_MS,
                                                 "cognitive", "clarity", 0.1))
        elif effect is SideEffect.AVOIDANCE_PATTERN:
            self.state.adjust_axis("behavioral", "avoidance", 0.05)
        elif effect is SideEffect.SOCIAL_CONSEQUENCES:
            self.state.adjust_axis("behavioral", "withdrawal", 0.05)

    def _apply_aftereffects(self) -> None:
        now = self.clock.now()
        pending: List[Aftereffect] = []
        for after in self.aftereffects:
            if after.due_at <= now:
                self.state.adjust_axis(after.axis, after.key, after.delta)
            else:
                pending.append(after)
        self.aftereffects = pending

    # ── engine commands ──────────────────────────────────────────────────────

    def trigger_emotion(self, emotion: str, intensity: float = DEFAULT_INPUT_INTENSITY) -> str:
        return self.process_emotional_input({
            "type": emotion, "intensity": intensity,
            "source": "debug_trigger", "duration": DEFAULT_INPUT_DURATION,
        })

    def suppress_emotion(self, emotion: str, mechanism: str) -> Dict[str, Any]:
        mech = SUPPRESSION_MECHANISMS.get(mechanism)
        if mech is None or emotion not in mech.target_emotions:
            return {"success": False, "message": "Invalid suppression mechanism"}
        self.state.scale_primary(emotion, 1.0 - mech.strength)
        self.state.adjust_scalar("regulation", -mech.energy_cost)
        self._refresh_dominant()
        return {
            "success": True,
            "message": f"Suppressed {emotion} using {mechanism}",
            "energy_cost": mech.energy_cost,
        }

    def reset_emotional_state(self) -> Dict[str, Any]:
        self.state = EmotionalStateVector.from_base(self.config.base_state, self.clock.now())
        self.threads.clear()
        self.queue = []
        return {"success": True, "message": "Emotional state reset to baseline"}

    def process_trauma(self, trauma: Optional[Dict[str, Any]] = None) -> str:
        trauma = trauma or {}
        return self.process_emotional_input({
            "type": "trauma_processing",
            "intensity": trauma.get("intensity", 0.8),
            "source": "trauma_therapy",
            "duration": 30_000,
            "triggers": trauma.get("triggers", []),
        })

    def emotional_catharsis(self, target_emotions: List[str]) -> Dict[str, Any]:
        for emotion in target_emotions:
            self.state.scale_primary(emotion, 0.3)
        self.state.adjust_scalar("regulation", 0.2)
        self._refresh_dominant()
        return {
            "success": True,
            "message": "Emotional catharsis completed",
            "processed_emotions": list(target_emotions),
        }

    def intensify_all(self, amount: float) -> None:
        """Add ``amount`` to every primary and secondary emotion."""
        for name in list(self.state.primary):
            self.state.shift(name, amount, 0.0)
        for name in list(self.state.secondary):
            self.state.secondary[name] = clamp01(self.state.secondary[name] + amount)
        self._refresh_dominant()

    def modify_emotion(self, emotion: str, modifier: float) -> bool:
        found = self.state.shift(emotion, modifier)
        self._refresh_dominant()
        return found

    # ── player verbs ─────────────────────────────────────────────────────────

    def calm(self, emotion: Optional[str] = None,
             strategy: str = "cognitive_reappraisal") -> Dict[str, Any]:
        return self.apply_regulation_strategy(strategy, emotion or self.state.dominant)

    def intensify(self, emotion: Optional[str] = None, intensity: float = 0.7) -> Dict[str, Any]:
        input_id = self.trigger_emotion(emotion or self.state.dominant, intensity)
        return {"success": True, "input_id": input_id}

    def balance(self) -> Dict[str, Any]:
        """Pull every primary emotion halfway toward the primary mean."""
        mean = self.state.mean_primary()
        for name, value in self.state.primary.items():
            self.state.primary[name] = clamp01(value + (mean - value) * 0.5)
        self.state.adjust_scalar("coherence", 0.1)
        self._refresh_dominant()
        return {"success": True, "message": "Emotional state balanced", "mean": mean}

    def suppress(self, emotion: Optional[str] = None,
                 mechanism: str = "avoidance") -> Dict[str, Any]:
        return self.suppress_emotion(emotion or self.state.dominant, mechanism)

    def execute_action(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self._require_initialized()
        p = params or {}
        if action == "calm":
            return self.calm(p.get("emotion"), p.get("strategy", "cognitive_reappraisal"))
        if action == "intensify":
            return self.intensify(p.get("emotion"), p.get("intensity", 0.7))
        if action == "balance":
            return self.balance()
        if action == "suppress":
            return self.suppress(p.get("emotion"), p.get("mechanism", "avoidance"))
        if action == "apply_regulation":
            return self.apply_regulation_strategy(p.get("strategy", ""),
                                                  p.get("target_emotion", self.state.dominant))
        if action == "regulate":
            return self.apply_emotional_regulation(
                p.get("strategy", "reappraisal"),
                p.get("target_emotion", self.state.dominant),
                p.get("intensity", 0.5),
                p.get("duration_ms"),
            )
        if action == "trigger_emotion":
            return self.trigger_emotion(p["emotion"], p.get("intensity", DEFAULT_INPUT_INTENSITY))
        if action == "suppress_emotion":
            return self.suppress_emotion(p["emotion"], p.get("mechanism", "avoidance"))
        if action == "reset_emotional_state":
            return self.reset_emotional_state()
        if action == "process_trauma":
            return self.process_trauma(p.get("trauma_data"))
        if action == "emotional_catharsis":
            return self.emotional_catharsis(p.get("target_emotions", []))
        raise UnknownSubsystemActionError(f"Unknown emotional action: {action}",
                                          source="emotional")

    # ── metrics & queries ────────────────────────────────────────────────────

    def _update_metrics(self) -> None:
        values = list(self.state.primary.values())
        if values:
            mean = sum(values) / len(values)
            self.metrics.variance = sum((v - mean) ** 2 for v in values) / len(values)
        self.metrics.volatility = self.get_volatility()
        self.metrics.coherence  = self.state.coherence
        self.metrics.regulation = self.state.regulation

    def get_total_intensity(self) -> float:
        """Mean primary intensity; the instance uses it for the stability delta."""
        return self.state.mean_primary()

    def get_volatility(self) -> float:
        """Mean absolute primary change between the two newest history entries."""
        if len(self.history) < 2 or not self.state.primary:
            return 0.0
        prev, curr = self.history[-2], self.history[-1]
        total = sum(abs(curr.primary.get(e, 0.0) - prev.primary.get(e, 0.0))
                    for e in self.state.primary)
        return total / len(self.state.primary)

    def get_stress_level(self) -> float:
        cog = self.state.cognitive
        phys = self.state.physiological
        cognitive_stress = (cog.get("rumination", 0.0) + cog.get("intrusion", 0.0)) / 2
        physiological_stress = 1.0 - phys.get("stability", 1.0)
        return (self.state.mean_primary() + cognitive_stress + physiological_stress) / 3

    def get_debuggable_issues(self) -> List[Dict[str, Any]]:
        issues: List[Dict[str, Any]] = []
        for thread in self.threads.values():
            if thread.debuggable and thread.issues:
                issues.append({
                    "type": "emotional_thread_issue",
                    "thread_id": thread.id,
                    "emotion": thread.emotion,
                    "issues": [i.to_dict() for i in thread.issues],
                    "interventions": thread.intervention_points(),
                    "stability": thread.stability,
                    "intensity": thread.intensity,
                })
        if self.state.coherence < 0.3:
            issues.append({
                "type": "emotional_coherence_breakdown",
                "description": "Emotional state lacks coherence",
                "severity": "high",
            })
        if self.state.regulation < 0.2:
            issues.append({
                "type": "regulation_failure",
                "description": "Emotional regulation systems failing",
                "severity": "critical",
            })
        return issues

    def generate_profile(self) -> Dict[str, Any]:
        return {"dominant": self.state.dominant, "levels": dict(self.state.primary)}

    def get_resource_usage(self) -> Dict[str, float]:
        threads = list(self.threads.values())
        return {
            "cpu":     sum(t.cpu_usage for t in threads),
            "memory":  sum(t.memory_usage for t in threads),
            "threads": len(threads),
        }

    def get_state(self) -> Dict[str, Any]:
        return {
            "current_state": self.state.to_dict(),
            "stability_metrics": self.metrics.to_dict(),
            "stress_level": self.get_stress_level(),
            "active_threads": len(self.threads),
            "active_regulations": sum(1 for r in self.regulations.values() if r.active),
            "processing_queue_size": len(self.queue),
            "available_strategies": self.available_strategies(),
            "is_initialized": self.initialized,
        }

    # ── tick ─────────────────────────────────────────────────────────────────

    def tick(self, delta_ms: Optional[float] = None) -> List[Dict[str, Any]]:
        """
        Advance one step.  The clock has already been moved by the caller;
        ``delta_ms`` is accepted for interface symmetry with the ledger.
        """
        if not self.initialized:
            return []
        previous_dominant = self.state.dominant
        previous_regulation = self.state.regulation

        self.process_emotional_queue()
        events = self._update_threads()
        self._update_regulations()
        self._apply_aftereffects()
        self.state.decay(self.config.decay_rate)
        self._refresh_dominant()
        self._update_metrics()

        now = self.clock.now()
        if self.state.dominant != previous_dominant:
            events.append({"type": "dominant_emotion_change", "from": previous_dominant,
                           "to": self.state.dominant, "timestamp": now})
        if self.state.regulation < REGULATION_BREAKDOWN <= previous_regulation:
            events.append({"type": "emotional_regulation_breakdown",
                           "regulation_level": self.state.regulation, "timestamp": now})
        return events

    # ── capture / restore ────────────────────────────────────────────────────

    def capture_state(self) -> Dict[str, Any]:
        return {
            "current_state": self.state.to_dict(),
            "history":  [s.to_dict() for s in self.history],
            "queue":    [i.to_dict() for i in self.queue],
            "threads":  [t.to_dict() for t in self.threads.values()],
            "strategies":  [s.to_dict() for s in self.strategies.values()],
            "triggers":    [t.to_dict() for t in self.triggers.values()],
            "regulations": [r.to_dict() for r in self.regulations.values()],
            "aftereffects": [a.to_dict() for a in self.aftereffects],
            "metrics": self.metrics.to_dict(),
            "seq": self._seq,
            "initialized": self.initialized,
        }

    def restore_state(self, captured: Optional[Dict[str, Any]]) -> bool:
        if not captured:
            return False
        self.state = EmotionalStateVector.from_dict(captured["current_state"])
        self.history = [EmotionalStateVector.from_dict(s) for s in captured.get("history", [])]
        self.queue = [EmotionalInput.from_dict(i) for i in captured.get("queue", [])]
        self.threads = {t["id"]: EmotionalThread.from_dict(t)
                        for t in captured.get("threads", [])}
        self.strategies = {s["name"]: RegulationStrategy.from_dict(s)
                           for s in captured.get("strategies", [])} or default_strategies()
        self.triggers = {t["name"]: Trigger.from_dict(t)
                         for t in captured.get("triggers", [])} or self._build_triggers()
        self.regulations = {r["id"]: RegulationRecord.from_dict(r)
                            for r in captured.get("regulations", [])}
        self.aftereffects = [Aftereffect(**a) for a in captured.get("aftereffects", [])]
        self.metrics = StabilityMetrics(**captured.get("metrics", {}))
        self._seq = captured.get("seq", 0)
        self.initialized = captured.get("initialized", False)
        return True

    def shutdown(self) -> None:
        self.threads.clear()
        self.queue = []
        self.regulations.clear()
        self.initialized = False
        log.info("emotional engine shut down")
