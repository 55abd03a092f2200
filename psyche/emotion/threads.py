"""
psyche/emotion/threads.py — Emotional processing threads
=========================================================

A thread is the simulated work of digesting one strong emotional input.
It walks a fixed stage pipeline:

    RECOGNITION → APPRAISAL → RESPONSE_GENERATION → REGULATION
                → INTEGRATION → COMPLETED

Each tick adds ``0.1 × processing_efficiency`` to the stage progress;
reaching 1.0 advances the stage and resets progress.

Vulnerabilities are a closed set (``VulnerabilityKind``).  Every kind
has exactly one ``VulnerabilityRule`` in ``RULES``: the stages it can
fire in, a condition on the thread, and the permanent discount applied
when it is first detected.  Which kinds are checked depends on the
thread's emotion (``EMOTION_VULNERABILITIES``) plus ``UNIVERSAL``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from psyche.emotion.state import clamp01

log = logging.getLogger(__name__)


SPAWN_THRESHOLD = 0.6          # input intensity above this spawns a thread
PROGRESS_RATE   = 0.1          # stage progress per tick × efficiency
IMPACT_WEIGHT   = 0.05         # share of thread intensity pushed to the state
STALL_MS        = 15_000       # time in one stage counted as "stalled"
STAGNATION_MS   = 30_000


# ── Stages ───────────────────────────────────────────────────────────────────

class ThreadStage(Enum):
    RECOGNITION         = "recognition"
    APPRAISAL           = "appraisal"
    RESPONSE_GENERATION = "response_generation"
    REGULATION          = "regulation"
    INTEGRATION         = "integration"
    COMPLETED           = "completed"

    @property
    def next(self) -> "ThreadStage":
        if self is ThreadStage.COMPLETED:
            return self
        return STAGE_ORDER[STAGE_ORDER.index(self) + 1]

    @property
    def terminal(self) -> bool:
        return self is ThreadStage.COMPLETED


STAGE_ORDER: Tuple[ThreadStage, ...] = tuple(ThreadStage)


# ── Vulnerabilities ──────────────────────────────────────────────────────────

class VulnerabilityKind(Enum):
    # grief
    RUMINATION_LOOP         = "rumination_loop"
    MEMORY_FLOODING         = "memory_flooding"
    EMOTIONAL_NUMBNESS      = "emotional_numbness"
    # anger
    EXPLOSIVE_DISCHARGE     = "explosive_discharge"
    COGNITIVE_NARROWING     = "cognitive_narrowing"
    IMPULSE_OVERRIDE        = "impulse_override"
    # fear
    PARALYSIS_CASCADE       = "paralysis_cascade"
    HYPERVIGILANCE          = "hypervigilance"
    AVOIDANCE_AMPLIFICATION = "avoidance_amplification"
    # sadness
    HOPELESSNESS_SPIRAL     = "hopelessness_spiral"
    ENERGY_DEPLETION        = "energy_depletion"
    ISOLATION_FEEDBACK      = "isolation_feedback"
    # guilt
    SELF_PUNISHMENT_LOOP    = "self_punishment_loop"
    SHAME_CASCADE           = "shame_cascade"
    PERFECTIONISM_TRAP      = "perfectionism_trap"
    # anything else
    GENERIC_INSTABILITY     = "generic_instability"
    # every emotion
    EMOTIONAL_OVERFLOW      = "emotional_overflow"
    PROCESSING_STAGNATION   = "processing_stagnation"
    THREAD_CRASH            = "thread_crash"


Condition = Callable[["EmotionalThread", float], bool]


@dataclass(frozen=True)
class VulnerabilityRule:
    kind:       VulnerabilityKind
    stages:     Optional[FrozenSet[ThreadStage]]   # None = any live stage
    condition:  Condition
    efficiency: float = 1.0     # multiplier applied once on detection
    stability:  float = 1.0
    coherence:  float = 1.0
    fatal:      bool  = False
    description: str  = ""

    def matches(self, thread: "EmotionalThread", now: float) -> bool:
        if self.stages is not None and thread.stage not in self.stages:
            return False
        return self.condition(thread, now)


def _stalled(t: "EmotionalThread", now: float) -> bool:
    return now - t.stage_started_at > STALL_MS


def _stages(*s: ThreadStage) -> FrozenSet[ThreadStage]:
    return frozenset(s)


_S = ThreadStage
_V = VulnerabilityKind

RULES: Dict[VulnerabilityKind, VulnerabilityRule] = {r.kind: r for r in (
    VulnerabilityRule(_V.RUMINATION_LOOP, _stages(_S.APPRAISAL), _stalled,
                      efficiency=0.5,
                      description="Appraisal keeps revisiting the same loss"),
    VulnerabilityRule(_V.MEMORY_FLOODING, None,
                      lambda t, now: t.intensity > 0.9 and t.stability < 0.5,
                      stability=0.8,
                      description="Associated memories surface faster than they can be processed"),
    VulnerabilityRule(_V.EMOTIONAL_NUMBNESS, _stages(_S.INTEGRATION),
                      lambda t, now: t.processing_efficiency < 0.3,
                      efficiency=0.8,
                      description="Integration shuts the feeling off instead of absorbing it"),
    VulnerabilityRule(_V.EXPLOSIVE_DISCHARGE, _stages(_S.RESPONSE_GENERATION),
                      lambda t, now: t.intensity > 0.8,
                      stability=0.6,
                      description="Response is released all at once"),
    VulnerabilityRule(_V.COGNITIVE_NARROWING, _stages(_S.APPRAISAL),
                      lambda t, now: t.intensity > 0.7,
                      efficiency=0.7,
                      description="Appraisal only sees the threat"),
    VulnerabilityRule(_V.IMPULSE_OVERRIDE, _stages(_S.RESPONSE_GENERATION, _S.REGULATION),
                      lambda t, now: t.stability < 0.5,
                      stability=0.7,
                      description="Impulse bypasses regulation"),
    VulnerabilityRule(_V.PARALYSIS_CASCADE, _stages(_S.RESPONSE_GENERATION), _stalled,
                      efficiency=0.4,
                      description="No response can be chosen"),
    VulnerabilityRule(_V.HYPERVIGILANCE, _stages(_S.RECOGNITION),
                      lambda t, now: t.intensity > 0.85,
                      stability=0.8,
                      description="Every signal is recognised as danger"),
    VulnerabilityRule(_V.AVOIDANCE_AMPLIFICATION, _stages(_S.REGULATION), _stalled,
                      efficiency=0.6,
                      description="Regulation settles on avoidance"),
    VulnerabilityRule(_V.HOPELESSNESS_SPIRAL, _stages(_S.REGULATION),
                      lambda t, now: t.stability < 0.4,
                      efficiency=0.5,
                      description="Regulation concludes nothing will change"),
    VulnerabilityRule(_V.ENERGY_DEPLETION, None,
                      lambda t, now: t.processing_efficiency < 0.4,
                      efficiency=0.8,
                      description="Processing runs out of energy"),
    VulnerabilityRule(_V.ISOLATION_FEEDBACK, _stages(_S.INTEGRATION), _stalled,
                      efficiency=0.6,
                      description="Integration withdraws from others"),
    VulnerabilityRule(_V.SELF_PUNISHMENT_LOOP, _stages(_S.APPRAISAL), _stalled,
                      efficiency=0.5,
                      description="Appraisal keeps assigning blame"),
    VulnerabilityRule(_V.SHAME_CASCADE, None,
                      lambda t, now: t.intensity > 0.8 and t.stability < 0.5,
                      stability=0.7,
                      description="Guilt about an act becomes shame about the self"),
    VulnerabilityRule(_V.PERFECTIONISM_TRAP, _stages(_S.RESPONSE_GENERATION), _stalled,
                      efficiency=0.6,
                      description="No response is good enough"),
    VulnerabilityRule(_V.GENERIC_INSTABILITY, None,
                      lambda t, now: t.stability < 0.3,
                      efficiency=0.8,
                      description="Processing is unstable"),
    VulnerabilityRule(_V.EMOTIONAL_OVERFLOW, None,
                      lambda t, now: t.intensity > 0.9 and t.stability < 0.3,
                      coherence=0.7,
                      description="Intensity exceeds what the thread can hold"),
    VulnerabilityRule(_V.PROCESSING_STAGNATION, None,
                      lambda t, now: t.current_stage_progress < 0.1
                      and now - t.created_at > STAGNATION_MS,
                      efficiency=0.3,
                      description="Thread has stopped making progress"),
    VulnerabilityRule(_V.THREAD_CRASH, None,
                      lambda t, now: t.stability < 0.1,
                      fatal=True,
                      description="Thread stability collapsed"),
)}

EMOTION_VULNERABILITIES: Dict[str, Tuple[VulnerabilityKind, ...]] = {
    "grief":   (_V.RUMINATION_LOOP, _V.MEMORY_FLOODING, _V.EMOTIONAL_NUMBNESS),
    "anger":   (_V.EXPLOSIVE_DISCHARGE, _V.COGNITIVE_NARROWING, _V.IMPULSE_OVERRIDE),
    "fear":    (_V.PARALYSIS_CASCADE, _V.HYPERVIGILANCE, _V.AVOIDANCE_AMPLIFICATION),
    "sadness": (_V.HOPELESSNESS_SPIRAL, _V.ENERGY_DEPLETION, _V.ISOLATION_FEEDBACK),
    "guilt":   (_V.SELF_PUNISHMENT_LOOP, _V.SHAME_CASCADE, _V.PERFECTIONISM_TRAP),
}
DEFAULT_VULNERABILITIES: Tuple[VulnerabilityKind, ...] = (_V.GENERIC_INSTABILITY,)
UNIVERSAL: Tuple[VulnerabilityKind, ...] = (
    _V.EMOTIONAL_OVERFLOW, _V.PROCESSING_STAGNATION, _V.THREAD_CRASH,
)

THREAD_PRIORITY: Dict[str, str] = {
    "grief":   "critical",
    "fear":    "critical",
    "anger":   "high",
    "sadness": "high",
    "guilt":   "medium",
    "love":    "medium",
    "joy":     "normal",
    "contentment": "low",
}


def vulnerabilities_for(emotion: str) -> Tuple[VulnerabilityKind, ...]:
    return EMOTION_VULNERABILITIES.get(emotion, DEFAULT_VULNERABILITIES) + UNIVERSAL


# ── Thread ───────────────────────────────────────────────────────────────────

@dataclass
class ThreadIssue:
    kind:        VulnerabilityKind
    detected_at: float
    stage:       ThreadStage

    def to_dict(self) -> dict:
        return {
            "type":        self.kind.value,
            "detected_at": self.detected_at,
            "stage":       self.stage.value,
            "description": RULES[self.kind].description,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ThreadIssue":
        return cls(
            kind=VulnerabilityKind(d["type"]),
            detected_at=d["detected_at"],
            stage=ThreadStage(d["stage"]),
        )


@dataclass
class ThreadTickResult:
    """What one tick of a thread did; the engine turns this into events."""
    state_change: float = 0.0
    coherence_change: float = 0.0
    regulation_change: float = 0.0
    new_issues: List[VulnerabilityKind] = field(default_factory=list)
    advanced_to: Optional[ThreadStage] = None
    completed: bool = False
    crashed: bool = False


@dataclass
class EmotionalThread:
    id:        str
    emotion:   str
    intensity: float
    trigger:   Optional[str] = None
    created_at:       float = 0.0
    stage:            ThreadStage = ThreadStage.RECOGNITION
    stage_started_at: float = 0.0
    current_stage_progress: float = 0.0
    processing_efficiency:  float = 0.8
    stability:  float = 1.0
    coherence:  float = 1.0
    cpu_usage:    float = 0.0
    memory_usage: float = 0.0
    issues: List[ThreadIssue] = field(default_factory=list)
    interventions_applied: List[dict] = field(default_factory=list)
    debuggable: bool = True

    @property
    def priority(self) -> str:
        return THREAD_PRIORITY.get(self.emotion, "normal")

    @classmethod
    def spawn(cls, thread_id: str, emotion: str, intensity: float,
              now: float, trigger: Optional[str] = None) -> "EmotionalThread":
        return cls(
            id=thread_id,
            emotion=emotion,
            intensity=clamp01(intensity),
            trigger=trigger,
            created_at=now,
            stage_started_at=now,
            cpu_usage=20 + intensity * 30,
            memory_usage=50 + intensity * 40,
        )

    @property
    def issue_kinds(self) -> List[VulnerabilityKind]:
        return [i.kind for i in self.issues]

    @property
    def has_fatal_issue(self) -> bool:
        return any(RULES[k].fatal for k in self.issue_kinds)

    @property
    def finished(self) -> bool:
        return self.stage.terminal or self.has_fatal_issue

    def intervention_points(self) -> List[str]:
        from psyche.emotion.interventions import intervention_points_for
        return intervention_points_for(self.emotion)

    # ── per-tick ─────────────────────────────────────────────────────────────

    def advance(self, now: float) -> ThreadTickResult:
        """
        Run one tick: progress, stage change, vulnerability scan, impact.

        Returns a ``ThreadTickResult``; the caller applies ``state_change``
        (and the coherence / regulation deltas) to the global vector.
        """
        result = ThreadTickResult()
        if self.finished:
            return result

        self.current_stage_progress += PROGRESS_RATE * self.processing_efficiency
        if self.current_stage_progress >= 1.0:
            self.stage = self.stage.next
            self.stage_started_at = now
            self.current_stage_progress = 0.0
            result.advanced_to = self.stage
            log.debug("thread %s → %s", self.id, self.stage.value)
            if self.stage.terminal:
                result.completed = True
                return result

        result.new_issues = self._scan(now)
        if self.has_fatal_issue:
            result.crashed = True
            return result

        discount = max(0.1, 1.0 - 0.2 * len(self.issues))
        change = self.intensity * IMPACT_WEIGHT * max(0.1, self.stability) * discount
        result.state_change = change
        result.coherence_change = (self.stability - 0.5) * 0.1
        result.regulation_change = self.processing_efficiency * 0.05
        return result

    def _scan(self, now: float) -> List[VulnerabilityKind]:
        found: List[VulnerabilityKind] = []
        present = set(self.issue_kinds)
        for kind in vulnerabilities_for(self.emotion):
            if kind in present:
                continue
            rule = RULES[kind]
            if not rule.matches(self, now):
                continue
            self.issues.append(ThreadIssue(kind=kind, detected_at=now, stage=self.stage))
            self.processing_efficiency = clamp01(self.processing_efficiency * rule.efficiency)
            self.stability = clamp01(self.stability * rule.stability)
            self.coherence = clamp01(self.coherence * rule.coherence)
            found.append(kind)
            log.debug("thread %s: %s detected", self.id, kind.value)
        return found

    def resolve(self, kinds) -> List[VulnerabilityKind]:
        """Drop every issue whose kind is in ``kinds``; return the removed kinds."""
        removed = [i.kind for i in self.issues if i.kind in kinds]
        self.issues = [i for i in self.issues if i.kind not in kinds]
        return removed

    # ── serialisation ────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "id":         self.id,
            "emotion":    self.emotion,
            "intensity":  self.intensity,
            "trigger":    self.trigger,
            "created_at": self.created_at,
            "stage":      self.stage.value,
            "stage_started_at":       self.stage_started_at,
            "current_stage_progress": self.current_stage_progress,
            "processing_efficiency":  self.processing_efficiency,
            "stability":  self.stability,
            "coherence":  self.coherence,
            "cpu_usage":    self.cpu_usage,
            "memory_usage": self.memory_usage,
            "issues": [i.to_dict() for i in self.issues],
            "interventions_applied": list(self.interventions_applied),
            "priority":   self.priority,
            "intervention_points": self.intervention_points(),
            "debuggable": self.debuggable,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "EmotionalThread":
        return cls(
            id=d["id"],
            emotion=d["emotion"],
            intensity=d["intensity"],
            trigger=d.get("trigger"),
            created_at=d.get("created_at", 0.0),
            stage=ThreadStage(d.get("stage", "recognition")),
            stage_started_at=d.get("stage_started_at", 0.0),
            current_stage_progress=d.get("current_stage_progress", 0.0),
            processing_efficiency=d.get("processing_efficiency", 0.8),
            stability=d.get("stability", 1.0),
            coherence=d.get("coherence", 1.0),
            cpu_usage=d.get("cpu_usage", 0.0),
            memory_usage=d.get("memory_usage", 0.0),
            issues=[ThreadIssue.from_dict(i) for i in d.get("issues", [])],
            interventions_applied=list(d.get("interventions_applied", [])),
            debuggable=d.get("debuggable", True),
        )
