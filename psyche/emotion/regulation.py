"""
psyche/emotion/regulation.py — Coping strategies, triggers, suppression
========================================================================

Three stateless-ish rule families plus one timed record:

    RegulationStrategy   — instant coping move with a cooldown
    Trigger              — emotion set + activation threshold
    SuppressionMechanism — pushes target emotions down, costs energy
    RegulationRecord     — timed regulation that ramps over its duration
                           and leaves side effects when it completes
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


STRATEGY_DAMPING   = 0.3    # target × (1 − effectiveness × 0.3)
STRATEGY_REG_GAIN  = 0.1    # regulation += effectiveness × 0.1
TRIGGER_BOOST      = 0.2
RAMP_WEIGHT        = 0.01
COMPLETION_REG_GAIN = 0.02
RECORD_RETENTION_MS = 30_000


# ── Strategies ───────────────────────────────────────────────────────────────

@dataclass
class RegulationStrategy:
    name:          str
    effectiveness: float
    cooldown_ms:   float
    description:   str = ""
    last_used:     Optional[float] = None   # None = never used

    def is_available(self, now: float) -> bool:
        """Usable from the instant ``last_used + cooldown_ms`` onwards."""
        if self.last_used is None:
            return True
        return now - self.last_used >= self.cooldown_ms

    def ready_at(self) -> float:
        return 0.0 if self.last_used is None else self.last_used + self.cooldown_ms

    def damping_factor(self) -> float:
        return 1.0 - self.effectiveness * STRATEGY_DAMPING

    def to_dict(self) -> dict:
        return {
            "name":          self.name,
            "effectiveness": self.effectiveness,
            "cooldown_ms":   self.cooldown_ms,
            "description":   self.description,
            "last_used":     self.last_used,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "RegulationStrategy":
        return cls(**{k: d[k] for k in
                      ("name", "effectiveness", "cooldown_ms", "description", "last_used")
                      if k in d})


def default_strategies() -> Dict[str, RegulationStrategy]:
    return {s.name: s for s in (
        RegulationStrategy("cognitive_reappraisal", 0.7,  5_000,
                           "Reframe the situation"),
        RegulationStrategy("emotional_suppression", 0.4,  2_000,
                           "Push the feeling down"),
        RegulationStrategy("distraction",           0.5,  3_000,
                           "Redirect attention elsewhere"),
        RegulationStrategy("acceptance",            0.8, 10_000,
                           "Let the feeling be present"),
        RegulationStrategy("mindfulness",           0.6,  8_000,
                           "Observe without judgment"),
    )}


# ── Triggers ─────────────────────────────────────────────────────────────────

@dataclass
class Trigger:
    name:      str
    emotions:  Tuple[str, ...]
    threshold: float
    description: str = ""
    activation_count: int = 0
    last_activated:   Optional[float] = None

    def fires(self, input_intensity: float) -> bool:
        return input_intensity > self.threshold

    def record(self, now: float) -> None:
        self.activation_count += 1
        self.last_activated = now

    def to_dict(self) -> dict:
        return {
            "name":      self.name,
            "emotions":  list(self.emotions),
            "threshold": self.threshold,
            "description": self.description,
            "activation_count": self.activation_count,
            "last_activated":   self.last_activated,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Trigger":
        return cls(
            name=d["name"],
            emotions=tuple(d.get("emotions", ())),
            threshold=d.get("threshold", 0.5),
            description=d.get("description", ""),
            activation_count=d.get("activation_count", 0),
            last_activated=d.get("last_activated"),
        )


def default_triggers() -> Dict[str, Trigger]:
    return {t.name: t for t in (
        Trigger("memory_recall",       ("grief", "sadness", "love"), 0.3,
                "A memory of the loss resurfaces"),
        Trigger("social_isolation",    ("loneliness", "sadness"),    0.4,
                "Being alone for too long"),
        Trigger("unexpected_reminder", ("grief", "shock", "sadness"), 0.2,
                "Something small brings it all back"),
    )}


# ── Suppression ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SuppressionMechanism:
    name:            str
    target_emotions: Tuple[str, ...]
    strength:        float
    energy_cost:     float
    description:     str = ""


SUPPRESSION_MECHANISMS: Dict[str, SuppressionMechanism] = {m.name: m for m in (
    SuppressionMechanism("avoidance",       ("grief", "guilt", "anger"),        0.6, 0.3,
                         "Avoid anything that brings the feeling up"),
    SuppressionMechanism("rationalization", ("grief", "sadness"),               0.4, 0.2,
                         "Explain the feeling away"),
    SuppressionMechanism("denial",          ("grief", "reality_acceptance"),    0.8, 0.4,
                         "Refuse to accept what happened"),
)}


# ── Timed regulation ─────────────────────────────────────────────────────────

class SideEffect(Enum):
    REBOUND_RISK        = "rebound_risk"
    EMOTIONAL_NUMBING   = "emotional_numbing"
    COGNITIVE_LOAD      = "cognitive_load"
    AVOIDANCE_PATTERN   = "avoidance_pattern"
    SOCIAL_CONSEQUENCES = "social_consequences"


REGULATION_DURATIONS: Dict[str, float] = {
    "suppression":  5_000,
    "reappraisal": 10_000,
    "distraction":  3_000,
    "acceptance":  15_000,
    "expression":   2_000,
    "breathing":    8_000,
    "mindfulness": 12_000,
}

# strategy → emotion → effectiveness; anything missing is 0.5.
EFFECTIVENESS_MATRIX: Dict[str, Dict[str, float]] = {
    "suppression": {"anger": 0.6, "fear": 0.4, "sadness": 0.3, "grief": 0.2},
    "reappraisal": {"anger": 0.8, "fear": 0.7, "sadness": 0.6, "grief": 0.5},
    "distraction": {"anger": 0.5, "fear": 0.6, "sadness": 0.4, "grief": 0.3},
    "acceptance":  {"anger": 0.4, "fear": 0.5, "sadness": 0.7, "grief": 0.8},
}
DEFAULT_EFFECTIVENESS = 0.5

REDUCTION_FACTORS: Dict[str, float] = {
    "suppression": 0.7,
    "reappraisal": 0.5,
    "distraction": 0.4,
    "acceptance":  0.3,
}
DEFAULT_REDUCTION = 0.4

SIDE_EFFECTS: Dict[str, Tuple[SideEffect, ...]] = {
    "suppression": (SideEffect.REBOUND_RISK, SideEffect.EMOTIONAL_NUMBING),
    "reappraisal": (SideEffect.COGNITIVE_LOAD,),
    "distraction": (SideEffect.AVOIDANCE_PATTERN,),
    "expression":  (SideEffect.SOCIAL_CONSEQUENCES,),
}


def effectiveness_of(strategy: str, emotion: str) -> float:
    return EFFECTIVENESS_MATRIX.get(strategy, {}).get(emotion, DEFAULT_EFFECTIVENESS)


@dataclass
class RegulationRecord:
    id:             str
    strategy:       str
    target_emotion: str
    intensity:      float
    started_at:     float
    duration_ms:    float
    effectiveness:  float
    target_reduction: float
    side_effects: List[SideEffect] = field(default_factory=list)
    progress:     float = 0.0
    completed:    bool  = False
    completed_at: Optional[float] = None

    @classmethod
    def start(cls, record_id: str, strategy: str, emotion: str,
              intensity: float, now: float,
              duration_ms: Optional[float] = None) -> "RegulationRecord":
        return cls(
            id=record_id,
            strategy=strategy,
            target_emotion=emotion,
            intensity=intensity,
            started_at=now,
            duration_ms=duration_ms or REGULATION_DURATIONS.get(strategy, 5_000),
            effectiveness=effectiveness_of(strategy, emotion),
            target_reduction=REDUCTION_FACTORS.get(strategy, DEFAULT_REDUCTION) * intensity,
            side_effects=list(SIDE_EFFECTS.get(strategy, ())),
        )

    @property
    def active(self) -> bool:
        return not self.completed

    def step(self, now: float) -> float:
        """Update progress; return this tick's reduction of the target emotion."""
        self.progress = min(1.0, (now - self.started_at) / self.duration_ms)
        return self.target_reduction * self.effectiveness * self.progress * RAMP_WEIGHT

    def final_reduction(self) -> float:
        return self.target_reduction * self.effectiveness * RAMP_WEIGHT

    def expired(self, now: float) -> bool:
        return self.completed and now - self.started_at > RECORD_RETENTION_MS

    def to_dict(self) -> dict:
        return {
            "id":             self.id,
            "strategy":       self.strategy,
            "target_emotion": self.target_emotion,
            "intensity":      self.intensity,
            "started_at":     self.started_at,
            "duration_ms":    self.duration_ms,
            "effectiveness":  self.effectiveness,
            "target_reduction": self.target_reduction,
            "side_effects": [s.value for s in self.side_effects],
            "progress":     self.progress,
            "completed":    self.completed,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "RegulationRecord":
        return cls(
            id=d["id"],
            strategy=d["strategy"],
            target_emotion=d["target_emotion"],
            intensity=d["intensity"],
            started_at=d["started_at"],
            duration_ms=d["duration_ms"],
            effectiveness=d["effectiveness"],
            target_reduction=d["target_reduction"],
            side_effects=[SideEffect(s) for s in d.get("side_effects", [])],
            progress=d.get("progress", 0.0),
            completed=d.get("completed", False),
            completed_at=d.get("completed_at"),
        )
