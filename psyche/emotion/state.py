"""
psyche/emotion/state.py — Emotional state vector
=================================================

The vector the whole emotional engine mutates:

    primary / secondary   — emotion name → intensity in [0, 1]
    physiological /
    cognitive / behavioral — auxiliary axes (valence may be negative)
    dominant              — primary emotion with the highest intensity
    coherence, regulation — derived scalars in [0, 1]

``recompute_dominant()`` is a pure function of ``primary``: the first
maximum in iteration order wins, and an all-zero vector is ``neutral``.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional


NEUTRAL = "neutral"

AXES = ("physiological", "cognitive", "behavioral")

# Baseline for a freshly loaded character: grief-dominant, poorly regulated.
DEFAULT_BASE_STATE: Dict[str, Any] = {
    "primary": {
        "grief":      0.8,
        "anger":      0.3,
        "sadness":    0.7,
        "fear":       0.4,
        "love":       0.2,
        "hope":       0.1,
        "acceptance": 0.1,
    },
    "secondary": {
        "guilt":      0.6,
        "regret":     0.9,
        "loneliness": 0.8,
        "confusion":  0.5,
        "numbness":   0.4,
    },
    "physiological": {"arousal": 0.4, "valence": -0.6, "intensity": 0.7, "stability": 0.3},
    "cognitive":     {"clarity": 0.2, "focus": 0.3, "rumination": 0.9, "intrusion": 0.7},
    "behavioral":    {"withdrawal": 0.8, "avoidance": 0.7, "irritability": 0.5, "apathy": 0.6},
    "coherence":  0.3,
    "regulation": 0.2,
}


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


@dataclass
class EmotionalStateVector:
    primary:       Dict[str, float] = field(default_factory=dict)
    secondary:     Dict[str, float] = field(default_factory=dict)
    physiological: Dict[str, float] = field(default_factory=dict)
    cognitive:     Dict[str, float] = field(default_factory=dict)
    behavioral:    Dict[str, float] = field(default_factory=dict)
    dominant:   str   = NEUTRAL
    coherence:  float = 1.0
    regulation: float = 0.5
    timestamp:  float = 0.0

    # ── construction ─────────────────────────────────────────────────────────

    @classmethod
    def from_base(cls, base: Optional[Dict[str, Any]] = None,
                  timestamp: float = 0.0) -> "EmotionalStateVector":
        """Build from ``base`` (default: ``DEFAULT_BASE_STATE``)."""
        src = copy.deepcopy(base if base is not None else DEFAULT_BASE_STATE)
        vec = cls(
            primary=dict(src.get("primary", {})),
            secondary=dict(src.get("secondary", {})),
            physiological=dict(src.get("physiological", {})),
            cognitive=dict(src.get("cognitive", {})),
            behavioral=dict(src.get("behavioral", {})),
            coherence=src.get("coherence", 1.0),
            regulation=src.get("regulation", 0.5),
            timestamp=timestamp,
        )
        vec.recompute_dominant()
        return vec

    def merged(self, overrides: Optional[Dict[str, Any]],
               timestamp: Optional[float] = None) -> "EmotionalStateVector":
        """
        Return a copy with ``overrides`` applied group by group.

        Emotion groups are updated key-wise (existing keys keep their value
        unless overridden); scalar ``coherence`` / ``regulation`` replace.
        """
        out = self.copy()
        if not overrides:
            return out
        for group in ("primary", "secondary") + AXES:
            if overrides.get(group):
                getattr(out, group).update(overrides[group])
        for scalar in ("coherence", "regulation"):
            if scalar in overrides:
                setattr(out, scalar, clamp01(overrides[scalar]))
        for group in ("primary", "secondary"):
            target = getattr(out, group)
            for k in target:
                target[k] = clamp01(target[k])
        if timestamp is not None:
            out.timestamp = timestamp
        out.recompute_dominant()
        return out

    def copy(self) -> "EmotionalStateVector":
        return copy.deepcopy(self)

    # ── derived values ───────────────────────────────────────────────────────

    def recompute_dominant(self) -> str:
        best_name, best = NEUTRAL, 0.0
        for name, intensity in self.primary.items():
            if intensity > best:
                best_name, best = name, intensity
        self.dominant = best_name
        return best_name

    def mean_primary(self) -> float:
        if not self.primary:
            return 0.0
        return sum(self.primary.values()) / len(self.primary)

    def get(self, emotion: str) -> Optional[float]:
        if emotion in self.primary:
            return self.primary[emotion]
        return self.secondary.get(emotion)

    # ── mutation (always clamped) ────────────────────────────────────────────

    def shift(self, emotion: str, primary_delta: float,
              secondary_delta: Optional[float] = None) -> bool:
        """
        Add ``primary_delta`` to a primary emotion and ``secondary_delta``
        (default: same) to a secondary emotion of the same name.
        Returns True if the emotion exists in either group.
        """
        if secondary_delta is None:
            secondary_delta = primary_delta
        found = False
        if emotion in self.primary:
            self.primary[emotion] = clamp01(self.primary[emotion] + primary_delta)
            found = True
        if emotion in self.secondary:
            self.secondary[emotion] = clamp01(self.secondary[emotion] + secondary_delta)
            found = True
        return found

    def scale_primary(self, emotion: str, factor: float) -> bool:
        if emotion not in self.primary:
            return False
        self.primary[emotion] = clamp01(self.primary[emotion] * factor)
        return True

    def scale_all_primary(self, factor: float) -> None:
        for name in self.primary:
            self.primary[name] = clamp01(self.primary[name] * factor)

    def decay(self, rate: float) -> None:
        """Primary emotions lose ``rate``, secondary ones half of it."""
        for name in self.primary:
            self.primary[name] = clamp01(self.primary[name] * (1.0 - rate))
        for name in self.secondary:
            self.secondary[name] = clamp01(self.secondary[name] * (1.0 - rate * 0.5))

    def adjust_scalar(self, name: str, delta: float) -> float:
        value = clamp01(getattr(self, name) + delta)
        setattr(self, name, value)
        return value

    def adjust_axis(self, axis: str, key: str, delta: float) -> None:
        group = getattr(self, axis)
        if key in group:
            group[key] = clamp01(group[key] + delta)

    def intensities(self) -> Iterable[float]:
        yield from self.primary.values()
        yield from self.secondary.values()

    # ── serialisation ────────────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "primary":       dict(self.primary),
            "secondary":     dict(self.secondary),
            "physiological": dict(self.physiological),
            "cognitive":     dict(self.cognitive),
            "behavioral":    dict(self.behavioral),
            "dominant":      self.dominant,
            "coherence":     self.coherence,
            "regulation":    self.regulation,
            "timestamp":     self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "EmotionalStateVector":
        return cls(
            primary=dict(d.get("primary", {})),
            secondary=dict(d.get("secondary", {})),
            physiological=dict(d.get("physiological", {})),
            cognitive=dict(d.get("cognitive", {})),
            behavioral=dict(d.get("behavioral", {})),
            dominant=d.get("dominant", NEUTRAL),
            coherence=d.get("coherence", 1.0),
            regulation=d.get("regulation", 0.5),
            timestamp=d.get("timestamp", 0.0),
        )
