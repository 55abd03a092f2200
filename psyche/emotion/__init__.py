"""
psyche.emotion
==============
Emotional engine: state vector, processing threads, regulation and
intervention puzzles.

Exports:
    EmotionalEngine       — per-instance emotional subsystem (tick, inputs, actions)
    EmotionalStateVector  — primary / secondary intensities + derived scalars
    EmotionalThread       — one in-progress processing task
    ThreadStage           — recognition .. completed
    VulnerabilityKind     — closed set of thread issues
    RegulationStrategy    — instant coping move with a cooldown
    RegulationRecord      — timed regulation with side effects
    Trigger               — emotion set + activation threshold
    SuppressionMechanism  — avoidance / rationalization / denial
    score_solution        — keyword scoring for intervention answers
"""

from .engine        import EmotionalEngine, EmotionalInput
from .state         import EmotionalStateVector, DEFAULT_BASE_STATE
from .threads       import EmotionalThread, ThreadStage, VulnerabilityKind
from .regulation    import (RegulationStrategy, RegulationRecord, Trigger,
                            SuppressionMechanism, SideEffect)
from .interventions import CATALOGUE, Intervention, score_solution

__all__ = [
    "EmotionalEngine",
    "EmotionalInput",
    "EmotionalStateVector",
    "DEFAULT_BASE_STATE",
    "EmotionalThread",
    "ThreadStage",
    "VulnerabilityKind",
    "RegulationStrategy",
    "RegulationRecord",
    "Trigger",
    "SuppressionMechanism",
    "SideEffect",
    "CATALOGUE",
    "Intervention",
    "score_solution",
]
