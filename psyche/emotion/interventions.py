"""
psyche/emotion/interventions.py — Intervention puzzles
=======================================================

The player fixes a broken emotional thread by describing, in free text,
what should be done.  Scoring is deliberately mechanical:

  1. the intervention names a list of requirements;
  2. each requirement has a keyword set;
  3. a requirement is met if *any* of its keywords is a case-insensitive
     substring of the solution;
  4. the solution is accepted iff at least 70% of requirements are met
     (``met * 10 >= total * 7``, i.e. met ≥ ⌈0.7 × total⌉).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Tuple

from psyche.emotion.threads import VulnerabilityKind as V


ACCEPT_NUMERATOR   = 7
ACCEPT_DENOMINATOR = 10


@dataclass(frozen=True)
class Requirement:
    key:      str
    keywords: Tuple[str, ...]
    hint:     str

    def satisfied_by(self, solution: str) -> bool:
        text = solution.lower()
        return any(k in text for k in self.keywords)


REQUIREMENTS: Dict[str, Requirement] = {r.key: r for r in (
    Requirement("identify_grief_stage",
                ("denial", "anger", "bargaining", "depression", "acceptance"),
                "Consider the stages of grief processing"),
    Requirement("implement_processing_flow",
                ("process", "flow", "stage", "transition"),
                "Think about how emotions move through different processing stages"),
    Requirement("trace_recursion_path",
                ("loop", "recursive", "repeat", "cycle"),
                "Look for patterns that repeat themselves without resolution"),
    Requirement("implement_exit_condition",
                ("exit", "break", "condition", "stop"),
                "Every loop needs a condition that ends it"),
    Requirement("analyze_anger_triggers",
                ("trigger", "cause", "source", "provoke"),
                "Find what set the anger off in the first place"),
    Requirement("implement_regulation_circuit",
                ("regulate", "control", "manage", "circuit"),
                "Anger needs a control path, not just an outlet"),
    Requirement("identify_resource_conflicts",
                ("conflict", "resource", "compete", "share"),
                "Look for needs that compete for the same resources"),
    Requirement("implement_sharing_protocol",
                ("share", "allocate", "distribute", "protocol"),
                "Decide how limited resources get shared"),
    Requirement("analyze_false_positives",
                ("false", "positive", "incorrect", "wrong"),
                "Some alarms fire when there is no real danger"),
    Requirement("adjust_sensitivity_threshold",
                ("threshold", "sensitivity", "adjust", "calibrate"),
                "The detector may be set too sensitive"),
    Requirement("identify_panic_triggers",
                ("panic", "trigger", "cause", "fear"),
                "Identify what sets off the panic response"),
    Requirement("implement_prevention_protocol",
                ("prevent", "protocol", "stop", "avoid"),
                "Put something in place before the spiral starts"),
    Requirement("index_associated_memories",
                ("memory", "memories", "index", "associate", "recall"),
                "The feeling is tied to specific memories"),
    Requirement("consolidate_memory",
                ("consolidate", "integrate", "store", "merge"),
                "Memories need to be integrated, not replayed"),
    Requirement("acknowledge_loss",
                ("accept", "acknowledge", "loss", "gone"),
                "The loss has to be acknowledged before it can be carried"),
    Requirement("schedule_activity",
                ("activity", "schedule", "task", "routine", "plan"),
                "Small planned activities rebuild momentum"),
    Requirement("restore_connection",
                ("connect", "friend", "reach", "talk", "social"),
                "Isolation feeds the loop; reach out to someone"),
    Requirement("reframe_self_judgment",
                ("forgive", "compassion", "mistake", "reframe"),
                "Treat the mistake the way you would treat a friend's"),
    Requirement("verify_evidence",
                ("evidence", "fact", "verify", "test", "reality"),
                "Check the belief against what actually happened"),
    Requirement("name_core_values",
                ("value", "matter", "care", "principle"),
                "What does this feeling say about what matters to you?"),
    Requirement("gradual_exposure",
                ("gradual", "exposure", "approach", "step", "face"),
                "Approach the feared thing in small steps"),
    Requirement("slow_physiology",
                ("breath", "breathing", "relax", "slow", "calm"),
                "Calm the body first"),
    Requirement("observe_emotion",
                ("observe", "notice", "label", "name", "aware"),
                "Name the feeling before trying to change it"),
)}


@dataclass(frozen=True)
class Intervention:
    name:             str
    requirements:     Tuple[str, ...]
    stability_bonus:  float
    efficiency_bonus: float
    resolves:         FrozenSet[V]
    description:      str = ""

    @property
    def required_matches(self) -> int:
        n = len(self.requirements)
        return -(-n * ACCEPT_NUMERATOR // ACCEPT_DENOMINATOR)


def _iv(name, reqs, stab, eff, resolves, description):
    return Intervention(name, tuple(reqs), stab, eff, frozenset(resolves), description)


CATALOGUE: Dict[str, Intervention] = {i.name: i for i in (
    # grief
    _iv("grief_processing", ("identify_grief_stage", "implement_processing_flow"),
        0.3, 0.2, (V.RUMINATION_LOOP, V.MEMORY_FLOODING, V.PROCESSING_STAGNATION),
        "Walk the loss through the grief stages"),
    _iv("memory_integration", ("index_associated_memories", "consolidate_memory"),
        0.2, 0.3, (V.MEMORY_FLOODING, V.EMOTIONAL_NUMBNESS),
        "Integrate the memories feeding the thread"),
    _iv("acceptance_therapy", ("acknowledge_loss", "observe_emotion", "trace_recursion_path"),
        0.4, 0.1, (V.RUMINATION_LOOP, V.EMOTIONAL_NUMBNESS),
        "Accept the loss instead of re-litigating it"),
    # anger
    _iv("anger_redirection", ("analyze_anger_triggers", "implement_regulation_circuit"),
        0.2, 0.4, (V.EXPLOSIVE_DISCHARGE, V.IMPULSE_OVERRIDE),
        "Route the anger somewhere safe"),
    _iv("cognitive_reframing", ("analyze_anger_triggers", "verify_evidence"),
        0.3, 0.2, (V.COGNITIVE_NARROWING,),
        "Widen the appraisal"),
    _iv("impulse_control", ("implement_regulation_circuit", "implement_exit_condition",
                            "slow_physiology"),
        0.3, 0.3, (V.IMPULSE_OVERRIDE, V.EXPLOSIVE_DISCHARGE),
        "Put a gate between impulse and action"),
    # fear
    _iv("exposure_therapy", ("identify_panic_triggers", "gradual_exposure"),
        0.2, 0.3, (V.AVOIDANCE_AMPLIFICATION, V.PARALYSIS_CASCADE),
        "Face the fear in steps"),
    _iv("relaxation_techniques", ("slow_physiology", "implement_prevention_protocol"),
        0.4, 0.1, (V.HYPERVIGILANCE, V.PARALYSIS_CASCADE),
        "Bring arousal down"),
    _iv("cognitive_restructuring", ("analyze_false_positives", "adjust_sensitivity_threshold"),
        0.2, 0.3, (V.HYPERVIGILANCE, V.AVOIDANCE_AMPLIFICATION),
        "Recalibrate the threat detector"),
    # sadness
    _iv("behavioral_activation", ("schedule_activity", "implement_processing_flow"),
        0.2, 0.4, (V.ENERGY_DEPLETION, V.HOPELESSNESS_SPIRAL),
        "Restart through small actions"),
    _iv("mood_lifting", ("verify_evidence", "schedule_activity"),
        0.3, 0.2, (V.HOPELESSNESS_SPIRAL,),
        "Challenge the hopeless forecast"),
    _iv("social_connection", ("restore_connection", "identify_resource_conflicts",
                              "implement_sharing_protocol", "schedule_activity"),
        0.3, 0.2, (V.ISOLATION_FEEDBACK,),
        "Reconnect with other people"),
    # guilt
    _iv("self_forgiveness", ("reframe_self_judgment", "name_core_values"),
        0.4, 0.2, (V.SELF_PUNISHMENT_LOOP, V.SHAME_CASCADE),
        "Stop the punishment loop"),
    _iv("reality_testing", ("verify_evidence", "analyze_false_positives"),
        0.2, 0.3, (V.SHAME_CASCADE, V.PERFECTIONISM_TRAP),
        "Check how much responsibility is real"),
    _iv("value_clarification", ("name_core_values", "adjust_sensitivity_threshold"),
        0.2, 0.3, (V.PERFECTIONISM_TRAP,),
        "Separate the value from the impossible standard"),
    # thread-debugging modules
    _iv("grief_processing_optimization",
        ("identify_grief_stage", "implement_processing_flow"),
        0.3, 0.2, (V.RUMINATION_LOOP, V.MEMORY_FLOODING, V.PROCESSING_STAGNATION),
        "Optimize grief processing pathways"),
    _iv("recursive_loop_breaking", ("trace_recursion_path", "implement_exit_condition"),
        0.4, 0.3, (V.RUMINATION_LOOP,),
        "Break recursive emotional loops"),
    _iv("anger_regulation_module", ("analyze_anger_triggers", "implement_regulation_circuit"),
        0.2, 0.4, (V.EXPLOSIVE_DISCHARGE, V.COGNITIVE_NARROWING),
        "Install anger regulation system"),
    _iv("resource_conflict_resolution",
        ("identify_resource_conflicts", "implement_sharing_protocol"),
        0.3, 0.2, (V.COGNITIVE_NARROWING, V.EMOTIONAL_OVERFLOW),
        "Resolve emotional resource conflicts"),
    _iv("threat_assessment_calibration",
        ("analyze_false_positives", "adjust_sensitivity_threshold"),
        0.2, 0.3, (V.AVOIDANCE_AMPLIFICATION, V.HYPERVIGILANCE),
        "Recalibrate threat detection systems"),
    _iv("panic_prevention_system", ("identify_panic_triggers", "implement_prevention_protocol"),
        0.4, 0.1, (V.PARALYSIS_CASCADE, V.HYPERVIGILANCE),
        "Install panic prevention mechanisms"),
    # fallback
    _iv("emotional_regulation", ("observe_emotion", "implement_regulation_circuit"),
        0.3, 0.2, (V.GENERIC_INSTABILITY, V.EMOTIONAL_OVERFLOW, V.PROCESSING_STAGNATION),
        "General-purpose regulation"),
)}

INTERVENTION_POINTS: Dict[str, Tuple[str, ...]] = {
    "grief":   ("grief_processing", "memory_integration", "acceptance_therapy",
                "grief_processing_optimization", "recursive_loop_breaking"),
    "anger":   ("anger_redirection", "cognitive_reframing", "impulse_control",
                "anger_regulation_module", "resource_conflict_resolution"),
    "fear":    ("exposure_therapy", "relaxation_techniques", "cognitive_restructuring",
                "threat_assessment_calibration", "panic_prevention_system"),
    "sadness": ("behavioral_activation", "mood_lifting", "social_connection"),
    "guilt":   ("self_forgiveness", "reality_testing", "value_clarification"),
}
DEFAULT_INTERVENTION_POINTS: Tuple[str, ...] = ("emotional_regulation",)


def intervention_points_for(emotion: str) -> List[str]:
    return list(INTERVENTION_POINTS.get(emotion, DEFAULT_INTERVENTION_POINTS))


@dataclass
class SolutionScore:
    met:      List[str]
    unmet:    List[str]
    accepted: bool

    @property
    def total(self) -> int:
        return len(self.met) + len(self.unmet)

    def hints(self) -> List[str]:
        return [REQUIREMENTS[k].hint for k in self.unmet]


def score_solution(intervention: Intervention, solution: str) -> SolutionScore:
    met: List[str] = []
    unmet: List[str] = []
    for key in intervention.requirements:
        (met if REQUIREMENTS[key].satisfied_by(solution or "") else unmet).append(key)
    n = len(intervention.requirements)
    accepted = len(met) * ACCEPT_DENOMINATOR >= n * ACCEPT_NUMERATOR
    return SolutionScore(met=met, unmet=unmet, accepted=accepted)
