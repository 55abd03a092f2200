"""
tests/test_emotion.py — psyche.emotion unit tests
=================================================

Test categories
---------------
Unit  — EmotionalStateVector  (clamping, dominant, decay)
Unit  — EmotionalThread       (spawn, progress, stages, vulnerabilities, crash)
Unit  — RegulationStrategy    (cooldown boundary)
Unit  — score_solution        (70 % acceptance boundary, hints)
Unit  — EmotionalEngine       (inputs, threads, regulation, interventions,
                               suppression, actions, tick events, capture)

Run
---
    pytest tests/test_emotion.py -v
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from psyche.clock import SimClock
from psyche.config import EmotionalConfig
from psyche.emotion import (
    CATALOGUE,
    EmotionalEngine,
    EmotionalStateVector,
    EmotionalThread,
    ThreadStage,
    VulnerabilityKind,
    score_solution,
)
from psyche.emotion.interventions import REQUIREMENTS
from psyche.emotion.regulation import RegulationStrategy, default_strategies
from psyche.emotion.state import NEUTRAL
from psyche.emotion.threads import RULES, UNIVERSAL, ThreadIssue, vulnerabilities_for
from psyche.errors import NotInitializedError, UnknownSubsystemActionError
from psyche.syslog import RingSystemLog


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def make_engine(base_state=None, initialize=True):
    clock = SimClock()
    engine = EmotionalEngine(
        clock,
        EmotionalConfig(base_state=base_state),
        system_log=RingSystemLog(),
        narrative=MagicMock(),
    )
    if initialize:
        engine.initialize()
    return engine


def step(engine, ms=100):
    engine.clock.advance(ms)
    return engine.tick(ms)


def make_thread(emotion="grief", intensity=0.7, **kw):
    thread = EmotionalThread.spawn("t1", emotion, intensity, now=0.0)
    for key, value in kw.items():
        setattr(thread, key, value)
    return thread


# ══════════════════════════════════════════════════════════════════════════════
# EmotionalStateVector
# ══════════════════════════════════════════════════════════════════════════════

class TestEmotionalStateVector:
    def test_default_base_is_grief_dominant(self):
        vec = EmotionalStateVector.from_base()
        assert vec.dominant == "grief"

    def test_dominant_first_max_wins(self):
        vec = EmotionalStateVector(primary={"anger": 0.5, "fear": 0.5})
        assert vec.recompute_dominant() == "anger"

    def test_dominant_all_zero_is_neutral(self):
        vec = EmotionalStateVector(primary={"anger": 0.0, "fear": 0.0})
        assert vec.recompute_dominant() == NEUTRAL

    def test_dominant_idempotent(self):
        vec = EmotionalStateVector.from_base()
        first = vec.recompute_dominant()
        assert vec.recompute_dominant() == first

    def test_merged_clamps_overrides(self):
        vec = EmotionalStateVector.from_base().merged(
            {"primary": {"grief": 1.7, "hope": -0.4}, "coherence": 3.0})
        assert vec.primary["grief"] == 1.0
        assert vec.primary["hope"] == 0.0
        assert vec.coherence == 1.0

    def test_merged_keeps_unlisted_keys(self):
        vec = EmotionalStateVector.from_base().merged({"primary": {"anger": 0.9}})
        assert vec.primary["sadness"] == pytest.approx(0.7)
        assert vec.dominant == "anger"

    def test_shift_clamps(self):
        vec = EmotionalStateVector(primary={"fear": 0.95})
        vec.shift("fear", 0.5)
        assert vec.primary["fear"] == 1.0
        vec.shift("fear", -3.0)
        assert vec.primary["fear"] == 0.0

    def test_shift_unknown_emotion(self):
        vec = EmotionalStateVector(primary={"fear": 0.5})
        assert not vec.shift("joy", 0.1)

    def test_decay_secondary_half_rate(self):
        vec = EmotionalStateVector.from_base()
        vec.decay(0.02)
        assert vec.primary["grief"] == pytest.approx(0.8 * 0.98)
        assert vec.secondary["guilt"] == pytest.approx(0.6 * 0.99)

    def test_mean_primary_empty(self):
        assert EmotionalStateVector().mean_primary() == 0.0


# ══════════════════════════════════════════════════════════════════════════════
# EmotionalThread
# ══════════════════════════════════════════════════════════════════════════════

class TestEmotionalThread:
    def test_spawn_resource_usage(self):
        thread = EmotionalThread.spawn("t", "grief", 0.95, now=0.0)
        assert thread.cpu_usage == pytest.approx(48.5)
        assert thread.memory_usage == pytest.approx(88.0)
        assert thread.stage is ThreadStage.RECOGNITION

    def test_progress_per_tick(self):
        thread = make_thread()
        thread.advance(100)
        assert thread.current_stage_progress == pytest.approx(0.08)

    def test_stage_advances_and_resets_progress(self):
        thread = make_thread(processing_efficiency=1.0, current_stage_progress=0.95)
        result = thread.advance(100)
        assert result.advanced_to is ThreadStage.APPRAISAL
        assert thread.stage is ThreadStage.APPRAISAL
        assert thread.current_stage_progress == 0.0
        assert thread.stage_started_at == 100

    def test_completion(self):
        thread = make_thread(stage=ThreadStage.INTEGRATION, current_stage_progress=0.99)
        result = thread.advance(100)
        assert result.completed
        assert thread.finished

    def test_impact_scaled_by_stability_and_issues(self):
        thread = make_thread(intensity=0.8, stability=0.5)
        result = thread.advance(100)
        assert result.state_change == pytest.approx(0.8 * 0.05 * 0.5)
        assert result.coherence_change == pytest.approx(0.0)
        assert result.regulation_change == pytest.approx(0.8 * 0.05)

    def test_rumination_detected_when_appraisal_stalls(self):
        thread = make_thread(stage=ThreadStage.APPRAISAL)
        result = thread.advance(15_001)
        assert VulnerabilityKind.RUMINATION_LOOP in result.new_issues
        assert thread.processing_efficiency == pytest.approx(0.4)

    def test_issue_detected_once(self):
        thread = make_thread(stage=ThreadStage.APPRAISAL)
        thread.advance(15_001)
        second = thread.advance(15_101)
        assert VulnerabilityKind.RUMINATION_LOOP not in second.new_issues
        assert thread.issue_kinds.count(VulnerabilityKind.RUMINATION_LOOP) == 1

    def test_collapse_crashes_thread(self):
        thread = make_thread(stability=0.05)
        result = thread.advance(100)
        assert result.crashed
        assert VulnerabilityKind.THREAD_CRASH in thread.issue_kinds
        assert result.state_change == 0.0

    def test_every_kind_has_a_rule(self):
        assert set(RULES) == set(VulnerabilityKind)

    def test_unknown_emotion_gets_generic_set(self):
        kinds = vulnerabilities_for("nostalgia")
        assert kinds == (VulnerabilityKind.GENERIC_INSTABILITY,) + UNIVERSAL

    def test_priority(self):
        assert make_thread("grief").priority == "critical"
        assert make_thread("nostalgia").priority == "normal"

    def test_intervention_points(self):
        assert "acceptance_therapy" in make_thread("grief").intervention_points()
        assert make_thread("nostalgia").intervention_points() == ["emotional_regulation"]


# ══════════════════════════════════════════════════════════════════════════════
# Regulation strategies
# ══════════════════════════════════════════════════════════════════════════════

class TestRegulationStrategy:
    def test_never_used_is_available(self):
        assert RegulationStrategy("x", 0.5, 1_000).is_available(0.0)

    def test_cooldown_boundary(self):
        s = RegulationStrategy("acceptance", 0.8, 10_000, last_used=1_000)
        assert not s.is_available(10_999)
        assert s.is_available(11_000)
        assert s.ready_at() == 11_000

    def test_default_set(self):
        names = set(default_strategies())
        assert names == {"cognitive_reappraisal", "emotional_suppression",
                         "distraction", "acceptance", "mindfulness"}


# ══════════════════════════════════════════════════════════════════════════════
# Intervention scoring
# ══════════════════════════════════════════════════════════════════════════════

class TestScoreSolution:
    def test_three_requirements_need_three(self):
        iv = CATALOGUE["acceptance_therapy"]
        assert iv.required_matches == 3
        two = score_solution(iv, "I acknowledge the loss and notice the feeling")
        assert not two.accepted
        assert len(two.met) == 2
        three = score_solution(iv, "Acknowledge the loss, notice the feeling, break the loop")
        assert three.accepted

    def test_four_requirements_need_three(self):
        iv = CATALOGUE["social_connection"]
        assert iv.required_matches == 3
        two = score_solution(iv, "talk to a friend and schedule a walk")
        assert not two.accepted
        three = score_solution(iv, "talk to a friend, share the load, schedule a walk")
        assert three.accepted

    def test_sharing_counts_as_resource_conflict(self):
        assert REQUIREMENTS["identify_resource_conflicts"].satisfied_by("share the load")
        iv = CATALOGUE["social_connection"]
        assert score_solution(iv, "talk to them and share").accepted

    def test_recursive_loop_breaking(self):
        iv = CATALOGUE["recursive_loop_breaking"]
        assert (iv.stability_bonus, iv.efficiency_bonus) == (0.4, 0.3)
        assert iv.resolves == frozenset({VulnerabilityKind.RUMINATION_LOOP})
        assert score_solution(iv, "trace the cycle and add an exit").accepted
        assert not score_solution(iv, "trace the cycle").accepted

    def test_debugging_modules_offered_per_emotion(self):
        assert "recursive_loop_breaking" in make_thread("grief").intervention_points()
        assert "resource_conflict_resolution" in make_thread("anger").intervention_points()
        assert "panic_prevention_system" in make_thread("fear").intervention_points()

    def test_case_insensitive(self):
        iv = CATALOGUE["grief_processing"]
        assert score_solution(iv, "DENIAL then a FLOW through each step").accepted

    def test_hints_for_unmet(self):
        iv = CATALOGUE["grief_processing"]
        result = score_solution(iv, "")
        assert result.total == 2
        assert len(result.hints()) == 2


# ══════════════════════════════════════════════════════════════════════════════
# EmotionalEngine
# ══════════════════════════════════════════════════════════════════════════════

class TestEngineInputs:
    def test_uninitialized_action_raises(self):
        engine = make_engine(initialize=False)
        with pytest.raises(NotInitializedError):
            engine.execute_action("balance", {})

    def test_strong_input_spawns_thread_and_updates_immediately(self):
        engine = make_engine()
        input_id = engine.process_emotional_input({"type": "grief", "intensity": 0.95})
        assert f"thread_{input_id}" in engine.threads
        assert engine.state.primary["grief"] == pytest.approx(0.8 + 0.095)

    def test_thread_progress_after_one_tick(self):
        engine = make_engine()
        input_id = engine.process_emotional_input({"type": "grief", "intensity": 0.95})
        step(engine, 100)
        thread = engine.threads[f"thread_{input_id}"]
        assert thread.current_stage_progress == pytest.approx(0.08)

    def test_moderate_input_is_only_queued(self):
        engine = make_engine()
        engine.process_emotional_input({"type": "anger", "intensity": 0.5})
        assert engine.threads == {}
        assert engine.state.primary["anger"] == pytest.approx(0.3)
        assert len(engine.queue) == 1

    def test_queue_applies_damped_update(self):
        engine = make_engine(base_state={"primary": {"grief": 0.5, "anger": 0.49}})
        engine.process_emotional_input({"type": "anger", "intensity": 0.5})
        events = step(engine)
        assert engine.state.dominant == "anger"
        assert any(e["type"] == "dominant_emotion_change" and e["from"] == "grief"
                   for e in events)

    def test_trigger_activation(self):
        engine = make_engine()
        engine.process_emotional_input({"type": "grief", "intensity": 0.5})
        step(engine)
        assert engine.triggers["memory_recall"].activation_count == 1
        assert engine.triggers["unexpected_reminder"].activation_count == 1
        assert engine.triggers["social_isolation"].activation_count == 0

    def test_queue_expires(self):
        engine = make_engine()
        engine.process_emotional_input({"type": "fear", "intensity": 0.4, "duration": 1_000})
        step(engine, 1_000)
        assert engine.queue == []


class TestEngineRegulation:
    def test_strategy_damps_target(self):
        engine = make_engine()
        result = engine.apply_regulation_strategy("cognitive_reappraisal", "grief")
        assert result["success"]
        assert engine.state.primary["grief"] == pytest.approx(0.8 * (1 - 0.7 * 0.3))
        assert engine.state.regulation == pytest.approx(0.2 + 0.07)

    def test_strategy_cooldown(self):
        engine = make_engine()
        engine.apply_regulation_strategy("distraction", "grief")
        again = engine.apply_regulation_strategy("distraction", "grief")
        assert again == {"success": False, "message": "Strategy not available"}
        engine.clock.advance(3_000)
        assert engine.apply_regulation_strategy("distraction", "grief")["success"]

    def test_unknown_strategy(self):
        engine = make_engine()
        assert not engine.apply_regulation_strategy("yelling", "grief")["success"]

    def test_timed_regulation_completes_with_side_effect(self):
        engine = make_engine()
        reg = engine.apply_emotional_regulation("reappraisal", "grief", intensity=0.5)
        assert reg["duration_ms"] == 10_000
        step(engine, 10_000)
        record = engine.regulations[reg["regulation_id"]]
        assert record.completed
        assert engine.state.cognitive["clarity"] == pytest.approx(0.1)
        step(engine, 10_000)
        assert engine.state.cognitive["clarity"] == pytest.approx(0.2)

    def test_completed_record_dropped_after_retention(self):
        engine = make_engine()
        reg = engine.apply_emotional_regulation("distraction", "fear")
        step(engine, 3_000)
        step(engine, 28_000)
        assert reg["regulation_id"] not in engine.regulations

    def test_suppression(self):
        engine = make_engine()
        result = engine.suppress_emotion("grief", "avoidance")
        assert result["success"]
        assert engine.state.primary["grief"] == pytest.approx(0.8 * 0.4)
        assert engine.state.regulation == 0.0

    def test_suppression_invalid_target(self):
        engine = make_engine()
        result = engine.suppress_emotion("hope", "denial")
        assert result == {"success": False, "message": "Invalid suppression mechanism"}


class TestEngineInterventions:
    def _engine_with_broken_thread(self):
        engine = make_engine()
        thread = make_thread("grief", stability=0.5)
        thread.issues.append(ThreadIssue(VulnerabilityKind.RUMINATION_LOOP, 0.0,
                                         ThreadStage.APPRAISAL))
        engine.threads[thread.id] = thread
        return engine, thread

    def test_missing_thread(self):
        engine = make_engine()
        result = engine.apply_emotional_intervention("nope", "grief_processing", "")
        assert result == {"success": False, "message": "Thread not found or not debuggable"}

    def test_unknown_intervention(self):
        engine, thread = self._engine_with_broken_thread()
        result = engine.apply_emotional_intervention(thread.id, "hypnosis", "")
        assert result["message"] == "Unknown intervention type: hypnosis"

    def test_rejected_solution_has_hints(self):
        engine, thread = self._engine_with_broken_thread()
        result = engine.apply_emotional_intervention(
            thread.id, "acceptance_therapy", "acknowledge the loss")
        assert not result["success"]
        assert result["message"] == "Invalid solution"
        assert result["requirements_met"] == 1
        assert result["requirements_total"] == 3
        assert len(result["hints"]) == 2
        assert thread.issues

    def test_accepted_solution_resolves_issue(self):
        engine, thread = self._engine_with_broken_thread()
        result = engine.apply_emotional_intervention(
            thread.id, "acceptance_therapy",
            "Acknowledge the loss, notice the feeling, break the loop")
        assert result["success"]
        assert result["resolved_issues"] == ["rumination_loop"]
        assert thread.stability == pytest.approx(0.9)
        assert thread.processing_efficiency == pytest.approx(0.9)
        assert result["thread_health"]["remaining_issues"] == 0
        engine.narrative.check_triggers.assert_called_with(
            "emotional_intervention",
            {"thread_id": thread.id, "intervention": "acceptance_therapy"})

    def test_debuggable_issues_lists_broken_threads(self):
        engine, thread = self._engine_with_broken_thread()
        issues = engine.get_debuggable_issues()
        thread_issues = [i for i in issues if i["type"] == "emotional_thread_issue"]
        assert thread_issues[0]["thread_id"] == thread.id


class TestEngineActions:
    def test_unknown_action(self):
        engine = make_engine()
        with pytest.raises(UnknownSubsystemActionError):
            engine.execute_action("scream", {})

    def test_calm_defaults_to_dominant(self):
        engine = make_engine()
        result = engine.execute_action("calm", {})
        assert result["success"]
        assert engine.state.primary["grief"] < 0.8

    def test_balance_pulls_toward_mean(self):
        engine = make_engine(base_state={"primary": {"grief": 1.0, "hope": 0.0}})
        engine.execute_action("balance", {})
        assert engine.state.primary["grief"] == pytest.approx(0.75)
        assert engine.state.primary["hope"] == pytest.approx(0.25)

    def test_intensify_queues_input(self):
        engine = make_engine()
        result = engine.execute_action("intensify", {"emotion": "fear", "intensity": 0.7})
        assert result["input_id"] in {i.id for i in engine.queue}
        assert f"thread_{result['input_id']}" in engine.threads

    def test_dominant_change_reaches_narrative(self):
        engine = make_engine()
        engine.modify_emotion("anger", 0.6)
        assert engine.state.dominant == "anger"
        engine.narrative.check_triggers.assert_any_call(
            "dominant_emotion_change",
            {"previous": "grief", "current": "anger", "intensity": pytest.approx(0.9)})

    def test_catharsis(self):
        engine = make_engine()
        engine.execute_action("emotional_catharsis", {"target_emotions": ["grief"]})
        assert engine.state.primary["grief"] == pytest.approx(0.24)
        assert engine.state.dominant == "sadness"

    def test_reset(self):
        engine = make_engine()
        engine.trigger_emotion("fear", 0.9)
        engine.execute_action("reset_emotional_state", {})
        assert engine.threads == {}
        assert engine.state.primary["fear"] == pytest.approx(0.4)


class TestEngineQueries:
    def test_total_intensity_is_mean_primary(self):
        engine = make_engine(base_state={"primary": {"grief": 0.6, "hope": 0.2}})
        assert engine.get_total_intensity() == pytest.approx(0.4)

    def test_resource_usage_counts_threads(self):
        engine = make_engine()
        engine.process_emotional_input({"type": "grief", "intensity": 0.7})
        usage = engine.get_resource_usage()
        assert usage["threads"] == 1
        assert usage["cpu"] == pytest.approx(41.0)
        assert usage["memory"] == pytest.approx(78.0)

    def test_intensities_stay_in_range_under_pressure(self):
        engine = make_engine()
        for _ in range(20):
            engine.intensify_all(0.3)
            engine.trigger_emotion("grief", 1.0)
            step(engine)
        assert all(0.0 <= v <= 1.0 for v in engine.state.intensities())
        assert 0.0 <= engine.state.coherence <= 1.0
        assert 0.0 <= engine.state.regulation <= 1.0

    def test_capture_restore(self):
        engine = make_engine()
        engine.trigger_emotion("fear", 0.9)
        snap = engine.capture_state()
        engine.reset_emotional_state()
        assert engine.restore_state(snap)
        assert engine.state.primary == snap["current_state"]["primary"]
        assert set(engine.threads) == {t["id"] for t in snap["threads"]}

    def test_system_log_records_thread_creation(self):
        engine = make_engine()
        engine.trigger_emotion("fear", 0.9)
        records = engine.system_log.records(category="emotional_processing")
        assert len(records) == 1
