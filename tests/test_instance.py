"""
tests/test_instance.py — InstanceController tests
=================================================

Test categories
---------------
Unit  — health            (stability delta, corruption spread, cascade rule, usage)
Unit  — lifecycle         (status derivation, error ageing)
Unit  — InstanceController
          initialize / tick / health transitions
          action validation order (whitelist → initialized → stability)
          error recording and cascade
          system actions (reboot, stabilize, defragment, analyze)
          snapshots, rollback, shutdown
Integration — subsystem failure inside tick, injected process manager

Run
---
    pytest tests/test_instance.py -v
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from psyche.clock import SimClock
from psyche.config import InstanceConfig, ResourceLimits
from psyche.errors import (
    InstanceTooUnstableError,
    InvalidActionError,
    MemoryBlockNotFoundError,
    NotInitializedError,
    PsycheError,
    StateRestoreError,
)
from psyche.instance import (
    HealthCondition,
    InstanceController,
    InstanceState,
    InstanceStatus,
    ResourceUsage,
)
from psyche.instance import health
from psyche.instance.lifecycle import ErrorRecord, PendingOperation
from psyche.instance.processes import ProcessManager
from psyche.syslog import RingSystemLog


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def make_instance(config=None, **kw):
    instance = InstanceController(config or InstanceConfig(id="kane", name="Alexander Kane"),
                                  system_log=RingSystemLog(), narrative=MagicMock(), **kw)
    instance.initialize()
    return instance


def make_process_manager():
    pm = MagicMock()
    pm.get_system_resource_usage.return_value = {
        "total_cpu_usage": 10.0, "total_memory_usage": 100.0, "total_threads": 1,
    }
    pm.capture_state.return_value = {"processes": []}
    pm.restore_state.return_value = True
    pm.get_related_processes.return_value = []
    return pm


class QuietProcesses(ProcessManager):
    """Implements only the abstract half of the contract."""

    def get_system_resource_usage(self):
        return {"total_cpu_usage": 5.0, "total_memory_usage": 50.0, "total_threads": 1}

    def tick(self, delta_ms):
        return []

    def capture_state(self):
        return {"processes": []}

    def restore_state(self, snapshot):
        return True


def event_types(report):
    return [e["type"] for e in report["events"]]


# ══════════════════════════════════════════════════════════════════════════════
# Health arithmetic
# ══════════════════════════════════════════════════════════════════════════════

class TestHealth:
    def test_corruption_spread_low_stability(self):
        assert health.corruption_spread(0.5, 0.2, 0) == pytest.approx(0.005)

    def test_corruption_spread_mid_stability(self):
        assert health.corruption_spread(0.5, 0.4, 0) == pytest.approx(0.0025)

    def test_corruption_spread_regions(self):
        assert health.corruption_spread(0.5, 0.9, 2) == pytest.approx(0.01)

    def test_no_spread_without_corruption(self):
        assert health.corruption_spread(0.0, 0.05, 5) == 0.0

    @pytest.mark.parametrize("cpu,errors,intensity,expected", [
        (30, 0, 0.2, 0.003),
        (60, 0, 0.2, 0.0),
        (85, 0, 0.2, -0.005),
        (95, 0, 0.2, -0.01),
        (30, 2, 0.2, -0.04),
        (95, 1, 0.9, -0.04),
    ])
    def test_stability_delta(self, cpu, errors, intensity, expected):
        assert health.stability_delta(cpu, errors, intensity) == pytest.approx(expected)

    def test_significance_threshold(self):
        assert not health.significant(0.001)
        assert health.significant(-0.0011)

    def test_should_cascade(self):
        error = ErrorRecord(timestamp=0, type="action_execution", message="x")
        assert not health.should_cascade(error, 0.5, 0.5)
        assert health.should_cascade(error, 0.29, 0.0)
        assert health.should_cascade(error, 1.0, 0.71)
        error.severity = "critical"
        assert health.should_cascade(error, 1.0, 0.0)

    def test_usage_clamped_to_limits(self):
        usage = health.aggregate_usage(
            {"total_cpu_usage": 90.0, "total_memory_usage": 500.0, "total_threads": 10},
            {"memory": 9_000, "threads": 0},
            {"cpu": 48.5, "memory": 88.0, "threads": 7},
            ResourceLimits(),
        )
        assert usage == ResourceUsage(cpu=100.0, memory=9_588.0, threads=16)


class TestInstanceState:
    def test_pending_overrides_conditions(self):
        state = InstanceState(status=InstanceStatus.RUNNING,
                              conditions={HealthCondition.CRITICAL})
        assert state.refresh_status() is InstanceStatus.CRITICAL
        state.pending = PendingOperation("reboot", 0, 1_000)
        assert state.refresh_status() is InstanceStatus.REBOOTING

    def test_last_condition_wins(self):
        state = InstanceState(status=InstanceStatus.RUNNING,
                              conditions={HealthCondition.MEMORY_EXHAUSTED,
                                          HealthCondition.CRITICAL})
        assert state.refresh_status() is InstanceStatus.MEMORY_EXHAUSTED

    def test_error_ageing(self):
        state = InstanceState()
        state.errors = [ErrorRecord(0, "tick_error", "a"), ErrorRecord(59_000, "tick_error", "b")]
        assert state.recent_errors(60_000) == 1
        assert state.recent_errors(64_000) == 0
        assert state.age_errors(60_000) == 1
        assert [e.message for e in state.errors] == ["b"]

    def test_apply_clamps(self):
        state = InstanceState()
        state.apply(stability_delta=0.5, corruption_delta=-0.5)
        assert (state.stability, state.corruption) == (1.0, 0.0)


# ══════════════════════════════════════════════════════════════════════════════
# Lifecycle & tick
# ══════════════════════════════════════════════════════════════════════════════

class TestLifecycle:
    def test_initialize(self):
        instance = make_instance()
        assert instance.state.status is InstanceStatus.RUNNING
        assert len(instance.processes) == 3
        assert instance.usage.cpu == pytest.approx(18.0)
        instance.narrative.check_triggers.assert_any_call(
            "initialized", {"id": "kane", "name": "Alexander Kane"})

    def test_empty_ring_log_is_shared_with_subsystems(self):
        ring = RingSystemLog()
        instance = InstanceController(system_log=ring)
        assert instance.system_log is ring
        assert instance.memory.system_log is ring
        assert instance.emotional.system_log is ring
        instance.initialize()
        instance.memory.allocate_memory({"description": "x"})
        assert ring.records(category="memory_management")

    def test_health_transition_reaches_injected_log(self):
        ring = RingSystemLog()
        instance = InstanceController(system_log=ring)
        instance.initialize()
        instance.state.stability = 0.05
        instance.tick()
        assert ring.records(category="system_health")[0]["condition"] == "critical"

    def test_tick_before_initialize_is_noop(self):
        instance = InstanceController()
        report = instance.tick()
        assert report["status"] == "uninitialized"
        assert instance.clock.now() == 0.0

    def test_tick_uses_tick_rate(self):
        instance = make_instance()
        instance.tick()
        instance.tick(250)
        assert instance.clock.now() == 350
        assert instance.state.uptime == 350

    def test_calm_tick_recovers_stability(self):
        instance = make_instance()
        instance.state.stability = 0.5
        report = instance.tick()
        assert report["stability"] == pytest.approx(0.503)

    def test_corruption_spreads_from_pre_tick_stability(self):
        instance = make_instance()
        instance.state.stability = 0.2
        instance.state.corruption = 0.5
        instance.tick()
        assert instance.state.corruption == pytest.approx(0.505)
        assert instance.state.stability == pytest.approx(0.203)

    def test_corrupted_regions_feed_spread(self):
        instance = make_instance()
        block_id = instance.memory.allocate_memory({"description": "x"}, "longTerm")
        instance.memory.corrupt_region(block_id, 0.6)
        instance.state.corruption = 0.1
        instance.tick()
        assert instance.state.corruption == pytest.approx(0.105)

    def test_emotional_threads_count_towards_cpu(self):
        instance = make_instance()
        instance.execute_action("intensify", {"emotion": "grief", "intensity": 0.95})
        assert instance.usage.cpu == pytest.approx(18.0 + 48.5)
        assert instance.usage.threads == 5

    def test_memory_ledger_balanced_across_ticks(self):
        instance = make_instance()
        for i in range(5):
            instance.memory.allocate_memory({"description": f"fragment {i}",
                                             "emotions": ["grief"]})
            instance.tick(1_000)
            cap = instance.memory.capacity
            assert cap.allocated + cap.available == cap.total

    def test_critical_state_latched_once(self):
        instance = make_instance()
        seen = []
        instance.on("critical_state", seen.append)
        instance.state.stability = 0.05
        first = instance.tick()
        second = instance.tick()
        assert "critical_state" in event_types(first)
        assert "critical_state" not in event_types(second)
        assert len(seen) == 1
        assert instance.state.status is InstanceStatus.CRITICAL

    def test_total_corruption(self):
        instance = make_instance()
        instance.state.corruption = 1.0
        report = instance.tick()
        assert "total_corruption" in event_types(report)
        assert instance.state.status is InstanceStatus.CORRUPTED

    def test_resource_exhaustion_on_initialize(self):
        instance = InstanceController(InstanceConfig(resources=ResourceLimits(memory_total=300)))
        seen = []
        instance.on("resource_exhaustion", seen.append)
        instance.initialize()
        assert instance.usage.memory == 300
        assert len(seen) == 1
        assert instance.state.status is InstanceStatus.MEMORY_EXHAUSTED

    def test_subsystem_failure_is_reported_not_raised(self):
        pm = make_process_manager()
        pm.tick.side_effect = RuntimeError("scheduler jammed")
        instance = make_instance(process_manager=pm)
        report = instance.tick()
        errors = [e for e in report["events"] if e["type"] == "tick_error"]
        assert errors[0]["subsystem"] == "process"
        assert instance.state.errors[0].type == "tick_error"
        assert report["stability"] == pytest.approx(0.98)

    def test_injected_manager_is_not_seeded(self):
        pm = make_process_manager()
        make_instance(process_manager=pm)
        pm.spawn_from_config.assert_not_called()


# ══════════════════════════════════════════════════════════════════════════════
# Actions
# ══════════════════════════════════════════════════════════════════════════════

class TestActionValidation:
    def test_invalid_action(self):
        instance = make_instance()
        with pytest.raises(InvalidActionError):
            instance.execute_action("sudo", {})

    def test_invalid_action_checked_before_initialized(self):
        with pytest.raises(InvalidActionError):
            InstanceController().execute_action("sudo", {})

    def test_not_initialized(self):
        with pytest.raises(NotInitializedError):
            InstanceController().execute_action("calm", {})

    def test_too_unstable_leaves_state_untouched(self):
        instance = make_instance()
        instance.state.stability = 0.05
        before = instance.capture_state()
        with pytest.raises(InstanceTooUnstableError,
                           match="System too unstable for action execution"):
            instance.execute_action("calm", {})
        assert instance.capture_state() == before
        assert len(instance.history) == 0

    def test_force_overrides_instability(self):
        instance = make_instance()
        instance.state.stability = 0.05
        result = instance.execute_action("calm", {"force": True})
        assert result["success"]
        assert len(instance.history) == 1

    def test_dispatch_to_each_category(self):
        instance = make_instance()
        assert len(instance.execute_action("ps")) == 3
        assert instance.execute_action("dump")["blocks"] == []
        assert instance.execute_action("balance")["success"]
        assert instance.execute_action("analyze")["depth"] == "standard"


class TestActionErrors:
    def test_failure_recorded_and_reraised(self):
        instance = make_instance()
        with pytest.raises(MemoryBlockNotFoundError):
            instance.execute_action("peek", {"memory_id": "mem_404"})
        record = instance.state.errors[-1]
        assert record.type == "action_execution"
        assert record.action == "peek"
        assert record.memory_address == "mem_404"
        assert instance.state.stability == 1.0

    def test_recent_error_costs_stability_next_tick(self):
        instance = make_instance()
        with pytest.raises(MemoryBlockNotFoundError):
            instance.execute_action("peek", {"memory_id": "mem_404"})
        assert instance.tick()["stability"] == pytest.approx(0.98)

    def test_critical_error_cascades(self):
        instance = make_instance()
        with pytest.raises(PsycheError):
            instance.execute_action("kill", {"pid": "consciousness_core"})
        assert instance.state.stability == pytest.approx(0.9)
        assert instance.processes.get("consciousness_core").stability == pytest.approx(0.8)
        assert instance.processes.get("memory_indexer").stability == 1.0
        assert instance.emotional.state.primary["grief"] == pytest.approx(0.9)
        assert instance.system_log.records(category="error_cascade")

    def test_low_stability_cascade_corrupts_addressed_block(self):
        instance = make_instance()
        block_id = instance.memory.allocate_memory({"description": "x"}, "traumatic")
        instance.state.stability = 0.25
        with pytest.raises(PsycheError):
            instance.execute_action("free", {"memory_id": block_id})
        assert instance.memory.get_block(block_id).integrity_score == pytest.approx(0.9)
        assert instance.state.stability == pytest.approx(0.15)

    def test_modify_emotional_state(self):
        instance = make_instance()
        assert instance.modify_emotional_state("grief", 0.2)
        assert instance.emotional.state.primary["grief"] == 1.0
        assert instance.state.stability == pytest.approx(0.98)


# ══════════════════════════════════════════════════════════════════════════════
# System actions
# ══════════════════════════════════════════════════════════════════════════════

class TestSystemActions:
    def test_quick_reboot(self):
        instance = make_instance()
        instance.memory.allocate_memory({"description": "volatile"})
        result = instance.execute_action("reboot", {"quick": True})
        assert result["completes_at"] == 1_000
        assert result["volatile_memories_cleared"] == 1
        assert instance.state.status is InstanceStatus.REBOOTING
        assert instance.processes.get_running_count() == 0

        assert "reboot_completed" not in event_types(instance.tick(500))
        report = instance.tick(500)
        assert "reboot_completed" in event_types(report)
        assert instance.state.status is InstanceStatus.RUNNING
        assert instance.state.stability == pytest.approx(0.803)
        assert instance.processes.get_running_count() == 3

    def test_second_operation_rejected_while_pending(self):
        instance = make_instance()
        instance.execute_action("reboot")
        with pytest.raises(PsycheError, match="already in progress"):
            instance.execute_action("stabilize")
        assert instance.state.pending.kind == "reboot"

    def test_stabilize(self):
        instance = make_instance()
        instance.state.stability = 0.5
        instance.execute_action("stabilize", {"intensity": 0.5})
        assert instance.state.status is InstanceStatus.STABILIZING
        assert instance.usage.cpu == pytest.approx(9.0)
        report = instance.tick(3_000)
        assert "stabilize_completed" in event_types(report)
        assert instance.state.stability == pytest.approx(0.653)
        assert instance.usage.cpu == pytest.approx(18.0)

    def test_stabilize_clears_critical(self):
        instance = make_instance()
        instance.state.stability = 0.05
        instance.tick()
        assert instance.state.status is InstanceStatus.CRITICAL
        instance.execute_action("stabilize", {"intensity": 1.0, "duration": 1_000, "force": True})
        instance.tick(1_000)
        assert instance.state.status is InstanceStatus.RUNNING
        assert not instance.state.conditions

    def test_defragment(self):
        instance = make_instance()
        block_id = instance.memory.allocate_memory({"description": "x"})
        instance.execute_action("poke", {"memory_id": block_id})
        instance.state.stability = 0.5
        result = instance.execute_action("defragment")
        assert result["defragmented_count"] == 1
        assert instance.memory.get_fragmentation() == 0.0
        assert instance.state.stability == pytest.approx(0.6)
        assert instance.state.status is InstanceStatus.RUNNING

    def test_analyze_findings(self):
        instance = make_instance()
        block_id = instance.memory.allocate_memory({"description": "x"})
        instance.execute_action("poke", {"memory_id": block_id})
        analysis = instance.execute_action("analyze")
        assert [f["type"] for f in analysis["findings"]] == ["memory_fragmentation"]
        assert analysis["findings"][0]["severity"] == "high"
        assert "memory_map" not in analysis

    def test_deep_analyze(self):
        instance = make_instance()
        analysis = instance.execute_action("analyze", {"depth": "deep"})
        assert set(analysis["process_tree"]) == {"core", "memory", "emotional"}
        assert analysis["emotional_profile"]["dominant"] == "grief"
        assert analysis["memory_map"] == []

    def test_analyze_with_minimal_process_manager(self):
        instance = make_instance(process_manager=QuietProcesses())
        analysis = instance.execute_action("analyze", {"depth": "deep"})
        assert "process_anomaly" not in [f["type"] for f in analysis["findings"]]
        assert analysis["process_tree"] == {}


# ══════════════════════════════════════════════════════════════════════════════
# Snapshots & shutdown
# ══════════════════════════════════════════════════════════════════════════════

class TestSnapshots:
    def test_rollback_undoes_last_action(self):
        instance = make_instance()
        instance.execute_action("calm", {"emotion": "grief"})
        assert instance.emotional.state.primary["grief"] == pytest.approx(0.632)
        assert instance.rollback()
        assert instance.emotional.state.primary["grief"] == pytest.approx(0.8)
        assert instance.emotional.strategies["cognitive_reappraisal"].last_used is None

    def test_rollback_empty(self):
        assert not make_instance().rollback()

    def test_history_is_bounded(self):
        instance = make_instance()
        for _ in range(12):
            instance.execute_action("ps")
        assert len(instance.history) == 10

    def test_restore_emits_event(self):
        instance = make_instance()
        seen = []
        instance.on("state_restored", seen.append)
        snap = instance.capture_state()
        instance.processes.spawn("intruder")
        instance.restore_state(snap)
        assert len(instance.processes) == 3
        assert seen == [{"timestamp": 0.0}]

    def test_restore_rejects_partial_snapshot(self):
        instance = make_instance()
        with pytest.raises(StateRestoreError):
            instance.restore_state({"core": {}})

    def test_snapshot_timestamp_does_not_rewind_clock(self):
        instance = make_instance()
        snap = instance.capture_state()
        instance.tick(1_000)
        instance.restore_state(snap)
        assert instance.clock.now() == 1_000


class TestShutdown:
    def test_shutdown(self):
        instance = make_instance()
        seen = []
        instance.on("shutdown", seen.append)
        final = instance.shutdown()
        assert instance.state.status is InstanceStatus.SHUTDOWN
        assert seen[0]["final_state"] is final
        assert len(instance.history) == 0
        with pytest.raises(NotInitializedError):
            instance.execute_action("ps")
        assert instance.tick()["events"] == []

    def test_statistics(self):
        instance = make_instance()
        stats = instance.get_statistics()
        assert stats["resource_usage"]["memory"] == "400/10000"
        assert stats["processes"] == {"total": 3, "running": 3, "errors": 0}
        assert stats["emotional"]["primary"] == "grief"

    def test_get_state(self):
        state = make_instance().get_state()
        assert state["core"]["status"] == "running"
        assert set(state) == {"id", "name", "core", "resources", "emotional", "memory"}

    def test_shared_clock(self):
        clock = SimClock()
        instance = make_instance(clock=clock)
        instance.tick(100)
        assert instance.emotional.clock is clock
        assert instance.memory.clock.now() == 100
