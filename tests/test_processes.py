"""
tests/test_processes.py — process table and action table tests
===============================================================

Test categories
---------------
Unit  — Process       (cpu usage under throttle and niceness)
Unit  — ProcessTable  (spawn, lookup, verbs, crash on tick, groups, capture)
Unit  — actions       (whitelist, router)

Run
---
    pytest tests/test_processes.py -v
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from psyche.errors import (
    SEVERITY_CRITICAL,
    InvalidActionError,
    ProcessNotFoundError,
    PsycheError,
    UnknownSubsystemActionError,
)
from psyche.instance.actions import ACTION_CATEGORIES, ActionRouter, category_of
from psyche.instance.processes import DEFAULT_PROCESSES, Process, ProcessTable


def make_table(with_defaults=True):
    table = ProcessTable()
    if with_defaults:
        for spec in DEFAULT_PROCESSES:
            table.spawn_from_config(spec)
    return table


# ══════════════════════════════════════════════════════════════════════════════
# Process
# ══════════════════════════════════════════════════════════════════════════════

class TestProcess:
    def test_cpu_usage_plain(self):
        assert Process("p", "x", cpu=40.0, memory=10.0).cpu_usage == 40.0

    def test_cpu_usage_niced(self):
        assert Process("p", "x", cpu=40.0, memory=10.0, nice=10).cpu_usage == pytest.approx(30.0)

    def test_cpu_usage_floor(self):
        assert Process("p", "x", cpu=40.0, memory=10.0, nice=100).cpu_usage == pytest.approx(4.0)

    def test_cpu_usage_throttled(self):
        assert Process("p", "x", cpu=40.0, memory=10.0, throttle=0.5).cpu_usage == 20.0


# ══════════════════════════════════════════════════════════════════════════════
# ProcessTable
# ══════════════════════════════════════════════════════════════════════════════

class TestProcessTable:
    def test_pids_start_at_1000(self):
        table = make_table()
        assert [p["pid"] for p in table.ps()] == ["proc_1000", "proc_1001", "proc_1002"]

    def test_lookup_by_name(self):
        table = make_table()
        assert table.get("memory_indexer").pid == "proc_1001"

    def test_lookup_missing(self):
        with pytest.raises(ProcessNotFoundError):
            make_table().get("proc_9")

    def test_usage_totals(self):
        usage = make_table().get_system_resource_usage()
        assert usage["total_cpu_usage"] == pytest.approx(18.0)
        assert usage["total_memory_usage"] == pytest.approx(400.0)
        assert usage["total_threads"] == 4
        assert usage["critical_process_count"] == 1

    def test_kill_core_is_critical(self):
        table = make_table()
        with pytest.raises(PsycheError) as exc:
            table.execute_action("kill", {"pid": "proc_1000"})
        assert exc.value.severity == SEVERITY_CRITICAL
        assert exc.value.source == "consciousness_core"
        assert len(table) == 3

    def test_kill_regular(self):
        table = make_table()
        pid = table.spawn("grief_processor", cpu=45, memory=240, group="grief")
        table.execute_action("kill", {"pid": pid})
        assert len(table) == 3

    def test_nice_and_renice_clamped(self):
        table = make_table()
        table.execute_action("nice", {"pid": "proc_1000", "increment": 15})
        assert table.execute_action("nice", {"pid": "proc_1000", "increment": 15})["nice"] == 19
        assert table.execute_action("renice", {"pid": "proc_1000", "value": -50})["nice"] == -20

    def test_suspend_resume(self):
        table = make_table()
        table.execute_action("suspend", {"pid": "proc_1002"})
        assert table.get_running_count() == 2
        with pytest.raises(PsycheError):
            table.execute_action("suspend", {"pid": "proc_1002"})
        table.execute_action("resume", {"pid": "proc_1002"})
        assert table.get_running_count() == 3

    def test_suspended_excluded_from_usage(self):
        table = make_table()
        table.suspend("proc_1000")
        assert table.get_system_resource_usage()["total_cpu_usage"] == pytest.approx(10.0)

    def test_unknown_action(self):
        with pytest.raises(UnknownSubsystemActionError):
            make_table().execute_action("fork", {})

    def test_unstable_process_crashes_on_tick(self):
        table = make_table()
        table.destabilize("proc_1001", 0.95)
        events = table.tick(100)
        assert events == [{"type": "process_crashed", "pid": "proc_1001",
                           "name": "memory_indexer"}]
        assert table.get_error_count() == 1
        assert table.detect_anomalies()[0]["pid"] == "proc_1001"

    def test_related_by_group(self):
        table = make_table()
        a = table.spawn("grief_a", group="grief")
        b = table.spawn("grief_b", group="grief")
        assert table.get_related_processes("grief_a") == [a, b]
        assert table.get_related_processes(None) == []
        assert table.get_related_processes("ghost") == []

    def test_restart_core_drops_others(self):
        table = make_table()
        table.spawn("grief_a", group="grief")
        table.stop_all()
        table.restart_core()
        assert len(table) == 3
        assert table.get_running_count() == 3

    def test_throttle_all(self):
        table = make_table()
        table.throttle_all(0.5)
        assert table.get_system_resource_usage()["total_cpu_usage"] == pytest.approx(9.0)

    def test_capture_restore(self):
        table = make_table()
        snap = table.capture_state()
        table.spawn("extra")
        assert table.restore_state(snap)
        assert len(table) == 3
        assert table.spawn("again") == "proc_1003"

    def test_process_tree(self):
        tree = make_table().generate_process_tree()
        assert tree == {"core": ["proc_1000"], "memory": ["proc_1001"],
                        "emotional": ["proc_1002"]}


# ══════════════════════════════════════════════════════════════════════════════
# Action table
# ══════════════════════════════════════════════════════════════════════════════

class TestActions:
    def test_every_action_has_one_category(self):
        seen = [a for actions in ACTION_CATEGORIES.values() for a in actions]
        assert len(seen) == len(set(seen)) == 20

    def test_category_of(self):
        assert category_of("calm") == "emotional"
        assert category_of("peek") == "memory"

    def test_invalid_action(self):
        with pytest.raises(InvalidActionError, match="Invalid action: rm"):
            category_of("rm")

    def test_router_dispatches_by_category(self):
        handlers = {c: MagicMock(return_value=c) for c in ACTION_CATEGORIES}
        router = ActionRouter(handlers)
        assert router.dispatch("renice", {"pid": "p"}) == "process"
        handlers["process"].assert_called_once_with("renice", {"pid": "p"})

    def test_router_requires_all_categories(self):
        with pytest.raises(ValueError):
            ActionRouter({"process": MagicMock()})
