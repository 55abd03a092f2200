"""
psyche.instance
===============
One simulated character: lifecycle, health, process table, actions and
snapshots around the emotional engine and the memory ledger.

Exports:
    InstanceController  — owns the subsystems, tick, actions, rollback
    InstanceStatus      — lifecycle status
    HealthCondition     — latched critical / corrupted / memory_exhausted
    ProcessManager      — contract the controller needs from a process table
    ProcessTable        — default in-memory process table
    ACTION_CATEGORIES   — process / memory / emotional / system action lists
"""

from .lifecycle  import InstanceStatus, HealthCondition, InstanceState, ErrorRecord, ResourceUsage
from .processes  import Process, ProcessManager, ProcessTable
from .actions    import ACTION_CATEGORIES, ACTION_TABLE, ActionRouter, category_of
from .snapshot   import SnapshotHistory
from .controller import InstanceController

__all__ = [
    "InstanceController",
    "InstanceStatus",
    "HealthCondition",
    "InstanceState",
    "ErrorRecord",
    "ResourceUsage",
    "Process",
    "ProcessManager",
    "ProcessTable",
    "ACTION_CATEGORIES",
    "ACTION_TABLE",
    "ActionRouter",
    "category_of",
    "SnapshotHistory",
]
