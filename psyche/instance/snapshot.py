"""
psyche.instance.snapshot
========================
Whole-instance capture / restore and the pre-action rollback history.

Snapshot layout::

    {
        "core":      {status, stability, corruption, uptime, errors, ...},
        "resources": {cpu, memory, threads},
        "processes": <process manager capture>,
        "memory":    <memory ledger capture>,
        "emotional": <emotional engine capture>,
        "timestamp": <sim ms>,
    }

Snapshots are plain dicts of plain values (deep-copied on the way in and
out) so they can be JSON-encoded for save files.
"""

from __future__ import annotations

import copy
import logging
from collections import deque
from typing import TYPE_CHECKING, Any, Deque, Dict, Optional

from psyche.errors import StateRestoreError
from psyche.instance.lifecycle import InstanceState, ResourceUsage

if TYPE_CHECKING:
    from psyche.instance.controller import InstanceController

log = logging.getLogger(__name__)


HISTORY_LIMIT = 10
SNAPSHOT_KEYS = ("core", "resources", "processes", "memory", "emotional", "timestamp")


def capture(instance: "InstanceController") -> Dict[str, Any]:
    return copy.deepcopy({
        "core":      instance.state.to_dict(),
        "resources": instance.usage.to_dict(),
        "processes": instance.processes.capture_state(),
        "memory":    instance.memory.capture_state(),
        "emotional": instance.emotional.capture_state(),
        "timestamp": instance.clock.now(),
    })


def restore(instance: "InstanceController", snapshot: Dict[str, Any]) -> None:
    """
    Apply ``snapshot`` to ``instance`` in place.

    Raises
    ------
    StateRestoreError
        If the snapshot is missing a section or a subsystem rejects it.
    """
    missing = [k for k in SNAPSHOT_KEYS if k not in (snapshot or {})]
    if missing:
        raise StateRestoreError(f"Snapshot missing sections: {', '.join(missing)}")
    snap = copy.deepcopy(snapshot)
    try:
        state = InstanceState.from_dict(snap["core"])
    except (KeyError, ValueError) as exc:
        raise StateRestoreError(f"Invalid core section: {exc}") from exc

    if not instance.processes.restore_state(snap["processes"]):
        raise StateRestoreError("Process manager rejected snapshot", source="process")
    if not instance.memory.restore_state(snap["memory"]):
        raise StateRestoreError("Memory ledger rejected snapshot", source="memory")
    if not instance.emotional.restore_state(snap["emotional"]):
        raise StateRestoreError("Emotional engine rejected snapshot", source="emotional")

    instance.state = state
    instance.usage = ResourceUsage.from_dict(snap["resources"])
    instance.clock.advance_to(snap["timestamp"])
    log.debug("snapshot from t=%.0f applied (%d memory blocks)",
              snap["timestamp"], len(snap["memory"].get("blocks", [])))


class SnapshotHistory:
    """Bounded stack of pre-action snapshots, newest last."""

    def __init__(self, limit: int = HISTORY_LIMIT) -> None:
        self._snapshots: Deque[Dict[str, Any]] = deque(maxlen=limit)

    def push(self, snapshot: Dict[str, Any]) -> None:
        self._snapshots.append(snapshot)

    def pop(self) -> Optional[Dict[str, Any]]:
        return self._snapshots.pop() if self._snapshots else None

    def clear(self) -> None:
        self._snapshots.clear()

    def __len__(self) -> int:
        return len(self._snapshots)
