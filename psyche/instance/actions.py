"""
psyche.instance.actions
=======================
The player action surface and its static category table.

    process    ps, kill, nice, renice, suspend, resume
    memory     free, dump, peek, poke, protect, unprotect
    emotional  calm, intensify, balance, suppress
    system     reboot, stabilize, defragment, analyze

Dispatch is a dictionary lookup, never attribute probing.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Tuple

from psyche.errors import InvalidActionError


PROCESS   = "process"
MEMORY    = "memory"
EMOTIONAL = "emotional"
SYSTEM    = "system"

ACTION_CATEGORIES: Dict[str, Tuple[str, ...]] = {
    PROCESS:   ("ps", "kill", "nice", "renice", "suspend", "resume"),
    MEMORY:    ("free", "dump", "peek", "poke", "protect", "unprotect"),
    EMOTIONAL: ("calm", "intensify", "balance", "suppress"),
    SYSTEM:    ("reboot", "stabilize", "defragment", "analyze"),
}

ACTION_TABLE: Dict[str, str] = {
    action: category
    for category, actions in ACTION_CATEGORIES.items()
    for action in actions
}

Handler = Callable[[str, Dict[str, Any]], Any]


def category_of(action: str) -> str:
    try:
        return ACTION_TABLE[action]
    except KeyError:
        raise InvalidActionError(f"Invalid action: {action}") from None


class ActionRouter:
    """
    Maps a category to the callable that handles every action in it.

    Usage
    -----
    ::

        router = ActionRouter({
            "process":   processes.execute_action,
            "memory":    ledger.execute_action,
            "emotional": engine.execute_action,
            "system":    controller.execute_system_action,
        })
        router.dispatch("calm", {"emotion": "grief"})
    """

    def __init__(self, handlers: Dict[str, Handler]) -> None:
        missing = set(ACTION_CATEGORIES) - set(handlers)
        if missing:
            raise ValueError(f"missing handlers for categories: {sorted(missing)}")
        self._handlers = dict(handlers)

    def dispatch(self, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self._handlers[category_of(action)](action, dict(params or {}))
