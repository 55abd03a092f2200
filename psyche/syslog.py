"""
psyche/syslog.py — Gameplay system log and narrative hooks
===========================================================

Both collaborators are injected once, at construction, and default to
no-op implementations.  Subsystems call them unconditionally.

    SystemLog       — sink for ``{timestamp, level, message, category, ...}``
                      records shown to the player (error log panel).
    RingSystemLog   — bounded in-memory sink; newest ``maxlen`` records.
    NarrativeHooks  — ``check_triggers(event_name, payload)``; the return
                      value is never consumed.

Developer diagnostics go through the standard ``logging`` module instead.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional


LEVEL_DEBUG   = "debug"
LEVEL_INFO    = "info"
LEVEL_WARNING = "warning"
LEVEL_ERROR   = "error"


@dataclass
class LogRecord:
    timestamp: float
    level:     str
    message:   str
    category:  str
    details:   Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        record = {
            "timestamp": self.timestamp,
            "level":     self.level,
            "message":   self.message,
            "category":  self.category,
        }
        record.update(self.details)
        return record


class SystemLog:
    """No-op sink.  Subclass and override ``emit``."""

    def emit(self, record: LogRecord) -> None:
        pass

    def push(self, timestamp: float, level: str, message: str,
             category: str, **details: Any) -> None:
        self.emit(LogRecord(timestamp=timestamp, level=level,
                            message=message, category=category,
                            details=details))


class NullSystemLog(SystemLog):
    """Explicit name for the default sink."""


class RingSystemLog(SystemLog):
    """Keeps the newest ``maxlen`` records in memory."""

    def __init__(self, maxlen: int = 500) -> None:
        self._records: Deque[LogRecord] = deque(maxlen=maxlen)

    def emit(self, record: LogRecord) -> None:
        self._records.append(record)

    def records(self, category: Optional[str] = None,
                level: Optional[str] = None) -> List[dict]:
        return [
            r.to_dict() for r in self._records
            if (category is None or r.category == category)
            and (level is None or r.level == level)
        ]

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class NarrativeHooks:
    """Narrative engine contract.  Default: ignore every event."""

    def check_triggers(self, event_name: str, payload: Dict[str, Any]) -> None:
        pass
