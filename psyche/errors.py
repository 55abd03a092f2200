"""
psyche.errors
=============
Exception taxonomy shared by every subsystem.

Validation errors are raised before any state is touched.  Execution
errors are raised from inside an action handler; the instance records
them, may cascade, and then re-raises.  Expected gameplay failures
(a wrong intervention answer, an unavailable strategy) are *not*
exceptions; they come back as ``{"success": False, ...}`` dicts.
"""

from __future__ import annotations

from typing import Optional


SEVERITY_ERROR    = "error"
SEVERITY_CRITICAL = "critical"


class PsycheError(Exception):
    """
    Base class for every error raised by the runtime.

    Attributes
    ----------
    severity : str
        ``"error"`` or ``"critical"``.  Critical errors always cascade.
    source : str | None
        Name of the process or subsystem the error originated from.
        The cascade destabilizes processes related to it.
    memory_address : str | None
        Memory block id touched by the failing operation, if any.
        The cascade corrupts that region.
    """

    def __init__(
        self,
        message: str,
        *,
        severity: str = SEVERITY_ERROR,
        source: Optional[str] = None,
        memory_address: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.severity       = severity
        self.source         = source
        self.memory_address = memory_address

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""


# ─────────────────────────────────────────────────────────────────────────────
# Validation
# ─────────────────────────────────────────────────────────────────────────────

class InvalidActionError(PsycheError, ValueError):
    """Raised when an action name is not on the whitelist."""


class InstanceTooUnstableError(PsycheError):
    """Raised when stability < 0.1 and the caller did not pass ``force``."""


class NotInitializedError(PsycheError, RuntimeError):
    """Raised when a subsystem is used before ``initialize()``."""


# ─────────────────────────────────────────────────────────────────────────────
# Execution
# ─────────────────────────────────────────────────────────────────────────────

class UnknownSubsystemActionError(PsycheError, ValueError):
    """Raised by a subsystem that received a command it does not implement."""


class MemoryBlockNotFoundError(PsycheError, KeyError):
    """Raised when a memory id is not present in the ledger."""

    def __str__(self) -> str:
        return self.message


class ProcessNotFoundError(PsycheError, KeyError):
    """Raised when a pid is not present in the process table."""

    def __str__(self) -> str:
        return self.message


class StateRestoreError(PsycheError):
    """Raised when a snapshot cannot be applied."""
