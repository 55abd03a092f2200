"""
psyche
======
Mental-state runtime for simulated characters.

Exports:
    InstanceController  — one character: tick, actions, snapshots
    EmotionalEngine     — emotional subsystem
    MemoryLedger        — memory subsystem
    InstanceConfig      — character definition
    SimClock            — shared simulated time
"""

from .clock    import SimClock
from .config   import InstanceConfig, load_config
from .errors   import PsycheError
from .emotion  import EmotionalEngine
from .memory   import MemoryLedger
from .instance import InstanceController

__version__ = "1.0.0"

__all__ = [
    "SimClock",
    "InstanceConfig",
    "load_config",
    "PsycheError",
    "EmotionalEngine",
    "MemoryLedger",
    "InstanceController",
]
