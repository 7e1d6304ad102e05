from __future__ import annotations

from .snapshot import DeltaEntry, EntryState, take_snapshot, diff
from .executor import SandboxExecutor, SandboxResult, materialize_fixtures

__all__ = [
    "DeltaEntry",
    "EntryState",
    "take_snapshot",
    "diff",
    "SandboxExecutor",
    "SandboxResult",
    "materialize_fixtures",
]
