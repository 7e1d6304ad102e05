"""
CallSpec Core - Error Taxonomy

Every failure a component can raise derives from CallSpecError. Components raise;
the orchestrator catches at its boundary and records an ErrorRecord, so a complete
report is always producible.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Tag attached to every recorded (non-behavioral) failure."""
    PATTERN_COMPILE_ERROR = "PatternCompileError"
    UNSATISFIABLE = "Unsatisfiable"
    EXHAUSTED = "Exhausted"
    SOLVER_TIMEOUT = "SolverTimeout"
    DEPENDENCY_CYCLE = "DependencyCycle"
    SPEC_INVALID = "SpecInvalid"
    SANDBOX_SETUP_FAILURE = "SandboxSetupFailure"
    PROCESS_SPAWN_FAILURE = "ProcessSpawnFailure"
    TIMED_OUT = "TimedOut"
    GENERATOR_INVARIANT = "GeneratorInvariant"
    CANCELLED = "Cancelled"
    INTERNAL_ERROR = "InternalError"


class CallSpecError(Exception):
    """Base class for all callspec_core failures."""
    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str, **meta: Any):
        super().__init__(message)
        self.message = message
        self.meta = meta

    def to_record(self, subject: Optional[str] = None) -> "ErrorRecord":
        return ErrorRecord(kind=self.kind, message=self.message, subject=subject, meta=dict(self.meta))


# ----------------------------------------------------------------------------
# Pattern compilation
# ----------------------------------------------------------------------------

class PatternCompileError(CallSpecError):
    """Raised when a regex cannot be turned into a solver term."""
    kind = ErrorKind.PATTERN_COMPILE_ERROR

    def __init__(self, message: str, pattern: Optional[str] = None, position: Optional[int] = None):
        prefix = f"Col {position}: " if position is not None else ""
        super().__init__(f"{prefix}{message}", pattern=pattern, position=position)
        self.pattern = pattern
        self.position = position


class PatternSyntaxError(PatternCompileError):
    """Malformed pattern text."""


class UnsupportedPattern(PatternCompileError):
    """Non-regular construct (backreference, lookaround, interior anchor...)."""


class PatternTooLarge(PatternCompileError):
    """Bounded repetition unrolls past the configured cap."""


# ----------------------------------------------------------------------------
# Spec registration
# ----------------------------------------------------------------------------

class SpecInvalid(CallSpecError):
    """Schema mismatch detected when a CallSpec is registered."""
    kind = ErrorKind.SPEC_INVALID

    def __init__(self, message: str, spec: Optional[str] = None, **meta: Any):
        prefix = f"Spec '{spec}': " if spec else ""
        super().__init__(f"{prefix}{message}", spec=spec, **meta)
        self.spec = spec


class DependencyCycle(SpecInvalid):
    """Slot dependency graph is not acyclic."""
    kind = ErrorKind.DEPENDENCY_CYCLE


# ----------------------------------------------------------------------------
# Generation / execution
# ----------------------------------------------------------------------------

class GeneratorInvariantError(CallSpecError):
    """A generated value failed re-validation against its own predicate (generator bug)."""
    kind = ErrorKind.GENERATOR_INVARIANT


class SandboxSetupFailure(CallSpecError):
    """Sandbox directory or fixture I/O failed."""
    kind = ErrorKind.SANDBOX_SETUP_FAILURE


class ProcessSpawnFailure(CallSpecError):
    """Target binary is missing or not executable."""
    kind = ErrorKind.PROCESS_SPAWN_FAILURE


@dataclass(frozen=True)
class ErrorRecord:
    """An error represented as data inside a report."""
    kind: ErrorKind
    message: str
    subject: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "subject": self.subject,
            "meta": {k: v for k, v in self.meta.items() if _is_plain(v)},
        }


def _is_plain(v: Any) -> bool:
    return v is None or isinstance(v, (str, int, float, bool, list, tuple, dict))
