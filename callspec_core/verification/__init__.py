from __future__ import annotations

from .effects import EffectVerifier, Mismatch, MismatchKind, OutcomeStatus, VerificationOutcome

__all__ = [
    "EffectVerifier",
    "Mismatch",
    "MismatchKind",
    "OutcomeStatus",
    "VerificationOutcome",
]
