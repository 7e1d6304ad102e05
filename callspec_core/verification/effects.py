"""
CallSpec Core - Effect Verifier

Compares declared Effects with an observed SandboxResult.

What a verification reports (all collected in one pass, never short-circuited):
1) EXIT_CODE_MISMATCH: exit code outside the accepted set.
2) OUTPUT_MISMATCH: stdout / stderr fails its predicate (refine error tree attached).
3) MISSING_ARTIFACT: a declared change is absent, or has the wrong change / entry kind.
4) CONTENT_MISMATCH: a declared file exists but its content fails its predicate.
5) UNEXPECTED_ARTIFACT: a delta entry that nothing declared.

Missing, unexpected and content problems are distinct kinds and are never merged.
Declared paths are templates relative to the working directory, formatted with the
Subcase's resolved values; delta paths are relative to the sandbox root.
"""

from __future__ import annotations

import fnmatch
import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from ..errors import ErrorRecord
from ..predicates import Predicate, RefineError, validate
from ..sandbox.executor import SandboxResult
from ..spec.model import ChangeKind, Effects, FileEffect, Subcase, resolve_check

_PREVIEW = 200


class MismatchKind(Enum):
    EXIT_CODE_MISMATCH = "EXIT_CODE_MISMATCH"
    OUTPUT_MISMATCH = "OUTPUT_MISMATCH"
    MISSING_ARTIFACT = "MISSING_ARTIFACT"
    CONTENT_MISMATCH = "CONTENT_MISMATCH"
    UNEXPECTED_ARTIFACT = "UNEXPECTED_ARTIFACT"


class OutcomeStatus(Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    ERROR = "ERROR"


@dataclass(frozen=True)
class Mismatch:
    kind: MismatchKind
    subject: str
    expected: str
    observed: str
    detail: Optional[RefineError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "subject": self.subject,
            "expected": self.expected,
            "observed": self.observed,
            "detail": self.detail.to_dict() if self.detail else None,
        }


@dataclass(frozen=True)
class VerificationOutcome:
    status: OutcomeStatus
    mismatches: Tuple[Mismatch, ...] = ()
    error: Optional[ErrorRecord] = None

    @property
    def passed(self) -> bool:
        return self.status == OutcomeStatus.PASSED

    def kinds(self) -> List[MismatchKind]:
        return [m.kind for m in self.mismatches]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "mismatches": [m.to_dict() for m in self.mismatches],
            "error": self.error.to_dict() if self.error else None,
        }


def _preview(text: Optional[str]) -> str:
    if text is None:
        return "<none>"
    return text if len(text) <= _PREVIEW else text[:_PREVIEW] + "..."


def _ancestors(path: str) -> Set[str]:
    out = set()
    parent = posixpath.dirname(path)
    while parent and parent != ".":
        out.add(parent)
        parent = posixpath.dirname(parent)
    return out


class EffectVerifier:
    """
    Usage:
        outcome = EffectVerifier().verify(spec.effects, result, subcase)
        if not outcome.passed:
            for m in outcome.mismatches: ...
    """

    def verify(self, expected: Effects, observed: SandboxResult, subcase: Subcase) -> VerificationOutcome:
        if observed.timed_out:
            return VerificationOutcome(status=OutcomeStatus.TIMED_OUT)

        values = subcase.values
        mismatches: List[Mismatch] = []

        # 1) Exit code
        if observed.exit_code not in expected.exit_codes:
            mismatches.append(Mismatch(
                kind=MismatchKind.EXIT_CODE_MISMATCH,
                subject="exit_code",
                expected=f"one of {sorted(expected.exit_codes)}",
                observed=str(observed.exit_code),
            ))

        # 2) Streams
        for stream, check, text in (
            ("stdout", expected.stdout, observed.stdout),
            ("stderr", expected.stderr, observed.stderr),
        ):
            pred = resolve_check(check, values)
            if pred is None:
                continue
            err = validate(pred, text)
            if err is not None:
                mismatches.append(Mismatch(
                    kind=MismatchKind.OUTPUT_MISMATCH,
                    subject=stream,
                    expected=pred.describe(),
                    observed=_preview(text),
                    detail=err,
                ))

        # 3) Declared file effects
        declared: Set[str] = set()
        removed_roots: Set[str] = set()
        for fe in expected.files:
            path = posixpath.normpath(posixpath.join(subcase.workdir, fe.render(values)))
            declared.add(path)
            if fe.change == ChangeKind.REMOVED:
                removed_roots.add(path)
            mismatches.extend(self._check_file(fe, path, observed, values))

        # 4) Everything else that changed
        allowed_dirs: Set[str] = set()
        for p in declared:
            allowed_dirs |= _ancestors(p)
        for entry in observed.delta:
            if entry.path in declared:
                continue
            if entry.path in allowed_dirs and entry.change == ChangeKind.ADDED:
                continue
            if any(entry.path.startswith(r + "/") for r in removed_roots) and entry.change == ChangeKind.REMOVED:
                continue
            if any(fnmatch.fnmatch(entry.path, pat) for pat in expected.ignore):
                continue
            mismatches.append(Mismatch(
                kind=MismatchKind.UNEXPECTED_ARTIFACT,
                subject=entry.path,
                expected="no change",
                observed=f"{entry.change.value} {entry.kind.value}",
            ))

        status = OutcomeStatus.FAILED if mismatches else OutcomeStatus.PASSED
        return VerificationOutcome(status=status, mismatches=tuple(mismatches))

    def _check_file(self, fe: FileEffect, path: str, observed: SandboxResult, values) -> List[Mismatch]:
        want = f"{fe.change.value} {fe.kind.value}"
        if path == ".." or path.startswith("../") or posixpath.isabs(path):
            return [Mismatch(MismatchKind.MISSING_ARTIFACT, path, want, "path outside the sandbox")]

        entry = observed.entry(path)
        if entry is None:
            return [Mismatch(MismatchKind.MISSING_ARTIFACT, path, want, "no change")]
        if entry.change != fe.change or entry.kind != fe.kind:
            return [Mismatch(MismatchKind.MISSING_ARTIFACT, path, want, f"{entry.change.value} {entry.kind.value}")]

        pred: Optional[Predicate] = resolve_check(fe.content, values)
        if pred is None or fe.change == ChangeKind.REMOVED:
            return []
        if entry.unreadable:
            return [Mismatch(MismatchKind.CONTENT_MISMATCH, path, pred.describe(), "content unreadable")]
        text = entry.text
        err = validate(pred, text)
        if err is None:
            return []
        observed_text = _preview(text)
        if entry.truncated:
            observed_text += " (content truncated)"
        return [Mismatch(MismatchKind.CONTENT_MISMATCH, path, pred.describe(), observed_text, detail=err)]
