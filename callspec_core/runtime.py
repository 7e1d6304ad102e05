"""
CallSpec Core - Verification Orchestrator

Runs every registered CallSpec against its real binary and aggregates the
outcomes into one SuiteReport.

Per spec:
1) generate K Subcases (solver-backed, seeded)
2) execute each in its own sandbox and verify its effects
3) optionally shrink a failing Subcase to a simpler one that fails the same way

Guarantees:
- A spec passes only if every one of its Subcases passes.
- Errors are data: a failing spec never aborts the suite (unless fail-fast).
- Specs sharing a resource name never run concurrently.
- A suite time budget cancels pending work and kills running process groups.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple, Union

from .engines import PredicateEncoder, Sampler
from .errors import CallSpecError, ErrorKind, ErrorRecord, ProcessSpawnFailure, SandboxSetupFailure
from .generation import ArgumentGenerator, GenerationFailure
from .regex import RegexCompiler
from .sandbox import SandboxExecutor, SandboxResult
from .spec import CallSpec, SpecRegistry, Subcase
from .verification import EffectVerifier, OutcomeStatus, VerificationOutcome

logger = logging.getLogger(__name__)

Mode = Literal["fail-fast", "fail-complete"]


@dataclass(frozen=True)
class VerifierConfig:
    """
    Suite behavior toggles. Defaults verify every spec fully (fail-complete).
    """
    subcases_per_spec: int = 8
    seed: int = 0
    mode: Mode = "fail-complete"
    max_workers: int = 1
    suite_timeout_s: Optional[float] = None
    process_timeout_s: float = 10.0
    solver_timeout_ms: int = 2000
    sample_budget: int = 16
    max_unroll: int = 256
    output_limit: int = 64 * 1024
    content_limit: int = 1024 * 1024
    env_allowlist: Tuple[str, ...] = ("PATH",)
    retain_on_failure: bool = False
    shrink_failures: bool = True
    max_shrink_steps: int = 32
    debug: bool = False  # If True, solver traces are kept on sample results


class SpecStatus(Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class SubcaseReport:
    """One Subcase: what ran, what was observed, what did not match."""
    spec_name: str
    index: int
    outcome: VerificationOutcome
    argv: Optional[Tuple[str, ...]] = None
    values: Dict[str, Any] = field(default_factory=dict)
    result: Optional[SandboxResult] = None
    original_argv: Optional[Tuple[str, ...]] = None  # set when the failure was shrunk
    shrink_steps: int = 0

    @property
    def passed(self) -> bool:
        return self.outcome.passed

    @property
    def label(self) -> str:
        return f"{self.spec_name}#{self.index}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spec": self.spec_name,
            "index": self.index,
            "argv": list(self.argv) if self.argv is not None else None,
            "original_argv": list(self.original_argv) if self.original_argv is not None else None,
            "shrink_steps": self.shrink_steps,
            "outcome": self.outcome.to_dict(),
            "result": self.result.to_dict() if self.result is not None else None,
        }


@dataclass(frozen=True)
class SpecReport:
    name: str
    status: SpecStatus
    subcases: Tuple[SubcaseReport, ...] = ()
    errors: Tuple[ErrorRecord, ...] = ()
    duration_ms: float = 0.0

    @property
    def passed(self) -> bool:
        return self.status == SpecStatus.PASSED

    @property
    def failures(self) -> List[SubcaseReport]:
        return [s for s in self.subcases if not s.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "duration_ms": round(self.duration_ms, 3),
            "subcases": [s.to_dict() for s in self.subcases],
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class SuiteReport:
    specs: Tuple[SpecReport, ...]
    rejected: Tuple[ErrorRecord, ...] = ()
    mode: Mode = "fail-complete"
    duration_ms: float = 0.0

    @property
    def passed(self) -> bool:
        return not self.rejected and all(s.passed for s in self.specs)

    @property
    def failures(self) -> List[SubcaseReport]:
        return [f for s in self.specs for f in s.failures]

    @property
    def first_failure(self) -> Optional[SubcaseReport]:
        failures = self.failures
        return failures[0] if failures else None

    def counts(self) -> Dict[str, int]:
        out = {s.value: 0 for s in SpecStatus}
        for s in self.specs:
            out[s.status.value] += 1
        out["REJECTED"] = len(self.rejected)
        out["SUBCASES"] = sum(len(s.subcases) for s in self.specs)
        out["FAILED_SUBCASES"] = len(self.failures)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "mode": self.mode,
            "duration_ms": round(self.duration_ms, 3),
            "counts": self.counts(),
            "specs": [s.to_dict() for s in self.specs],
            "rejected": [r.to_dict() for r in self.rejected],
        }


def _error_outcome(record: ErrorRecord) -> VerificationOutcome:
    return VerificationOutcome(status=OutcomeStatus.ERROR, error=record)


class Verifier:
    """
    Usage:
        report = Verifier(VerifierConfig(subcases_per_spec=4)).run(registry)
        if not report.passed:
            print(report.first_failure.argv)
    """

    def __init__(
        self,
        config: Optional[VerifierConfig] = None,
        *,
        sampler: Optional[Sampler] = None,
        executor: Optional[SandboxExecutor] = None,
    ):
        self.config = config or VerifierConfig()
        cfg = self.config
        if cfg.subcases_per_spec < 1:
            raise ValueError("subcases_per_spec must be >= 1")
        if cfg.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        self.sampler = sampler or Sampler(
            PredicateEncoder(RegexCompiler(max_unroll=cfg.max_unroll)),
            timeout_ms=cfg.solver_timeout_ms,
            debug=cfg.debug,
        )
        self.generator = ArgumentGenerator(self.sampler, budget=cfg.sample_budget)
        self.executor = executor or SandboxExecutor(
            timeout_s=cfg.process_timeout_s,
            output_limit=cfg.output_limit,
            content_limit=cfg.content_limit,
            env_allowlist=cfg.env_allowlist,
            retain_on_failure=cfg.retain_on_failure,
        )
        self.effects = EffectVerifier()

        self._stop = threading.Event()
        self._deadline: Optional[float] = None
        self._resource_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # -----------------------------
    # Public API
    # -----------------------------
    def run(self, registry: Union[SpecRegistry, Iterable[CallSpec]]) -> SuiteReport:
        if not isinstance(registry, SpecRegistry):
            registry = SpecRegistry(registry)
        specs = list(registry)
        started = time.perf_counter()
        self._stop.clear()
        self._deadline = (
            time.monotonic() + self.config.suite_timeout_s if self.config.suite_timeout_s is not None else None
        )
        logger.info("verifying %d specs (%s, %d workers)", len(specs), self.config.mode, self.config.max_workers)

        reports: Dict[str, SpecReport] = {}
        with ThreadPoolExecutor(max_workers=self.config.max_workers, thread_name_prefix="callspec") as pool:
            futures: Dict[Future, CallSpec] = {pool.submit(self._guarded, spec): spec for spec in specs}
            pending = set(futures)
            while pending:
                timeout = self._remaining()
                if timeout is not None and self._stop.is_set():
                    # already cancelled: poll so late spawns are killed too
                    timeout = 0.1
                done, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                for fut in done:
                    if fut.cancelled():
                        continue
                    report = fut.result()
                    reports[report.name] = report
                    if self.config.mode == "fail-fast" and report.status in (SpecStatus.FAILED, SpecStatus.ERROR):
                        self._cancel(pending, "fail-fast: stopping after first failing spec")
                if self._expired():
                    self._cancel(pending, "suite time budget exceeded")
                    self.executor.terminate_all()

        ordered = tuple(reports.get(s.name) or self._cancelled_report(s) for s in specs)
        return SuiteReport(
            specs=ordered,
            rejected=tuple(registry.rejected),
            mode=self.config.mode,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    def verify_spec(self, spec: CallSpec) -> SpecReport:
        """Generate, execute and verify all Subcases of one spec."""
        started = time.perf_counter()
        cfg = self.config
        subcases: List[SubcaseReport] = []
        errors: List[ErrorRecord] = []
        aborted = False
        cancelled = False

        items = self.generator.generate(spec, cfg.subcases_per_spec, seed=cfg.seed)
        for item in items:
            if self._stop.is_set() or self._expired():
                cancelled = True
                break

            if isinstance(item, GenerationFailure):
                record = item.to_record()
                errors.append(record)
                subcases.append(SubcaseReport(spec.name, item.index, _error_outcome(record)))
                if cfg.mode == "fail-fast":
                    break
                continue

            try:
                report = self._run_subcase(spec, item)
            except (ProcessSpawnFailure, SandboxSetupFailure) as e:
                # the binary or the sandbox is unusable: no later Subcase can do better
                record = e.to_record(subject=spec.name)
                errors.append(record)
                subcases.append(SubcaseReport(spec.name, item.index, _error_outcome(record), argv=item.argv, values=item.values))
                aborted = True
                break
            except Exception as e:
                # keep the Subcases already verified; only this one becomes an error
                logger.exception("internal error in %s#%d", spec.name, item.index)
                record = ErrorRecord(
                    ErrorKind.INTERNAL_ERROR, f"{type(e).__name__}: {e}", subject=spec.name, meta={"index": item.index}
                )
                errors.append(record)
                subcases.append(SubcaseReport(spec.name, item.index, _error_outcome(record), argv=item.argv, values=item.values))
                if cfg.mode == "fail-fast":
                    break
                continue

            if self._stop.is_set() and report.outcome.status != OutcomeStatus.PASSED and self._expired():
                # killed by suite cancellation, not by its own behavior
                cancelled = True
                break
            subcases.append(report)
            if not report.passed and cfg.mode == "fail-fast":
                break

        if aborted:
            status = SpecStatus.ERROR
        elif cancelled:
            status = SpecStatus.CANCELLED
            errors.append(ErrorRecord(ErrorKind.CANCELLED, "Cancelled before all subcases ran", subject=spec.name))
        elif any(s.outcome.status in (OutcomeStatus.FAILED, OutcomeStatus.TIMED_OUT) for s in subcases):
            status = SpecStatus.FAILED
        elif any(not s.passed for s in subcases):
            status = SpecStatus.ERROR
        else:
            status = SpecStatus.PASSED

        duration = (time.perf_counter() - started) * 1000.0
        logger.info("spec %s: %s (%d subcases, %.0f ms)", spec.name, status.value, len(subcases), duration)
        return SpecReport(spec.name, status, tuple(subcases), tuple(errors), duration)

    # -----------------------------
    # Internal helpers
    # -----------------------------
    def _guarded(self, spec: CallSpec) -> SpecReport:
        if self._stop.is_set():
            return self._cancelled_report(spec)
        locks = [self._lock_for(name) for name in sorted(set(spec.shared_resources))]
        for lock in locks:
            lock.acquire()
        try:
            if self._stop.is_set():
                return self._cancelled_report(spec)
            report = self.verify_spec(spec)
        except CallSpecError as e:
            logger.warning("spec %s aborted: %s", spec.name, e.message)
            report = SpecReport(spec.name, SpecStatus.ERROR, errors=(e.to_record(subject=spec.name),))
        except Exception as e:
            # orchestrator boundary: every failure becomes data
            logger.exception("internal error while verifying %s", spec.name)
            record = ErrorRecord(ErrorKind.INTERNAL_ERROR, f"{type(e).__name__}: {e}", subject=spec.name)
            report = SpecReport(spec.name, SpecStatus.ERROR, errors=(record,))
        finally:
            for lock in reversed(locks):
                lock.release()

        if self.config.mode == "fail-fast" and report.status in (SpecStatus.FAILED, SpecStatus.ERROR):
            # set before this worker can pick up the next spec
            self._stop.set()
        return report

    def _run_subcase(self, spec: CallSpec, subcase: Subcase) -> SubcaseReport:
        result = self.executor.run(
            subcase,
            timeout_s=self._process_timeout(spec),
            keep=lambda r: not self.effects.verify(spec.effects, r, subcase).passed,
        )
        outcome = self.effects.verify(spec.effects, result, subcase)
        report = SubcaseReport(spec.name, subcase.index, outcome, subcase.argv, dict(subcase.values), result)
        if outcome.status == OutcomeStatus.FAILED and self.config.shrink_failures:
            return self._shrink(spec, subcase, report)
        return report

    def _shrink(self, spec: CallSpec, subcase: Subcase, report: SubcaseReport) -> SubcaseReport:
        """Greedy: take the first simpler Subcase that still fails with an overlapping mismatch kind."""
        kinds = set(report.outcome.kinds())
        best, best_subcase = report, subcase
        steps = 0
        improved = True
        while improved and steps < self.config.max_shrink_steps and not self._stop.is_set():
            improved = False
            for candidate in self.generator.shrink(spec, best_subcase):
                if steps >= self.config.max_shrink_steps or self._expired():
                    break
                steps += 1
                try:
                    result = self.executor.run(candidate, timeout_s=self._process_timeout(spec))
                except (ProcessSpawnFailure, SandboxSetupFailure) as e:
                    logger.debug("shrink candidate %s not runnable: %s", candidate.argv, e.message)
                    continue
                outcome = self.effects.verify(spec.effects, result, candidate)
                if outcome.status == OutcomeStatus.FAILED and kinds & set(outcome.kinds()):
                    best_subcase = candidate
                    best = SubcaseReport(
                        spec.name, subcase.index, outcome, candidate.argv, dict(candidate.values), result,
                        original_argv=subcase.argv,
                    )
                    improved = True
                    break
        if best is report:
            return report
        logger.debug("shrunk %s in %d steps: %s", report.label, steps, best.argv)
        return replace(best, shrink_steps=steps)

    def _lock_for(self, resource: str) -> threading.Lock:
        with self._locks_guard:
            return self._resource_locks.setdefault(resource, threading.Lock())

    def _process_timeout(self, spec: CallSpec) -> float:
        timeout = spec.timeout_s if spec.timeout_s is not None else self.config.process_timeout_s
        remaining = self._remaining()
        if remaining is not None:
            timeout = max(0.001, min(timeout, remaining))
        return timeout

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def _expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def _cancel(self, pending, reason: str):
        self._stop.set()
        cancelled = [fut for fut in pending if fut.cancel()]
        if cancelled:
            logger.warning("cancelled %d pending specs: %s", len(cancelled), reason)

    def _cancelled_report(self, spec: CallSpec) -> SpecReport:
        record = ErrorRecord(ErrorKind.CANCELLED, "Cancelled before it ran", subject=spec.name)
        return SpecReport(spec.name, SpecStatus.CANCELLED, errors=(record,))
