"""
CallSpec Core - Constraint Sampler (Z3 Engine)

Draws concrete values that satisfy a predicate, varied across calls.

What a sample guarantees:
1) Soundness: the returned value satisfies the encoded predicate.
2) Distinctness: the value differs from every witness in the exclusion set.
3) Termination: every call ends in VALUE, UNSATISFIABLE, EXHAUSTED or TIMEOUT
   within `budget` solver checks and a wall-clock ceiling.
4) Determinism: identical predicate + exclusion history + RNG state gives an
   identical value (Z3 is deterministic for identical assertions; diversity
   comes only from seeded hint constraints).

Design principles:
- UNSATISFIABLE is proven on the bare predicate and is terminal.
- EXHAUSTED means the predicate is satisfiable but every model is excluded
  (the language is smaller than the number of samples requested) or the
  budget ran out.
- Diversity hints (alphabet, length, prefix, pivot) are soft: they are
  dropped one by one until the solver finds a model.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple

import z3

from .encoder import PredicateEncoder, ValueSort, string_val
from ...predicates import Predicate
from ...regex.compiler import char_val

logger = logging.getLogger(__name__)

# Z3's default context is shared by every Sampler in the process and is not
# thread-safe: term creation, solving and reference release all happen under it.
Z3_LOCK = threading.RLock()

DEFAULT_BUDGET = 16
DEFAULT_TIMEOUT_MS = 2000
DEFAULT_INT_SPAN = 1000
MAX_LENGTH_HINT = 12


class SampleStatus(Enum):
    VALUE = "VALUE"
    UNSATISFIABLE = "UNSATISFIABLE"
    EXHAUSTED = "EXHAUSTED"
    TIMEOUT = "TIMEOUT"


@dataclass(frozen=True)
class SampleResult:
    status: SampleStatus
    value: Any = None
    checks: int = 0
    message: str = ""
    trace: Optional[List[Dict[str, Any]]] = None

    @property
    def ok(self) -> bool:
        return self.status == SampleStatus.VALUE


class ExclusionStore:
    """
    Per-predicate witness sets. The only mutable state shared between
    workers; mutated only under the sampler lock.
    """

    def __init__(self):
        self._witnesses: Dict[Hashable, List[Any]] = {}

    def get(self, key: Hashable) -> Tuple[Any, ...]:
        return tuple(self._witnesses.get(key, ()))

    def add(self, key: Hashable, value: Any):
        bucket = self._witnesses.setdefault(key, [])
        if value not in bucket:
            bucket.append(value)

    def clear(self, key: Optional[Hashable] = None):
        if key is None:
            self._witnesses.clear()
        else:
            self._witnesses.pop(key, None)

    def __len__(self):
        return sum(len(v) for v in self._witnesses.values())


class Sampler:
    """
    Solver adapter behind a narrow interface.

    Usage:
        sampler = Sampler()
        res = sampler.sample(Regex("[a-z]{3}"), ValueSort.STRING, exclusions=("abc",), rng=random.Random(7))
    """

    def __init__(
        self,
        encoder: Optional[PredicateEncoder] = None,
        *,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        store: Optional[ExclusionStore] = None,
        debug: bool = False,
    ):
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be > 0")
        self.encoder = encoder or PredicateEncoder()
        self.timeout_ms = int(timeout_ms)
        self.store = store or ExclusionStore()
        # also makes every store update single-writer
        self._lock = Z3_LOCK

        self.debug: bool = bool(debug)
        self._trace: List[Dict[str, Any]] = []
        self._trace_max: int = 200

    # -----------------------------
    # Public API
    # -----------------------------
    def is_encodable(self, pred: Predicate, sort: ValueSort) -> bool:
        """True when the solver can express `pred` (compiling its patterns on the way)."""
        return self._locked(self.encoder.is_encodable, pred, sort)

    def check_satisfiable(self, pred: Predicate, sort: ValueSort) -> SampleStatus:
        """VALUE if some value satisfies `pred`, UNSATISFIABLE if none, TIMEOUT if unknown."""
        return self._locked(self._check_satisfiable, pred, sort)

    def draw(
        self,
        key: Hashable,
        pred: Predicate,
        sort: ValueSort,
        *,
        budget: int = DEFAULT_BUDGET,
        rng: Optional[random.Random] = None,
    ) -> SampleResult:
        """Sample against the stored exclusion set for `key` and record the witness."""
        with self._lock:
            res = self.sample(pred, sort, self.store.get(key), budget=budget, rng=rng)
            if res.ok:
                self.store.add(key, res.value)
            return res

    def sample(
        self,
        pred: Predicate,
        sort: ValueSort,
        exclusions: Sequence[Any] = (),
        *,
        budget: int = DEFAULT_BUDGET,
        rng: Optional[random.Random] = None,
    ) -> SampleResult:
        """
        One constrained, exclusion-respecting sample.

        Raises NotEncodable / PatternCompileError for predicates the solver cannot express.
        """
        if budget < 1:
            raise ValueError("budget must be >= 1")
        rng = rng or random.Random(0)
        return self._locked(self._sample, pred, sort, tuple(exclusions), budget, rng)

    # -----------------------------
    # Z3 sections (run only through _locked)
    # -----------------------------
    def _locked(self, fn, *args):
        """
        Call `fn` holding Z3_LOCK. Z3 references it creates are released
        before the lock is: its frame ends inside the `with` block, and an
        error leaves with its traceback chain (which pins frames) cleared.
        """
        with self._lock:
            try:
                return fn(*args)
            except Exception as e:
                error = e
                link: Optional[BaseException] = e
                seen = set()
                while link is not None and id(link) not in seen:
                    seen.add(id(link))
                    link.__traceback__ = None
                    link = link.__cause__ or link.__context__
        raise error

    def _check_satisfiable(self, pred: Predicate, sort: ValueSort) -> SampleStatus:
        var = self.encoder.symbol(sort)
        solver = z3.Solver()
        solver.set("timeout", self.timeout_ms)
        solver.add(self.encoder.encode(pred, var), self.encoder.domain(var))
        res = solver.check()
        if res == z3.sat:
            return SampleStatus.VALUE
        if res == z3.unsat:
            return SampleStatus.UNSATISFIABLE
        return SampleStatus.TIMEOUT

    def _sample(
        self, pred: Predicate, sort: ValueSort, exclusions: Tuple[Any, ...], budget: int, rng: random.Random
    ) -> SampleResult:
        self._trace = []
        deadline = time.monotonic() + self.timeout_ms / 1000.0
        var = self.encoder.symbol(sort)
        base = self.encoder.encode(pred, var)
        self._t("sample_start", predicate=pred.describe(), sort=sort.value, exclusions=len(exclusions))

        solver = z3.Solver()
        solver.add(base, self.encoder.domain(var))
        checks = 1
        res = self._check(solver, deadline)
        if res == z3.unsat:
            return self._result(SampleStatus.UNSATISFIABLE, checks, f"No value satisfies {pred.describe()}")
        if res != z3.sat:
            return self._result(SampleStatus.TIMEOUT, checks, "Solver timed out on the bare predicate")

        for w in exclusions:
            lit = self.encoder.literal(w, var)
            if lit is not None:
                solver.add(var != lit)
        if exclusions:
            checks += 1
            res = self._check(solver, deadline)
            if res == z3.unsat:
                return self._result(
                    SampleStatus.EXHAUSTED, checks,
                    f"All values of {pred.describe()} are excluded ({len(exclusions)} witnesses)",
                )
            if res != z3.sat:
                return self._result(SampleStatus.TIMEOUT, checks, "Solver timed out under exclusions")

        # Diversity rounds: each round draws fresh hints and relaxes them one by one.
        while checks < budget:
            hints = self._hints(pred, var, sort, rng)
            while hints and checks < budget:
                if time.monotonic() >= deadline:
                    return self._result(SampleStatus.TIMEOUT, checks, "Wall-clock ceiling reached")
                checks += 1
                solver.push()
                solver.add(*hints)
                res = self._check(solver, deadline)
                if res == z3.sat:
                    value = self.encoder.decode(solver.model(), var)
                    solver.pop()
                    self._t("hinted_model", hints=len(hints), value=repr(value))
                    return self._result(SampleStatus.VALUE, checks, value=value)
                solver.pop()
                hints = hints[:-1]
            if not hints:
                break

        # hints exhausted or budget spent: one plain model if there is still time
        if time.monotonic() >= deadline:
            return self._result(SampleStatus.TIMEOUT, checks, "Wall-clock ceiling reached")
        res = self._check(solver, deadline)
        if res == z3.sat:
            value = self.encoder.decode(solver.model(), var)
            self._t("plain_model", value=repr(value))
            return self._result(SampleStatus.VALUE, checks, value=value)
        if res == z3.unsat:
            return self._result(SampleStatus.EXHAUSTED, checks, "No distinct model left")
        return self._result(SampleStatus.TIMEOUT, checks, "Solver timed out")

    # -----------------------------
    # Helpers
    # -----------------------------
    def _check(self, solver: z3.Solver, deadline: float):
        remaining_ms = int((deadline - time.monotonic()) * 1000)
        if remaining_ms <= 0:
            return z3.unknown
        solver.set("timeout", remaining_ms)
        return solver.check()

    def _hints(self, pred: Predicate, var: z3.ExprRef, sort: ValueSort, rng: random.Random) -> List[z3.BoolRef]:
        """Soft constraints, most specific last (dropped first)."""
        if sort == ValueSort.INT:
            low, high = self.encoder.int_bounds(pred)
            lo = low if low is not None else (high - DEFAULT_INT_SPAN if high is not None else -DEFAULT_INT_SPAN)
            hi = high if high is not None else lo + 2 * DEFAULT_INT_SPAN
            pivot = rng.randint(lo, hi) if lo <= hi else lo
            direction = rng.choice((True, False))
            return [var >= pivot if direction else var <= pivot, var == pivot]

        lo_char, hi_char = self.encoder.compiler.alphabet
        printable = z3.Star(z3.Range(char_val(lo_char), char_val(hi_char)))
        length = rng.randint(0, MAX_LENGTH_HINT)
        first = chr(rng.randint(ord(lo_char), ord(hi_char)))
        return [
            z3.InRe(var, printable),
            z3.Length(var) >= length,
            z3.PrefixOf(string_val(first), var),
            z3.Length(var) == length,
        ]

    def _result(self, status: SampleStatus, checks: int, message: str = "", value: Any = None) -> SampleResult:
        logger.debug("sample -> %s after %d checks %s", status.value, checks, message)
        self._t("sample_end", status=status.value, checks=checks)
        return SampleResult(
            status=status,
            value=value,
            checks=checks,
            message=message,
            trace=list(self._trace) if self.debug else None,
        )

    def _t(self, event: str, **data):
        if not self.debug:
            return
        self._trace.append({"event": event, **data})
        if len(self._trace) > self._trace_max:
            self._trace.pop(0)
