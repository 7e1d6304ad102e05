"""
CallSpec Core - Argument Generator

Turns a registered CallSpec into a stream of concrete Subcases.

Per slot strategy:
- ENUM:     uniform choice among the declared choices that satisfy the predicate
- PATH:     PathExists -> uniform choice among paths seeded by fixtures;
            otherwise random relative names (under the InDir root when present)
- STRING /
  INTEGER:  solver-backed sampling for the encodable part of the predicate,
            seeded random rejection sampling when the solver cannot help

Every produced value is re-validated against its full predicate. A violation is
a generator bug (GeneratorInvariantError) and aborts only that Subcase.
"""

from __future__ import annotations

import contextlib
import logging
import os
import random
import string
import tempfile
import zlib
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from ..engines import PredicateEncoder, Sampler, SampleStatus, ValueSort
from ..errors import (
    CallSpecError, ErrorKind, ErrorRecord, GeneratorInvariantError, PatternCompileError, SandboxSetupFailure,
)
from ..predicates import (
    Always, And, InDir, PathExists, Predicate, SizeEqualTo, SizeGreaterThan, SizeLessThan, all_of, validate,
)
from ..sandbox.executor import materialize_fixtures
from ..spec import ArgSlot, CallSpec, Domain, Subcase, topological_order

logger = logging.getLogger(__name__)

RANDOM_ALPHABET = string.ascii_letters + string.digits + "_-."
MAX_VARIADIC_EXTRA = 3
RANDOM_ATTEMPTS = 200
PATH_ATTEMPTS = 8


@dataclass(frozen=True)
class GenerationFailure:
    """A Subcase that could not be produced; recorded as data, never raised."""
    spec_name: str
    index: int
    kind: ErrorKind
    message: str
    slot: Optional[str] = None

    @property
    def label(self) -> str:
        return f"{self.spec_name}#{self.index}"

    def to_record(self) -> ErrorRecord:
        meta = {"index": self.index}
        if self.slot:
            meta["slot"] = self.slot
        return ErrorRecord(kind=self.kind, message=self.message, subject=self.spec_name, meta=meta)


class _SlotError(Exception):
    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass
class _Context:
    spec: CallSpec
    cwd: str
    order: List[str]
    fixture_paths: List[str] = field(default_factory=list)


def subcase_seed(spec_name: str, seed: int, index: int) -> int:
    """Stable per-Subcase seed (independent of PYTHONHASHSEED)."""
    return zlib.crc32(f"{spec_name}:{seed}:{index}".encode("utf-8"))


class ArgumentGenerator:
    """
    Usage:
        gen = ArgumentGenerator(Sampler())
        items = gen.generate(spec, count=8, seed=0)
    """

    def __init__(self, sampler: Optional[Sampler] = None, *, budget: int = 16):
        self.sampler = sampler or Sampler()
        self.encoder: PredicateEncoder = self.sampler.encoder
        self.budget = budget

    # -----------------------------
    # Public API
    # -----------------------------
    def generate(self, spec: CallSpec, count: int, seed: int = 0) -> List[Union[Subcase, GenerationFailure]]:
        if count < 0:
            raise ValueError("count must be >= 0")
        try:
            with self._staging(spec) as ctx:
                fatal = self._precheck(ctx)
                if fatal is not None:
                    kind, slot, message = fatal
                    logger.warning("spec %s: %s", spec.name, message)
                    return [GenerationFailure(spec.name, i, kind, message, slot) for i in range(count)]
                return [self._one(ctx, i, seed) for i in range(count)]
        except SandboxSetupFailure as e:
            return [GenerationFailure(spec.name, i, e.kind, e.message) for i in range(count)]

    def reassemble(self, spec: CallSpec, base: Subcase, values: Mapping[str, Any]) -> Optional[Subcase]:
        """A copy of `base` with `values`, or None when any slot no longer validates."""
        with self._staging(spec) as ctx:
            return self._reassemble(ctx, base, values)

    def shrink(self, spec: CallSpec, subcase: Subcase) -> Iterator[Subcase]:
        """Valid Subcases that are one simplification step away from `subcase`."""
        with self._staging(spec) as ctx:
            for name in ctx.order:
                slot = spec.slot(name)
                for candidate in shrink_candidates(slot, subcase.values.get(name)):
                    values = dict(subcase.values)
                    values[name] = candidate
                    smaller = self._reassemble(ctx, subcase, values)
                    if smaller is not None:
                        yield smaller

    # -----------------------------
    # Staging
    # -----------------------------
    @contextlib.contextmanager
    def _staging(self, spec: CallSpec) -> Iterator[_Context]:
        # Path predicates are evaluated against a copy of the fixtures, the same
        # tree the binary will see at launch.
        with tempfile.TemporaryDirectory(prefix="callspec-gen-") as root:
            materialize_fixtures(root, spec.fixtures)
            cwd = os.path.normpath(os.path.join(root, spec.workdir))
            os.makedirs(cwd, exist_ok=True)
            ctx = _Context(spec=spec, cwd=cwd, order=topological_order(spec))
            ctx.fixture_paths = _seeded_paths(root, cwd)
            yield ctx

    def _precheck(self, ctx: _Context) -> Optional[Tuple[ErrorKind, str, str]]:
        """Static satisfiability per slot: (kind, slot, message) when generation cannot succeed."""
        for slot in ctx.spec.slots:
            pred = slot.predicate
            if slot.domain == Domain.ENUM:
                if not any(validate(pred, c, cwd=ctx.cwd) is None for c in slot.choices):
                    return ErrorKind.UNSATISFIABLE, slot.name, f"Slot '{slot.name}': no choice satisfies {pred.describe()}"
                continue

            if slot.domain == Domain.PATH and any(isinstance(p, PathExists) for p in _conjuncts(pred)):
                if not any(validate(pred, p, cwd=ctx.cwd) is None for p in ctx.fixture_paths):
                    return ErrorKind.UNSATISFIABLE, slot.name, f"Slot '{slot.name}': no fixture path satisfies {pred.describe()}"
                continue

            try:
                part = self._solver_part(pred, _sort(slot))
                if part is None or isinstance(part, Always):
                    continue
                status = self.sampler.check_satisfiable(part, _sort(slot))
            except PatternCompileError as e:
                return ErrorKind.PATTERN_COMPILE_ERROR, slot.name, f"Slot '{slot.name}': {e.message}"
            if status == SampleStatus.UNSATISFIABLE:
                return ErrorKind.UNSATISFIABLE, slot.name, f"Slot '{slot.name}': no value satisfies {pred.describe()}"
        return None

    # -----------------------------
    # One Subcase
    # -----------------------------
    def _one(self, ctx: _Context, index: int, seed: int) -> Union[Subcase, GenerationFailure]:
        spec = ctx.spec
        sub_seed = subcase_seed(spec.name, seed, index)
        rng = random.Random(sub_seed)
        values: Dict[str, Any] = {}
        for name in ctx.order:
            slot = spec.slot(name)
            try:
                pred = self._effective_predicate(slot, values)
                values[name] = self._slot_value(ctx, slot, pred, rng)
            except (_SlotError, CallSpecError) as e:
                return GenerationFailure(spec.name, index, e.kind, e.message, slot=name)

        return Subcase(
            spec_name=spec.name,
            index=index,
            seed=sub_seed,
            argv=spec.render_argv(values),
            values=values,
            workdir=spec.workdir,
            fixtures=spec.fixtures,
            env=dict(spec.env),
            timeout_s=spec.timeout_s,
        )

    def _effective_predicate(self, slot: ArgSlot, resolved: Mapping[str, Any]) -> Predicate:
        if slot.refine is None:
            return slot.predicate
        extra = slot.refine({d: resolved[d] for d in slot.depends_on})
        return slot.predicate if extra is None else all_of(slot.predicate, extra)

    def _slot_value(self, ctx: _Context, slot: ArgSlot, pred: Predicate, rng: random.Random) -> Any:
        a = slot.arity
        hi = a.max if a.max is not None else a.min + MAX_VARIADIC_EXTRA
        if not a.variadic:
            if rng.randint(a.min, hi) == 0:
                return None
            return self._checked(ctx, slot, pred, rng)
        lo, hi = _count_bounds(slot.items, a.min, a.max)
        if hi is None:
            hi = lo + MAX_VARIADIC_EXTRA
        if lo > hi:
            raise _SlotError(ErrorKind.UNSATISFIABLE, f"Slot '{slot.name}': no list length satisfies {slot.items.describe()}")
        for _ in range(PATH_ATTEMPTS):
            drawn = [self._checked(ctx, slot, pred, rng) for _ in range(rng.randint(lo, hi))]
            # an order predicate over the list is met by arranging the drawn values
            for arranged in (drawn, sorted(drawn), sorted(drawn, reverse=True)):
                if validate(slot.items, arranged, cwd=ctx.cwd) is None:
                    return arranged
        raise _SlotError(ErrorKind.EXHAUSTED, f"Slot '{slot.name}': no drawn list satisfies {slot.items.describe()}")

    def _checked(self, ctx: _Context, slot: ArgSlot, pred: Predicate, rng: random.Random) -> Any:
        value = self._value(ctx, slot, pred, rng)
        err = validate(pred, value, cwd=ctx.cwd)
        if err is not None:
            raise GeneratorInvariantError(
                f"Slot '{slot.name}': generated value {value!r} violates its predicate\n{err}",
                slot=slot.name,
            )
        return value

    # -----------------------------
    # Strategies
    # -----------------------------
    def _value(self, ctx: _Context, slot: ArgSlot, pred: Predicate, rng: random.Random) -> Any:
        if slot.domain == Domain.ENUM:
            options = [c for c in slot.choices if validate(pred, c, cwd=ctx.cwd) is None]
            if not options:
                raise _SlotError(ErrorKind.UNSATISFIABLE, f"Slot '{slot.name}': no choice satisfies {pred.describe()}")
            return rng.choice(options)

        if slot.domain == Domain.PATH and any(isinstance(p, PathExists) for p in _conjuncts(pred)):
            options = [p for p in ctx.fixture_paths if validate(pred, p, cwd=ctx.cwd) is None]
            if not options:
                raise _SlotError(ErrorKind.UNSATISFIABLE, f"Slot '{slot.name}': no fixture path satisfies {pred.describe()}")
            return rng.choice(options)

        sort = _sort(slot)
        part = self._solver_part(pred, sort)
        timed_out = False
        if part is not None and not isinstance(part, Always):
            partial = part != pred
            key = (ctx.spec.name, slot.name, pred.describe())
            for _ in range(PATH_ATTEMPTS if partial else 1):
                res = self.sampler.draw(key, part, sort, budget=self.budget, rng=rng)
                if res.status == SampleStatus.VALUE:
                    if not partial or validate(pred, res.value, cwd=ctx.cwd) is None:
                        return res.value
                    continue
                if res.status == SampleStatus.UNSATISFIABLE:
                    raise _SlotError(ErrorKind.UNSATISFIABLE, f"Slot '{slot.name}': {res.message}")
                if res.status == SampleStatus.EXHAUSTED:
                    # the language is smaller than the Subcase count: repeat a known witness
                    seen = [w for w in self.sampler.store.get(key) if validate(pred, w, cwd=ctx.cwd) is None]
                    if seen:
                        logger.info("slot %s: no distinct value left, reusing one of %d witnesses", slot.name, len(seen))
                        return rng.choice(seen)
                    if not partial:
                        raise _SlotError(ErrorKind.EXHAUSTED, f"Slot '{slot.name}': {res.message}")
                if res.status == SampleStatus.TIMEOUT:
                    logger.warning("slot %s: solver timed out, falling back to random sampling", slot.name)
                    timed_out = True
                break

        return self._random_value(ctx, slot, pred, sort, rng, timed_out)

    def _random_value(
        self, ctx: _Context, slot: ArgSlot, pred: Predicate, sort: ValueSort, rng: random.Random, timed_out: bool
    ) -> Any:
        root = next((p.root for p in _conjuncts(pred) if isinstance(p, InDir)), None)
        for _ in range(RANDOM_ATTEMPTS):
            if sort == ValueSort.INT:
                low, high = self.encoder.int_bounds(pred)
                lo = low if low is not None else (high - 1000 if high is not None else -1000)
                hi = high if high is not None else lo + 2000
                if lo > hi:
                    break
                candidate: Any = rng.randint(lo, hi)
            else:
                candidate = "".join(rng.choice(RANDOM_ALPHABET) for _ in range(rng.randint(1, 8)))
                if slot.domain == Domain.PATH:
                    candidate = candidate.lstrip("-.") or "f"
                    if root not in (None, ".", ""):
                        candidate = os.path.join(root, candidate)
            if validate(pred, candidate, cwd=ctx.cwd) is None:
                return candidate

        kind = ErrorKind.SOLVER_TIMEOUT if timed_out else ErrorKind.EXHAUSTED
        raise _SlotError(kind, f"Slot '{slot.name}': no value satisfying {pred.describe()} found by random sampling")

    def _solver_part(self, pred: Predicate, sort: ValueSort) -> Optional[Predicate]:
        """The encodable conjuncts of `pred` (None when nothing is encodable)."""
        if self.sampler.is_encodable(pred, sort):
            return pred
        kept = [p for p in _conjuncts(pred) if self.sampler.is_encodable(p, sort)]
        return all_of(*kept) if kept else None

    # -----------------------------
    # Shrinking support
    # -----------------------------
    def _reassemble(self, ctx: _Context, base: Subcase, values: Mapping[str, Any]) -> Optional[Subcase]:
        spec = ctx.spec
        for name in ctx.order:
            slot = spec.slot(name)
            v = values.get(name)
            a = slot.arity
            items = (v or []) if a.variadic else ([] if v is None else [v])
            if len(items) < a.min or (a.max is not None and len(items) > a.max):
                return None
            if a.variadic and validate(slot.items, list(items), cwd=ctx.cwd) is not None:
                return None
            pred = self._effective_predicate(slot, values)
            if any(validate(pred, item, cwd=ctx.cwd) is not None for item in items):
                return None
        return Subcase(
            spec_name=base.spec_name,
            index=base.index,
            seed=base.seed,
            argv=spec.render_argv(values),
            values=dict(values),
            workdir=base.workdir,
            fixtures=base.fixtures,
            env=dict(base.env),
            timeout_s=base.timeout_s,
        )


# ============================================================================
# SHRINKING
# ============================================================================

def shrink_candidates(slot: ArgSlot, value: Any) -> Iterator[Any]:
    """
    Simpler values for `value`, simplest first: fewer variadic elements,
    shorter strings, integers closer to zero, earlier ENUM choices.
    """
    if value is None:
        return
    if slot.arity.variadic:
        items = list(value)
        if len(items) > slot.arity.min:
            for i in range(len(items)):
                yield items[:i] + items[i + 1:]
        for i, item in enumerate(items):
            for smaller in _shrink_scalar(slot, item):
                yield items[:i] + [smaller] + items[i + 1:]
        return
    yield from _shrink_scalar(slot, value)


def _shrink_scalar(slot: ArgSlot, value: Any) -> Iterator[Any]:
    if slot.domain == Domain.ENUM:
        if value in slot.choices:
            yield from slot.choices[:slot.choices.index(value)]
        return
    if isinstance(value, bool):
        return
    if isinstance(value, int):
        seen = set()
        for v in (0, value // 2 if value >= 0 else -((-value) // 2), value - 1 if value > 0 else value + 1):
            if v != value and v not in seen and abs(v) < abs(value):
                seen.add(v)
                yield v
        return
    if isinstance(value, str) and slot.domain != Domain.PATH:
        seen = set()
        for v in ("", value[: len(value) // 2], value[:-1], value[1:]):
            if v != value and v not in seen:
                seen.add(v)
                yield v


# ============================================================================
# HELPERS
# ============================================================================

def _sort(slot: ArgSlot) -> ValueSort:
    return ValueSort.INT if slot.domain == Domain.INTEGER else ValueSort.STRING


def _conjuncts(pred: Predicate) -> List[Predicate]:
    if isinstance(pred, And):
        return _conjuncts(pred.left) + _conjuncts(pred.right)
    return [pred]


def _count_bounds(items: Predicate, lo: int, hi: Optional[int]) -> Tuple[int, Optional[int]]:
    """Narrow a variadic count range by the top-level size conjuncts of `items`."""
    for p in _conjuncts(items):
        if isinstance(p, SizeLessThan):
            hi = p.n - 1 if hi is None else min(hi, p.n - 1)
        elif isinstance(p, SizeGreaterThan):
            lo = max(lo, p.n + 1)
        elif isinstance(p, SizeEqualTo):
            lo, hi = max(lo, p.n), (p.n if hi is None else min(hi, p.n))
    return lo, hi


def _seeded_paths(root: str, cwd: str) -> List[str]:
    """Every entry under the staging root, as a path relative to the working directory."""
    out: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(dirnames) + sorted(filenames):
            full = os.path.join(dirpath, name)
            rel = os.path.relpath(full, cwd)
            if full == cwd:
                continue
            out.append(rel)
    return out
