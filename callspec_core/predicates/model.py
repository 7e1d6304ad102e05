"""
Predicate variants

A predicate is a frozen tagged-variant tree. Leaves are checkable constraints
on a single value; And / Or / Xor / Not combine them. Everything is
interpreted by the single `validate` function in `validate.py`, and
encoded for the solver in `engines/z3_engine/encoder.py`.

Composition operators are provided for readability:
    Regex("[a-z]+") & SizeLessThan(8)      -> And
    LowerCase() | OneOf(("A", "B"))         -> Or
    ~Regex("tmp.*")                         -> Not
    Odd() ^ DivisibleBy(3)                  -> Xor
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Literal as TypingLiteral, Optional, Tuple, Union

Number = Union[int, float]
PathKind = TypingLiteral["any", "file", "dir"]


@dataclass(frozen=True)
class Predicate:
    """Base class for all predicates."""

    def describe(self) -> str:
        return self.__class__.__name__

    def __and__(self, other: "Predicate") -> "And":
        return And(self, other)

    def __or__(self, other: "Predicate") -> "Or":
        return Or(self, other)

    def __xor__(self, other: "Predicate") -> "Xor":
        return Xor(self, other)

    def __invert__(self) -> "Not":
        return Not(self)

    def __str__(self):
        return self.describe()


# ============================================================================
# LEAVES
# ============================================================================

@dataclass(frozen=True)
class Always(Predicate):
    """Identity predicate: every value satisfies it."""


@dataclass(frozen=True)
class Regex(Predicate):
    """Whole-string match against a Python `re` pattern."""
    pattern: str

    def describe(self) -> str:
        return f"Regex {self.pattern!r}"


@dataclass(frozen=True)
class PathExists(Predicate):
    """The path exists (relative paths resolved against the sandbox working directory)."""
    kind: PathKind = "any"

    def describe(self) -> str:
        return "PathExists" if self.kind == "any" else f"PathExists {self.kind}"


@dataclass(frozen=True)
class InDir(Predicate):
    """The path lies lexically inside `root`."""
    root: str = "."

    def describe(self) -> str:
        return f"InDir {self.root!r}"


@dataclass(frozen=True)
class LowerCase(Predicate):
    """No upper-case characters."""


@dataclass(frozen=True)
class UpperCase(Predicate):
    """No lower-case characters."""


@dataclass(frozen=True)
class NumericRange(Predicate):
    """low <= value <= high; either bound may be open (None) or exclusive."""
    low: Optional[Number] = None
    high: Optional[Number] = None
    low_inclusive: bool = True
    high_inclusive: bool = True

    def __post_init__(self):
        if self.low is not None and self.high is not None and self.low > self.high:
            raise ValueError(f"NumericRange low {self.low} is greater than high {self.high}")

    def describe(self) -> str:
        lo = "-inf" if self.low is None else str(self.low)
        hi = "+inf" if self.high is None else str(self.high)
        left = "[" if self.low_inclusive and self.low is not None else "("
        right = "]" if self.high_inclusive and self.high is not None else ")"
        return f"NumericRange {left}{lo}, {hi}{right}"

    def contains(self, value: Number) -> bool:
        if self.low is not None:
            if value < self.low or (value == self.low and not self.low_inclusive):
                return False
        if self.high is not None:
            if value > self.high or (value == self.high and not self.high_inclusive):
                return False
        return True


@dataclass(frozen=True)
class EqualTo(Predicate):
    value: Any

    def describe(self) -> str:
        return f"EqualTo {self.value!r}"


@dataclass(frozen=True)
class NotEqualTo(Predicate):
    value: Any

    def describe(self) -> str:
        return f"NotEqualTo {self.value!r}"


@dataclass(frozen=True)
class OneOf(Predicate):
    values: Tuple[Any, ...]

    def describe(self) -> str:
        return f"OneOf {list(self.values)!r}"


@dataclass(frozen=True)
class DivisibleBy(Predicate):
    n: int

    def __post_init__(self):
        if self.n == 0:
            raise ValueError("DivisibleBy requires a non-zero divisor")

    def describe(self) -> str:
        return f"DivisibleBy {self.n}"


@dataclass(frozen=True)
class Odd(Predicate):
    pass


@dataclass(frozen=True)
class Even(Predicate):
    pass


@dataclass(frozen=True)
class SizeLessThan(Predicate):
    n: int

    def describe(self) -> str:
        return f"SizeLessThan {self.n}"


@dataclass(frozen=True)
class SizeGreaterThan(Predicate):
    n: int

    def describe(self) -> str:
        return f"SizeGreaterThan {self.n}"


@dataclass(frozen=True)
class SizeEqualTo(Predicate):
    n: int

    def describe(self) -> str:
        return f"SizeEqualTo {self.n}"


@dataclass(frozen=True)
class Ascending(Predicate):
    """Elements (characters of a string, items of a list) in non-decreasing order."""


@dataclass(frozen=True)
class Descending(Predicate):
    """Elements in non-increasing order."""


# ============================================================================
# COMPOSITES
# ============================================================================

@dataclass(frozen=True)
class Not(Predicate):
    inner: Predicate

    def describe(self) -> str:
        return f"Not ({self.inner.describe()})"


@dataclass(frozen=True)
class And(Predicate):
    left: Predicate
    right: Predicate

    def describe(self) -> str:
        return f"And ({self.left.describe()}) ({self.right.describe()})"


@dataclass(frozen=True)
class Or(Predicate):
    left: Predicate
    right: Predicate

    def describe(self) -> str:
        return f"Or ({self.left.describe()}) ({self.right.describe()})"


@dataclass(frozen=True)
class Xor(Predicate):
    left: Predicate
    right: Predicate

    def describe(self) -> str:
        return f"Xor ({self.left.describe()}) ({self.right.describe()})"


COMPOSITES = (Not, And, Or, Xor)

# leaf families, used by spec registration to check domain tags
STRING_PREDICATES = (Regex, LowerCase, UpperCase, SizeLessThan, SizeGreaterThan, SizeEqualTo, Ascending, Descending)
NUMERIC_PREDICATES = (NumericRange, DivisibleBy, Odd, Even)
PATH_PREDICATES = (PathExists, InDir)
GENERIC_PREDICATES = (Always, EqualTo, NotEqualTo, OneOf)
# admitted on the whole value list of a variadic slot
COLLECTION_PREDICATES = (Always, SizeLessThan, SizeGreaterThan, SizeEqualTo, Ascending, Descending)


# ============================================================================
# CONSTRUCTORS (names follow the refinement-type vocabulary)
# ============================================================================

def From(n: Number) -> NumericRange:
    return NumericRange(low=n)


def To(n: Number) -> NumericRange:
    return NumericRange(high=n)


def FromTo(low: Number, high: Number) -> NumericRange:
    return NumericRange(low=low, high=high)


def LessThan(n: Number) -> NumericRange:
    return NumericRange(high=n, high_inclusive=False)


def GreaterThan(n: Number) -> NumericRange:
    return NumericRange(low=n, low_inclusive=False)


def Positive() -> NumericRange:
    return GreaterThan(0)


def NonNegative() -> NumericRange:
    return From(0)


def NonEmpty() -> SizeGreaterThan:
    return SizeGreaterThan(0)


def EmptySize() -> SizeEqualTo:
    return SizeEqualTo(0)


def all_of(*preds: Predicate) -> Predicate:
    """Right-nested conjunction; Always() for no arguments."""
    if not preds:
        return Always()
    out = preds[-1]
    for p in reversed(preds[:-1]):
        out = And(p, out)
    return out


def leaves(pred: Predicate) -> Iterator[Predicate]:
    """Yield every leaf predicate of a tree."""
    if isinstance(pred, Not):
        yield from leaves(pred.inner)
    elif isinstance(pred, (And, Or, Xor)):
        yield from leaves(pred.left)
        yield from leaves(pred.right)
    else:
        yield pred
