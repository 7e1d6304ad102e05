"""
Weakening relations between predicates.

`weakens_to(src, dst)` is a sound (not complete) check that every value
satisfying `src` also satisfies `dst`. `weaken` is the explicit conversion: it
returns `dst` or raises when the relation cannot be established.
"""

from __future__ import annotations

from .model import (
    Predicate, Always, NumericRange, EqualTo, OneOf, DivisibleBy, Even,
    SizeLessThan, SizeGreaterThan, SizeEqualTo, And, Or,
)


def _range_within(src: NumericRange, dst: NumericRange) -> bool:
    if dst.low is not None:
        if src.low is None or src.low < dst.low:
            return False
        if src.low == dst.low and src.low_inclusive and not dst.low_inclusive:
            return False
    if dst.high is not None:
        if src.high is None or src.high > dst.high:
            return False
        if src.high == dst.high and src.high_inclusive and not dst.high_inclusive:
            return False
    return True


def weakens_to(src: Predicate, dst: Predicate) -> bool:
    if src == dst or isinstance(dst, Always):
        return True

    # structural rules first
    if isinstance(src, And) and (weakens_to(src.left, dst) or weakens_to(src.right, dst)):
        return True
    if isinstance(src, Or):
        return weakens_to(src.left, dst) and weakens_to(src.right, dst)
    if isinstance(dst, And):
        return weakens_to(src, dst.left) and weakens_to(src, dst.right)
    if isinstance(dst, Or):
        return weakens_to(src, dst.left) or weakens_to(src, dst.right)

    if isinstance(src, NumericRange) and isinstance(dst, NumericRange):
        return _range_within(src, dst)

    if isinstance(src, SizeLessThan) and isinstance(dst, SizeLessThan):
        return src.n <= dst.n
    if isinstance(src, SizeGreaterThan) and isinstance(dst, SizeGreaterThan):
        return dst.n <= src.n
    if isinstance(src, SizeEqualTo):
        if isinstance(dst, SizeLessThan):
            return src.n < dst.n
        if isinstance(dst, SizeGreaterThan):
            return src.n > dst.n

    if isinstance(src, DivisibleBy):
        if isinstance(dst, DivisibleBy):
            return src.n % dst.n == 0
        if isinstance(dst, Even):
            return src.n % 2 == 0

    if isinstance(src, EqualTo):
        if isinstance(dst, OneOf):
            return src.value in dst.values
        if isinstance(dst, NumericRange) and isinstance(src.value, (int, float)) and not isinstance(src.value, bool):
            return dst.contains(src.value)
    if isinstance(src, OneOf) and isinstance(dst, OneOf):
        return all(v in dst.values for v in src.values)

    return False


def weaken(src: Predicate, dst: Predicate) -> Predicate:
    if not weakens_to(src, dst):
        raise ValueError(f"Cannot weaken ({src.describe()}) to ({dst.describe()})")
    return dst


def and_left(pred: And) -> Predicate:
    return pred.left


def and_right(pred: And) -> Predicate:
    return pred.right


def left_or(left: Predicate, right: Predicate) -> Or:
    """A value known to satisfy `left` satisfies `Or(left, right)`."""
    return Or(left, right)


def right_or(left: Predicate, right: Predicate) -> Or:
    return Or(left, right)
