"""
Predicate validation

`validate(predicate, value)` returns None on success or a RefineError tree that
explains, recursively, which parts of a composite predicate failed:

    And (Regex '[a-z]+') (SizeLessThan 4)
    └── The predicate (SizeLessThan 4) failed with the message: Size of value is not less than 4. Size is: 6
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

from .model import (
    Predicate, Always, Regex, PathExists, InDir, LowerCase, UpperCase, NumericRange,
    EqualTo, NotEqualTo, OneOf, DivisibleBy, Odd, Even,
    SizeLessThan, SizeGreaterThan, SizeEqualTo, Ascending, Descending, Not, And, Or, Xor,
)


class RefineErrorKind(Enum):
    OTHER = "other"
    NOT = "not"
    AND = "and"
    OR = "or"
    XOR = "xor"


@dataclass(frozen=True)
class RefineError:
    """Why a value failed a predicate; composites carry their failing children."""
    predicate: str
    kind: RefineErrorKind = RefineErrorKind.OTHER
    message: str = ""
    children: Tuple["RefineError", ...] = field(default_factory=tuple)

    def __str__(self):
        return display_refine_error(self)

    def to_dict(self) -> dict:
        return {
            "predicate": self.predicate,
            "kind": self.kind.value,
            "message": self.message,
            "children": [c.to_dict() for c in self.children],
        }


class RefineFailure(ValueError):
    """Raised by `refine` when a value does not satisfy its predicate."""

    def __init__(self, error: RefineError):
        super().__init__(display_refine_error(error))
        self.error = error


def _fail(pred: Predicate, message: str) -> RefineError:
    return RefineError(predicate=pred.describe(), message=message)


def _is_number(x: Any) -> bool:
    # bool is a subclass of int; exclude it
    return isinstance(x, (int, float)) and not isinstance(x, bool)


def _resolve(path: str, cwd: Optional[str]) -> str:
    return os.path.abspath(os.path.join(cwd or os.curdir, path))


def validate(pred: Predicate, value: Any, *, cwd: Optional[str] = None) -> Optional[RefineError]:
    """
    Check `value` against `pred`.

    cwd:
        directory relative paths are resolved against (PathExists / InDir).
    """
    if isinstance(pred, Always):
        return None

    # -- composites -------------------------------------------------------
    if isinstance(pred, Not):
        if validate(pred.inner, value, cwd=cwd) is None:
            return RefineError(predicate=pred.describe(), kind=RefineErrorKind.NOT)
        return None

    if isinstance(pred, And):
        failed = [e for e in (validate(pred.left, value, cwd=cwd), validate(pred.right, value, cwd=cwd)) if e]
        if failed:
            return RefineError(predicate=pred.describe(), kind=RefineErrorKind.AND, children=tuple(failed))
        return None

    if isinstance(pred, Or):
        left = validate(pred.left, value, cwd=cwd)
        if left is None:
            return None
        right = validate(pred.right, value, cwd=cwd)
        if right is None:
            return None
        return RefineError(predicate=pred.describe(), kind=RefineErrorKind.OR, children=(left, right))

    if isinstance(pred, Xor):
        left = validate(pred.left, value, cwd=cwd)
        right = validate(pred.right, value, cwd=cwd)
        if (left is None) != (right is None):
            return None
        children = () if left is None else (left, right)
        return RefineError(predicate=pred.describe(), kind=RefineErrorKind.XOR, children=children)

    # -- generic ----------------------------------------------------------
    if isinstance(pred, EqualTo):
        return None if value == pred.value else _fail(pred, f"Value does not equal {pred.value!r}")
    if isinstance(pred, NotEqualTo):
        return None if value != pred.value else _fail(pred, f"Value does equal {pred.value!r}")
    if isinstance(pred, OneOf):
        return None if value in pred.values else _fail(pred, f"Value {value!r} is not one of {list(pred.values)!r}")

    # -- strings ----------------------------------------------------------
    if isinstance(pred, Regex):
        if not isinstance(value, str):
            return _fail(pred, f"Value is not a string: {type(value).__name__}")
        if re.fullmatch(pred.pattern, value) is None:
            return _fail(pred, f"Value {value!r} does not match /{pred.pattern}/")
        return None
    if isinstance(pred, LowerCase):
        if not isinstance(value, str):
            return _fail(pred, f"Value is not a string: {type(value).__name__}")
        return None if value == value.lower() else _fail(pred, f"Value {value!r} is not lower case")
    if isinstance(pred, UpperCase):
        if not isinstance(value, str):
            return _fail(pred, f"Value is not a string: {type(value).__name__}")
        return None if value == value.upper() else _fail(pred, f"Value {value!r} is not upper case")

    if isinstance(pred, (SizeLessThan, SizeGreaterThan, SizeEqualTo)):
        return _sized(pred, value)
    if isinstance(pred, (Ascending, Descending)):
        return _ordered(pred, value)

    # -- numbers ----------------------------------------------------------
    if isinstance(pred, NumericRange):
        if not _is_number(value):
            return _fail(pred, f"Value is not a number: {type(value).__name__}")
        return None if pred.contains(value) else _fail(pred, f"Value {value} is outside {pred.describe()[13:]}")
    if isinstance(pred, (DivisibleBy, Odd, Even)):
        if not isinstance(value, int) or isinstance(value, bool):
            return _fail(pred, f"Value is not an integer: {type(value).__name__}")
        if isinstance(pred, DivisibleBy):
            return None if value % pred.n == 0 else _fail(pred, f"Value is not divisible by {pred.n}")
        if isinstance(pred, Odd):
            return None if value % 2 == 1 else _fail(pred, "Value is not an odd number")
        return None if value % 2 == 0 else _fail(pred, "Value is not an even number")

    # -- paths ------------------------------------------------------------
    if isinstance(pred, PathExists):
        if not isinstance(value, str):
            return _fail(pred, f"Value is not a path string: {type(value).__name__}")
        full = _resolve(value, cwd)
        if pred.kind == "file" and not os.path.isfile(full):
            return _fail(pred, f"Path {value!r} is not an existing file")
        if pred.kind == "dir" and not os.path.isdir(full):
            return _fail(pred, f"Path {value!r} is not an existing directory")
        if pred.kind == "any" and not os.path.lexists(full):
            return _fail(pred, f"Path {value!r} does not exist")
        return None
    if isinstance(pred, InDir):
        if not isinstance(value, str):
            return _fail(pred, f"Value is not a path string: {type(value).__name__}")
        root = _resolve(pred.root, cwd)
        full = _resolve(value, cwd)
        if full != root and os.path.commonpath([root, full]) == root:
            return None
        return _fail(pred, f"Path {value!r} is not inside {pred.root!r}")

    # Unknown predicate -> fail closed
    return _fail(pred, f"Unsupported predicate: {pred.__class__.__name__}")


def _sized(pred: Predicate, value: Any) -> Optional[RefineError]:
    try:
        size = len(value)
    except TypeError:
        return _fail(pred, f"Value has no size: {type(value).__name__}")
    if isinstance(pred, SizeLessThan):
        ok, desc = size < pred.n, "less than"
    elif isinstance(pred, SizeGreaterThan):
        ok, desc = size > pred.n, "greater than"
    else:
        ok, desc = size == pred.n, "equal to"
    if ok:
        return None
    return _fail(pred, f"Size of value is not {desc} {pred.n}. Size is: {size}")


def _ordered(pred: Predicate, value: Any) -> Optional[RefineError]:
    if not isinstance(value, (str, list, tuple)):
        return _fail(pred, f"Value is not a sequence: {type(value).__name__}")
    pairs = list(zip(value, value[1:]))
    try:
        if isinstance(pred, Ascending):
            ok, desc = all(a <= b for a, b in pairs), "ascending"
        else:
            ok, desc = all(a >= b for a, b in pairs), "descending"
    except TypeError:
        return _fail(pred, "Elements of the value are not comparable")
    return None if ok else _fail(pred, f"Value is not in {desc} order")


def refine(pred: Predicate, value: Any, *, cwd: Optional[str] = None) -> Any:
    """Return `value` unchanged if it satisfies `pred`, else raise RefineFailure."""
    err = validate(pred, value, cwd=cwd)
    if err is not None:
        raise RefineFailure(err)
    return value


# ============================================================================
# RENDERING
# ============================================================================

def display_refine_error(err: RefineError) -> str:
    """Render a RefineError as a box-drawing tree, one line per node."""
    return "\n".join(_show_one(err, leader="", tie="", arm=""))


def _show_one(err: RefineError, leader: str, tie: str, arm: str) -> List[str]:
    head = leader + arm + tie
    if err.kind == RefineErrorKind.OTHER:
        return [f"{head}The predicate ({err.predicate}) failed with the message: {err.message}"]
    if err.kind == RefineErrorKind.NOT:
        return [f"{head}The predicate ({err.predicate}) does not hold"]
    if err.kind == RefineErrorKind.XOR and not err.children:
        return [f"{head}The predicate ({err.predicate}) does not hold, because both predicates were satisfied"]

    extension = "" if arm == "" else ("    " if arm == "└" else "│   ")
    lines = [f"{head}{err.predicate}"]
    arms = ["├"] * (len(err.children) - 1) + ["└"]
    for child, child_arm in zip(err.children, arms):
        lines.extend(_show_one(child, leader + extension, "── ", child_arm))
    return lines
