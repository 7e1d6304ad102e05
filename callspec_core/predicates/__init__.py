from __future__ import annotations

from .model import (
    Predicate, Always, Regex, PathExists, InDir, LowerCase, UpperCase, NumericRange,
    EqualTo, NotEqualTo, OneOf, DivisibleBy, Odd, Even,
    SizeLessThan, SizeGreaterThan, SizeEqualTo, Ascending, Descending, Not, And, Or, Xor,
    From, To, FromTo, LessThan, GreaterThan, Positive, NonNegative, NonEmpty, EmptySize,
    all_of, leaves,
)
from .validate import RefineError, RefineErrorKind, RefineFailure, validate, refine, display_refine_error
from .weaken import weakens_to, weaken, and_left, and_right, left_or, right_or

__all__ = [
    "Predicate", "Always", "Regex", "PathExists", "InDir", "LowerCase", "UpperCase", "NumericRange",
    "EqualTo", "NotEqualTo", "OneOf", "DivisibleBy", "Odd", "Even",
    "SizeLessThan", "SizeGreaterThan", "SizeEqualTo", "Ascending", "Descending", "Not", "And", "Or", "Xor",
    "From", "To", "FromTo", "LessThan", "GreaterThan", "Positive", "NonNegative", "NonEmpty", "EmptySize",
    "all_of", "leaves",
    "RefineError", "RefineErrorKind", "RefineFailure", "validate", "refine", "display_refine_error",
    "weakens_to", "weaken", "and_left", "and_right", "left_or", "right_or",
]
