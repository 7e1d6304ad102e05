"""
Predicate -> Z3 encoding

Translates predicate trees into Z3 boolean terms over a single String or Int
symbol. Regex leaves go through the RegexCompiler; path predicates have no
solver meaning and fail closed with NotEncodable.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Optional, Tuple

import z3

from ...predicates import (
    Predicate, Always, Regex, PathExists, InDir, LowerCase, UpperCase, NumericRange,
    EqualTo, NotEqualTo, OneOf, DivisibleBy, Odd, Even,
    SizeLessThan, SizeGreaterThan, SizeEqualTo, Not, And, Or, Xor,
)
from ...regex import RegexCompiler
from ...regex.compiler import RE_SORT, char_val


class ValueSort(Enum):
    STRING = "string"
    INT = "int"


class NotEncodable(Exception):
    """Raised when a predicate cannot be expressed as a Z3 constraint."""
    pass


def string_val(s: str) -> z3.SeqRef:
    """Code-point escaped string literal."""
    if not s:
        return z3.StringVal("")
    if len(s) == 1:
        return char_val(s)
    return z3.Concat(*[char_val(c) for c in s])


def _is_int(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool)


class PredicateEncoder:
    def __init__(self, compiler: Optional[RegexCompiler] = None):
        self.compiler = compiler or RegexCompiler()

    # -----------------------------
    # Public API
    # -----------------------------
    def symbol(self, sort: ValueSort, name: str = "v") -> z3.ExprRef:
        return z3.String(name) if sort == ValueSort.STRING else z3.Int(name)

    def domain(self, var: z3.ExprRef) -> z3.BoolRef:
        """Constraint every sampled value obeys: strings end up in argv, which cannot carry NUL."""
        if z3.is_string(var):
            return z3.Not(z3.Contains(var, char_val("\x00")))
        return z3.BoolVal(True)

    def is_encodable(self, pred: Predicate, sort: ValueSort) -> bool:
        try:
            self.encode(pred, self.symbol(sort))
            return True
        except NotEncodable:
            return False

    def encode(self, pred: Predicate, var: z3.ExprRef) -> z3.BoolRef:
        """Encode `pred` over `var`. Raises NotEncodable / PatternCompileError."""
        is_str = z3.is_string(var)

        if isinstance(pred, Always):
            return z3.BoolVal(True)

        if isinstance(pred, Not):
            return z3.Not(self.encode(pred.inner, var))
        if isinstance(pred, And):
            return z3.And(self.encode(pred.left, var), self.encode(pred.right, var))
        if isinstance(pred, Or):
            return z3.Or(self.encode(pred.left, var), self.encode(pred.right, var))
        if isinstance(pred, Xor):
            return z3.Xor(self.encode(pred.left, var), self.encode(pred.right, var))

        if isinstance(pred, EqualTo):
            lit = self.literal(pred.value, var)
            return z3.BoolVal(False) if lit is None else var == lit
        if isinstance(pred, NotEqualTo):
            lit = self.literal(pred.value, var)
            return z3.BoolVal(True) if lit is None else var != lit
        if isinstance(pred, OneOf):
            lits = [lit for lit in (self.literal(v, var) for v in pred.values) if lit is not None]
            if not lits:
                return z3.BoolVal(False)
            return z3.Or(*[var == lit for lit in lits])

        if isinstance(pred, (PathExists, InDir)):
            raise NotEncodable(f"{pred.describe()} depends on the filesystem and has no solver encoding")

        if is_str:
            return self._encode_string(pred, var)
        return self._encode_int(pred, var)

    def literal(self, value: Any, var: z3.ExprRef) -> Optional[z3.ExprRef]:
        """Z3 literal of the same sort as `var`, or None when the value cannot inhabit it."""
        if z3.is_string(var):
            return string_val(value) if isinstance(value, str) else None
        return z3.IntVal(value) if _is_int(value) else None

    def decode(self, model: z3.ModelRef, var: z3.ExprRef) -> Any:
        """Read the concrete value of `var` from a model."""
        if not z3.is_string(var):
            return model.eval(var, model_completion=True).as_long()
        # read code points one by one so no escape convention is involved
        length = model.eval(z3.Length(var), model_completion=True).as_long()
        codes = [
            model.eval(z3.StrToCode(z3.SubString(var, i, 1)), model_completion=True).as_long()
            for i in range(length)
        ]
        return "".join(chr(c) for c in codes)

    def int_bounds(self, pred: Predicate) -> Tuple[Optional[int], Optional[int]]:
        """Tightest integer bounds implied by top-level NumericRange conjuncts."""
        low: Optional[int] = None
        high: Optional[int] = None
        stack = [pred]
        while stack:
            p = stack.pop()
            if isinstance(p, And):
                stack.extend((p.left, p.right))
            elif isinstance(p, NumericRange):
                if p.low is not None:
                    lo = math.ceil(p.low) if p.low_inclusive else math.floor(p.low) + 1
                    low = lo if low is None else max(low, lo)
                if p.high is not None:
                    hi = math.floor(p.high) if p.high_inclusive else math.ceil(p.high) - 1
                    high = hi if high is None else min(high, hi)
        return low, high

    # -----------------------------
    # Sort-specific leaves
    # -----------------------------
    def _encode_string(self, pred: Predicate, var: z3.ExprRef) -> z3.BoolRef:
        if isinstance(pred, Regex):
            return z3.InRe(var, self.compiler.compile_pattern(pred.pattern).term)
        if isinstance(pred, LowerCase):
            return z3.Not(z3.InRe(var, self._containing("A", "Z")))
        if isinstance(pred, UpperCase):
            return z3.Not(z3.InRe(var, self._containing("a", "z")))
        if isinstance(pred, SizeLessThan):
            return z3.Length(var) < pred.n
        if isinstance(pred, SizeGreaterThan):
            return z3.Length(var) > pred.n
        if isinstance(pred, SizeEqualTo):
            return z3.Length(var) == pred.n
        if isinstance(pred, (NumericRange, DivisibleBy, Odd, Even)):
            # numeric predicate over a string value can never hold
            return z3.BoolVal(False)
        raise NotEncodable(f"Unsupported string predicate: {pred.describe()}")

    def _encode_int(self, pred: Predicate, var: z3.ExprRef) -> z3.BoolRef:
        if isinstance(pred, NumericRange):
            terms = []
            if pred.low is not None:
                terms.append(var >= pred.low if pred.low_inclusive else var > pred.low)
            if pred.high is not None:
                terms.append(var <= pred.high if pred.high_inclusive else var < pred.high)
            return z3.And(*terms) if terms else z3.BoolVal(True)
        if isinstance(pred, DivisibleBy):
            return var % abs(pred.n) == 0
        if isinstance(pred, Odd):
            return var % 2 == 1
        if isinstance(pred, Even):
            return var % 2 == 0
        if isinstance(pred, (Regex, LowerCase, UpperCase, SizeLessThan, SizeGreaterThan, SizeEqualTo)):
            return z3.BoolVal(False)
        raise NotEncodable(f"Unsupported integer predicate: {pred.describe()}")

    def _containing(self, lo: str, hi: str) -> z3.ReRef:
        full = z3.Full(RE_SORT)
        return z3.Concat(full, z3.Range(char_val(lo), char_val(hi)), full)
