"""
Regex Compiler - AST to Symbolic Regex

Compiles a regex AST into a term of Z3's regular-expression algebra
(`ReSort(StringSort())`) that the solver adapter can intersect with other
string constraints.

Architecture:
1. Translation: recursive walk over AST nodes (fail-closed on anything non-regular).
2. Growth control: bounded repetition is unrolled explicitly and the total
   unrolled size is capped (PatternTooLarge).
3. Alphabet: negated classes and '.' are intersected with a configurable
   printable alphabet so every model is a usable argv string.

Candidates are always matched in full (whole-string semantics), so a leading
'^' and a trailing '$' compile to epsilon; anchors anywhere else are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import z3

from .ast import (
    RegexNode, Empty, Literal, ClassRange, CharClass, AnyChar, Anchor, AnchorKind,
    Concat, Alternation, Group, Star, Plus, Opt, Repeat,
    Backreference, Lookaround, WordBoundary,
)
from .parser import parse_regex
from ..errors import PatternTooLarge, UnsupportedPattern


DEFAULT_MAX_UNROLL = 256
DEFAULT_ALPHABET: Tuple[str, str] = (" ", "~")

RE_SORT = z3.ReSort(z3.StringSort())


def char_val(c: str) -> z3.SeqRef:
    """A one-character string literal, escaped by code point so z3 never reinterprets it."""
    return z3.StringVal("\\u{%x}" % ord(c))


def _concat(terms: List[z3.ReRef]) -> z3.ReRef:
    if not terms:
        return z3.Re(z3.StringVal(""))
    if len(terms) == 1:
        return terms[0]
    return z3.Concat(*terms)


def _union(terms: List[z3.ReRef]) -> z3.ReRef:
    if not terms:
        return z3.Empty(RE_SORT)
    if len(terms) == 1:
        return terms[0]
    return z3.Union(*terms)


def _is_zero_width(node: RegexNode) -> bool:
    return isinstance(node, (Anchor, Empty))


@dataclass(frozen=True)
class SymbolicRegex:
    """Compiled form of a pattern, consumed only by the solver adapter."""
    pattern: str
    term: z3.ReRef
    size: int

    def __repr__(self):
        return f"SymbolicRegex({self.pattern!r}, size={self.size})"


class RegexCompiler:
    """
    AST -> SymbolicRegex.

    max_unroll:
        upper bound on the unrolled size of the pattern (sum of atom copies).
    alphabet:
        inclusive (lo, hi) character range used for '.' and negated classes.
    """

    def __init__(self, max_unroll: int = DEFAULT_MAX_UNROLL, alphabet: Tuple[str, str] = DEFAULT_ALPHABET):
        if max_unroll < 1:
            raise ValueError("max_unroll must be >= 1")
        self.max_unroll = max_unroll
        self.alphabet = alphabet
        self._alphabet_term = z3.Range(char_val(alphabet[0]), char_val(alphabet[1]))
        self._cache: Dict[str, SymbolicRegex] = {}
        self._pattern = ""

    def compile_pattern(self, pattern: str) -> SymbolicRegex:
        """Parse + compile pattern text (memoized per compiler)."""
        cached = self._cache.get(pattern)
        if cached is not None:
            return cached
        compiled = self.compile(parse_regex(pattern), pattern)
        self._cache[pattern] = compiled
        return compiled

    def compile(self, node: RegexNode, pattern: str = "") -> SymbolicRegex:
        self._pattern = pattern
        term, size = self._to_term(node, at_start=True, at_end=True)
        if size > self.max_unroll:
            raise PatternTooLarge(
                f"Pattern unrolls to {size} terms (max_unroll={self.max_unroll})", pattern
            )
        return SymbolicRegex(pattern=pattern, term=term, size=size)

    # ========================================================================
    # HELPER: NODE TRANSLATION
    # ========================================================================

    def _to_term(self, node: RegexNode, at_start: bool, at_end: bool) -> Tuple[z3.ReRef, int]:
        # 1. Atoms
        if isinstance(node, Empty):
            return z3.Re(z3.StringVal("")), 0
        if isinstance(node, Literal):
            return z3.Re(char_val(node.char)), 1
        if isinstance(node, CharClass):
            return self._class_term(node), 1
        if isinstance(node, AnyChar):
            newline = z3.Re(char_val("\n"))
            return z3.Intersect(self._alphabet_term, z3.Complement(newline)), 1

        # 2. Sequencing
        if isinstance(node, Concat):
            return self._sequence_term(node.parts, at_start, at_end)
        if isinstance(node, Alternation):
            terms, size = [], 0
            for option in node.options:
                t, s = self._to_term(option, at_start, at_end)
                terms.append(t)
                size += s
            return _union(terms), size
        if isinstance(node, Group):
            return self._to_term(node.node, at_start, at_end)

        # 3. Quantifiers (anchors inside a repeated body are never at a boundary)
        if isinstance(node, Star):
            t, s = self._to_term(node.node, False, False)
            return z3.Star(t), s
        if isinstance(node, Plus):
            t, s = self._to_term(node.node, False, False)
            return z3.Plus(t), s
        if isinstance(node, Opt):
            t, s = self._to_term(node.node, False, False)
            return z3.Option(t), s
        if isinstance(node, Repeat):
            return self._repeat_term(node)

        # 4. Anchors: epsilon at the matching boundary, rejected anywhere else
        if isinstance(node, Anchor):
            if (node.kind == AnchorKind.START and at_start) or (node.kind == AnchorKind.END and at_end):
                return z3.Re(z3.StringVal("")), 0
            self._reject(f"Anchor '{node.kind.value}' is only supported at the pattern boundary", node)

        # 5. Non-regular constructs -> fail closed
        if isinstance(node, Backreference):
            self._reject(f"Backreference to group {node.ref} is not regular", node)
        if isinstance(node, Lookaround):
            self._reject(f"Lookaround ({node.kind.value}...) is not supported", node)
        if isinstance(node, WordBoundary):
            self._reject("Word boundaries are not supported", node)

        self._reject(f"Unsupported regex node: {node.__class__.__name__}", node)

    def _sequence_term(self, parts: Tuple[RegexNode, ...], at_start: bool, at_end: bool) -> Tuple[z3.ReRef, int]:
        terms: List[z3.ReRef] = []
        size = 0
        for i, part in enumerate(parts):
            t, s = self._to_term(
                part,
                at_start and all(_is_zero_width(p) for p in parts[:i]),
                at_end and all(_is_zero_width(p) for p in parts[i + 1:]),
            )
            if s or not isinstance(part, (Anchor, Empty)):
                terms.append(t)
            size += s
        return _concat(terms), size

    def _repeat_term(self, node: Repeat) -> Tuple[z3.ReRef, int]:
        body, body_size = self._to_term(node.node, False, False)
        copies = node.max if node.max is not None else node.min + 1
        size = copies * max(body_size, 1)
        if size > self.max_unroll:
            raise PatternTooLarge(
                f"Repetition {{{node.min},{'' if node.max is None else node.max}}} unrolls to {size} terms "
                f"(max_unroll={self.max_unroll})",
                self._pattern,
                node.position,
            )

        mandatory = [body] * node.min
        if node.max is None:
            return _concat(mandatory + [z3.Star(body)]), size
        optional = [z3.Option(body)] * (node.max - node.min)
        return _concat(mandatory + optional), size

    def _class_term(self, node: CharClass) -> z3.ReRef:
        ranges = [z3.Range(char_val(r.lo), char_val(r.hi)) for r in node.items]
        members = _union(ranges)
        if node.negated:
            return z3.Intersect(self._alphabet_term, z3.Complement(members))
        if any(ord(r.hi) > 0x7F for r in node.items):
            # complemented shorthands (\D, \W, \S) inside a class
            return z3.Intersect(self._alphabet_term, members)
        return members

    def _reject(self, message: str, node: RegexNode):
        raise UnsupportedPattern(message, self._pattern, node.position)
