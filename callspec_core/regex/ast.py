"""
Abstract Syntax Tree (AST) for regular-expression patterns

Defines the node types produced by the pattern parser and consumed by the
regex compiler. Non-regular constructs (backreferences, lookarounds, word
boundaries) are represented explicitly so the compiler can reject them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple


# ============================================================================
# BASE NODE
# ============================================================================

@dataclass(frozen=True, kw_only=True)
class RegexNode:
    """
    Base class for all regex AST nodes.

    Attributes:
        position: Column (0-based) in the pattern text, for error reporting
    """
    position: Optional[int] = None


class AnchorKind(Enum):
    START = "^"
    END = "$"


class LookaroundKind(Enum):
    AHEAD = "?="
    NEG_AHEAD = "?!"
    BEHIND = "?<="
    NEG_BEHIND = "?<!"


# ============================================================================
# ATOMS
# ============================================================================

@dataclass(frozen=True)
class Empty(RegexNode):
    """Matches the empty string."""

    def __repr__(self):
        return "Empty()"


@dataclass(frozen=True)
class Literal(RegexNode):
    """A single literal character."""
    char: str

    def __repr__(self):
        return f"Literal({self.char!r})"


@dataclass(frozen=True)
class ClassRange(RegexNode):
    """Inclusive character range inside a class; lo == hi for a singleton."""
    lo: str
    hi: str

    def __repr__(self):
        return f"{self.lo!r}" if self.lo == self.hi else f"{self.lo!r}-{self.hi!r}"


@dataclass(frozen=True)
class CharClass(RegexNode):
    """Bracket expression or shorthand class (\\d, \\w, \\s)."""
    items: Tuple[ClassRange, ...]
    negated: bool = False

    def __repr__(self):
        inner = ", ".join(repr(i) for i in self.items)
        return f"CharClass({'^' if self.negated else ''}{inner})"


@dataclass(frozen=True)
class AnyChar(RegexNode):
    """The '.' metacharacter (any character except newline)."""

    def __repr__(self):
        return "AnyChar()"


@dataclass(frozen=True)
class Anchor(RegexNode):
    kind: AnchorKind

    def __repr__(self):
        return f"Anchor({self.kind.value})"


# ============================================================================
# COMPOSITES
# ============================================================================

@dataclass(frozen=True)
class Concat(RegexNode):
    parts: Tuple[RegexNode, ...]

    def __repr__(self):
        return f"Concat({', '.join(repr(p) for p in self.parts)})"


@dataclass(frozen=True)
class Alternation(RegexNode):
    options: Tuple[RegexNode, ...]

    def __repr__(self):
        return f"Alternation({' | '.join(repr(o) for o in self.options)})"


@dataclass(frozen=True)
class Group(RegexNode):
    """Capturing or non-capturing group; transparent to the language."""
    node: RegexNode
    name: Optional[str] = None
    capturing: bool = True

    def __repr__(self):
        return f"Group({self.node!r})"


@dataclass(frozen=True)
class Star(RegexNode):
    node: RegexNode

    def __repr__(self):
        return f"Star({self.node!r})"


@dataclass(frozen=True)
class Plus(RegexNode):
    node: RegexNode

    def __repr__(self):
        return f"Plus({self.node!r})"


@dataclass(frozen=True)
class Opt(RegexNode):
    """The '?' quantifier."""
    node: RegexNode

    def __repr__(self):
        return f"Opt({self.node!r})"


@dataclass(frozen=True)
class Repeat(RegexNode):
    """Bounded repetition {min,max}; max None means unbounded ({m,})."""
    node: RegexNode
    min: int
    max: Optional[int]

    def __repr__(self):
        hi = "" if self.max is None else str(self.max)
        return f"Repeat({self.node!r}, {{{self.min},{hi}}})"


# ============================================================================
# NON-REGULAR CONSTRUCTS (rejected at compile time)
# ============================================================================

@dataclass(frozen=True)
class Backreference(RegexNode):
    ref: str

    def __repr__(self):
        return f"Backreference({self.ref})"


@dataclass(frozen=True)
class Lookaround(RegexNode):
    kind: LookaroundKind
    node: RegexNode

    def __repr__(self):
        return f"Lookaround({self.kind.value} {self.node!r})"


@dataclass(frozen=True)
class WordBoundary(RegexNode):
    negated: bool = False

    def __repr__(self):
        return "WordBoundary(\\B)" if self.negated else "WordBoundary(\\b)"
