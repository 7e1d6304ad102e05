"""
Regex Parser - Pattern Text to AST

Recursive descent parser for the Python `re` syntax subset the compiler
understands. Constructs that are not regular are still parsed (into
Backreference / Lookaround / WordBoundary nodes) so that rejection happens in
exactly one place, the compiler.

Grammar (simplified):
    alternation ::= concat ("|" concat)*
    concat      ::= quantified*
    quantified  ::= atom [("*" | "+" | "?" | "{m,n}") ["?"]]
    atom        ::= literal | "." | class | group | escape | anchor
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import List, Optional, Tuple

from .ast import (
    RegexNode, Empty, Literal, ClassRange, CharClass, AnyChar, Anchor, AnchorKind,
    Concat, Alternation, Group, Star, Plus, Opt, Repeat,
    Backreference, Lookaround, LookaroundKind, WordBoundary,
)
from ..errors import PatternSyntaxError, UnsupportedPattern


MAX_CODEPOINT = 0x10FFFF

_DIGIT = ((("0", "9")),)
_WORD = (("0", "9"), ("A", "Z"), ("_", "_"), ("a", "z"))
_SPACE = (("\t", "\r"), (" ", " "))

_SHORTHANDS = {
    "d": (_DIGIT, False),
    "D": (_DIGIT, True),
    "w": (_WORD, False),
    "W": (_WORD, True),
    "s": (_SPACE, False),
    "S": (_SPACE, True),
}

_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "f": "\f",
    "v": "\v",
    "a": "\a",
}

_QUANT_RE = re.compile(r"\{(\d*)(,(\d*))?\}")


def complement_ranges(ranges: Tuple[Tuple[str, str], ...]) -> Tuple[Tuple[str, str], ...]:
    """Complement a set of inclusive code-point ranges over the full Unicode space."""
    spans = sorted((ord(lo), ord(hi)) for lo, hi in ranges)
    out: List[Tuple[str, str]] = []
    cursor = 0
    for lo, hi in spans:
        if lo > cursor:
            out.append((chr(cursor), chr(lo - 1)))
        cursor = max(cursor, hi + 1)
    if cursor <= MAX_CODEPOINT:
        out.append((chr(cursor), chr(MAX_CODEPOINT)))
    return tuple(out)


class RegexParser:
    """
    Parses one pattern string into a RegexNode tree.

    Usage:
        node = RegexParser().parse("[a-z]{3}")
    """

    def __init__(self):
        self.text = ""
        self.position = 0
        self.group_count = 0

    def parse(self, text: str) -> RegexNode:
        """
        Parse pattern text into a RegexNode.

        Raises:
            PatternSyntaxError: malformed pattern
            UnsupportedPattern: constructs that have no AST node (inline flags, atomic groups)
        """
        self.text = text
        self.position = 0
        self.group_count = 0
        try:
            node = self._parse_alternation()
        except RecursionError:
            raise PatternSyntaxError(
                "Pattern too complex: maximum nesting depth exceeded", text, self.position
            )
        if self.position < len(self.text):
            # only an unbalanced ')' can stop the top-level alternation early
            self._error("unbalanced parenthesis")
        return node

    # ========================================================================
    # UTILITY METHODS
    # ========================================================================

    def _current(self) -> Optional[str]:
        return self.text[self.position] if self.position < len(self.text) else None

    def _peek(self, offset: int = 1) -> Optional[str]:
        pos = self.position + offset
        return self.text[pos] if pos < len(self.text) else None

    def _advance(self, count: int = 1):
        self.position += count

    def _startswith(self, prefix: str) -> bool:
        return self.text.startswith(prefix, self.position)

    def _expect(self, char: str):
        if self._current() != char:
            got = self._current()
            self._error(f"expected '{char}', got {'end of pattern' if got is None else repr(got)}")
        self._advance()

    def _error(self, message: str, position: Optional[int] = None):
        raise PatternSyntaxError(message, self.text, self.position if position is None else position)

    def _unsupported(self, message: str, position: Optional[int] = None):
        raise UnsupportedPattern(message, self.text, self.position if position is None else position)

    # ========================================================================
    # PARSING METHODS
    # ========================================================================

    def _parse_alternation(self) -> RegexNode:
        start = self.position
        options = [self._parse_concat()]
        while self._current() == "|":
            self._advance()
            options.append(self._parse_concat())
        if len(options) == 1:
            return options[0]
        return Alternation(tuple(options), position=start)

    def _parse_concat(self) -> RegexNode:
        start = self.position
        parts: List[RegexNode] = []
        while self._current() is not None and self._current() not in "|)":
            parts.append(self._parse_quantified())
        if not parts:
            return Empty(position=start)
        if len(parts) == 1:
            return parts[0]
        return Concat(tuple(parts), position=start)

    def _parse_quantified(self) -> RegexNode:
        start = self.position
        atom = self._parse_atom()
        quantified = self._parse_quantifier(atom, start)
        if quantified is None:
            return atom
        if isinstance(atom, (Anchor, WordBoundary)):
            self._error("nothing to repeat", start)
        if self._current() == "?":
            # lazy quantifier: same language
            self._advance()
        elif self._current() == "+":
            self._unsupported("possessive quantifiers are not supported")
        if self._current() in ("*", "+", "?") or self._quantifier_ahead():
            self._error("multiple repeat")
        return quantified

    def _quantifier_ahead(self) -> bool:
        if self._current() != "{":
            return False
        m = _QUANT_RE.match(self.text, self.position)
        return bool(m and (m.group(1) or m.group(3)))

    def _parse_quantifier(self, atom: RegexNode, start: int) -> Optional[RegexNode]:
        c = self._current()
        if c == "*":
            self._advance()
            return Star(atom, position=start)
        if c == "+":
            self._advance()
            return Plus(atom, position=start)
        if c == "?":
            self._advance()
            return Opt(atom, position=start)
        if c == "{":
            m = _QUANT_RE.match(self.text, self.position)
            if not m or not (m.group(1) or m.group(3)):
                # Python treats a brace that is not a valid quantifier as a literal
                return None
            low = int(m.group(1)) if m.group(1) else 0
            if m.group(2) is None:
                high: Optional[int] = low
            else:
                high = int(m.group(3)) if m.group(3) else None
            if high is not None and high < low:
                self._error("min repeat greater than max repeat")
            self._advance(len(m.group(0)))
            return Repeat(atom, low, high, position=start)
        return None

    def _parse_atom(self) -> RegexNode:
        start = self.position
        c = self._current()

        if c in ("*", "+", "?"):
            self._error("nothing to repeat")
        if c == "(":
            return self._parse_group()
        if c == "[":
            return self._parse_class()
        if c == ".":
            self._advance()
            return AnyChar(position=start)
        if c == "^":
            self._advance()
            return Anchor(AnchorKind.START, position=start)
        if c == "$":
            self._advance()
            return Anchor(AnchorKind.END, position=start)
        if c == "\\":
            return self._parse_escape()
        if c == "{" and self._quantifier_ahead():
            self._error("nothing to repeat")

        self._advance()
        return Literal(c, position=start)

    def _parse_group(self) -> RegexNode:
        start = self.position
        self._expect("(")

        if self._startswith("?"):
            if self._startswith("?:"):
                self._advance(2)
                node = self._parse_alternation()
                self._expect(")")
                return Group(node, capturing=False, position=start)

            if self._startswith("?P<"):
                self._advance(3)
                end = self.text.find(">", self.position)
                if end == -1:
                    self._error("missing >, unterminated name")
                name = self.text[self.position:end]
                if not name.isidentifier():
                    self._error(f"bad character in group name {name!r}")
                self._advance(len(name) + 1)
                self.group_count += 1
                node = self._parse_alternation()
                self._expect(")")
                return Group(node, name=name, position=start)

            if self._startswith("?P="):
                self._advance(3)
                end = self.text.find(")", self.position)
                if end == -1:
                    self._error("missing ), unterminated name")
                name = self.text[self.position:end]
                self._advance(len(name) + 1)
                return Backreference(name, position=start)

            for kind in (LookaroundKind.NEG_BEHIND, LookaroundKind.BEHIND,
                         LookaroundKind.NEG_AHEAD, LookaroundKind.AHEAD):
                if self._startswith(kind.value):
                    self._advance(len(kind.value))
                    node = self._parse_alternation()
                    self._expect(")")
                    return Lookaround(kind, node, position=start)

            if self._startswith("?#"):
                end = self.text.find(")", self.position)
                if end == -1:
                    self._error("missing ), unterminated comment")
                self.position = end + 1
                return Empty(position=start)

            if self._startswith("?>"):
                self._unsupported("atomic groups are not supported", start)
            self._unsupported("inline flags and conditional groups are not supported", start)

        self.group_count += 1
        node = self._parse_alternation()
        self._expect(")")
        return Group(node, position=start)

    def _parse_escape(self) -> RegexNode:
        start = self.position
        self._advance()  # backslash
        c = self._current()
        if c is None:
            self._error("bad escape (end of pattern)", start)
        self._advance()

        if c in _SHORTHANDS:
            ranges, negated = _SHORTHANDS[c]
            return CharClass(tuple(ClassRange(lo, hi) for lo, hi in ranges), negated=negated, position=start)
        if c == "A":
            return Anchor(AnchorKind.START, position=start)
        if c == "Z":
            return Anchor(AnchorKind.END, position=start)
        if c == "b":
            return WordBoundary(position=start)
        if c == "B":
            return WordBoundary(negated=True, position=start)
        if c.isdigit() and c != "0":
            digits = c
            while self._current() is not None and self._current().isdigit() and len(digits) < 2:
                digits += self._current()
                self._advance()
            return Backreference(digits, position=start)
        return Literal(self._escaped_char(c, start), position=start)

    def _escaped_char(self, c: str, start: int) -> str:
        """Resolve a single-character escape (shared by atoms and classes)."""
        if c in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[c]
        if c == "0":
            digits = ""
            while self._current() is not None and self._current() in "01234567" and len(digits) < 2:
                digits += self._current()
                self._advance()
            return chr(int(digits or "0", 8))
        if c in ("x", "u", "U"):
            width = {"x": 2, "u": 4, "U": 8}[c]
            hexdigits = self.text[self.position:self.position + width]
            if len(hexdigits) != width or not all(h in "0123456789abcdefABCDEF" for h in hexdigits):
                self._error(f"incomplete escape \\{c}{hexdigits}", start)
            self._advance(width)
            code = int(hexdigits, 16)
            if code > MAX_CODEPOINT:
                self._error(f"bad escape \\{c}{hexdigits}", start)
            return chr(code)
        if c.isalnum():
            self._error(f"bad escape \\{c}", start)
        return c

    def _parse_class(self) -> RegexNode:
        start = self.position
        self._expect("[")
        negated = False
        if self._current() == "^":
            negated = True
            self._advance()

        items: List[ClassRange] = []
        first = True
        while True:
            c = self._current()
            if c is None:
                self._error("unterminated character set", start)
            if c == "]" and not first:
                self._advance()
                break
            first = False

            item_start = self.position
            if c == "\\":
                self._advance()
                e = self._current()
                if e is None:
                    self._error("bad escape (end of pattern)", item_start)
                self._advance()
                if e in _SHORTHANDS:
                    ranges, neg = _SHORTHANDS[e]
                    if neg:
                        ranges = complement_ranges(ranges)
                    items.extend(ClassRange(lo, hi, position=item_start) for lo, hi in ranges)
                    continue
                lo = "\b" if e == "b" else self._escaped_char(e, item_start)
            else:
                self._advance()
                lo = c

            if self._current() == "-" and self._peek() not in (None, "]"):
                self._advance()
                h = self._current()
                self._advance()
                if h == "\\":
                    e = self._current()
                    if e is None:
                        self._error("bad escape (end of pattern)")
                    self._advance()
                    if e in _SHORTHANDS:
                        self._error("bad character range", item_start)
                    hi = "\b" if e == "b" else self._escaped_char(e, item_start)
                else:
                    hi = h
                if ord(hi) < ord(lo):
                    self._error(f"bad character range {lo}-{hi}", item_start)
                items.append(ClassRange(lo, hi, position=item_start))
            else:
                items.append(ClassRange(lo, lo, position=item_start))

        return CharClass(tuple(items), negated=negated, position=start)


@lru_cache(maxsize=512)
def parse_regex(pattern: str) -> RegexNode:
    """Parse (and memoize) a pattern string."""
    return RegexParser().parse(pattern)
