from __future__ import annotations

from .ast import RegexNode
from .parser import RegexParser, parse_regex
from .compiler import RegexCompiler, SymbolicRegex, DEFAULT_MAX_UNROLL, DEFAULT_ALPHABET

__all__ = [
    "RegexNode",
    "RegexParser",
    "parse_regex",
    "RegexCompiler",
    "SymbolicRegex",
    "DEFAULT_MAX_UNROLL",
    "DEFAULT_ALPHABET",
]
