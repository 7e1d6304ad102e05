from __future__ import annotations

import pytest
import z3

from callspec_core.errors import PatternSyntaxError, PatternTooLarge, UnsupportedPattern
from callspec_core.regex import RegexCompiler, parse_regex
from callspec_core.engines.z3_engine.encoder import string_val


def _accepts(pattern: str, text: str) -> bool:
    term = RegexCompiler().compile_pattern(pattern).term
    s = z3.Solver()
    v = z3.String("v")
    s.add(v == string_val(text))
    s.add(z3.InRe(v, term))
    return s.check() == z3.sat


@pytest.mark.parametrize(
    "pattern, text, expected",
    [
        ("[a-z]{3}", "abc", True),
        ("[a-z]{3}", "abcd", False),
        ("[a-z]{3}", "ab1", False),
        ("^foo|bar$", "bar", True),
        ("a(b|c)*d", "abcbd", True),
        ("a(b|c)*d", "abxd", False),
        ("x{2,}", "xxxxx", True),
        ("x{2,}", "x", False),
        ("[^0-9]+", "abc", True),
        ("[^0-9]+", "a1", False),
        ("\\d{2}-\\w+", "42-ok_1", True),
        ("colou?r", "color", True),
        ("a{,2}", "", True),
        ("(?P<n>ab)+", "abab", True),
    ],
)
def test_compiled_language_matches_python_re(pattern, text, expected):
    assert _accepts(pattern, text) is expected


def test_syntax_errors_carry_position():
    with pytest.raises(PatternSyntaxError) as ei:
        parse_regex("ab[cd")
    assert ei.value.position == 2
    assert "unterminated character set" in str(ei.value)

    with pytest.raises(PatternSyntaxError):
        parse_regex("a)")
    with pytest.raises(PatternSyntaxError):
        parse_regex("*a")
    with pytest.raises(PatternSyntaxError):
        parse_regex("a{3,1}")


@pytest.mark.parametrize("pattern", ["(a)\\1", "(?P<x>a)(?P=x)", "foo(?=bar)", "(?<!a)b", "\\bword", "a^b", "a$b"])
def test_non_regular_constructs_are_rejected(pattern):
    with pytest.raises(UnsupportedPattern):
        RegexCompiler().compile_pattern(pattern)


def test_inline_flags_are_rejected_by_the_parser():
    with pytest.raises(UnsupportedPattern):
        parse_regex("(?i)abc")


def test_bounded_repetition_is_capped():
    with pytest.raises(PatternTooLarge, match="max_unroll"):
        RegexCompiler().compile_pattern("a{300}")

    # a larger cap accepts the same pattern
    compiled = RegexCompiler(max_unroll=400).compile_pattern("a{300}")
    assert compiled.size == 300


def test_compile_is_memoized_per_compiler():
    c = RegexCompiler()
    assert c.compile_pattern("[a-z]+") is c.compile_pattern("[a-z]+")
