from __future__ import annotations

import re

from callspec_core.engines import SampleResult, SampleStatus, Sampler
from callspec_core.errors import ErrorKind
from callspec_core.generation import ArgumentGenerator, GenerationFailure, shrink_candidates
from callspec_core.predicates import (
    Ascending, EqualTo, FromTo, InDir, NotEqualTo, PathExists, Regex, SizeLessThan, validate,
)
from callspec_core.spec import ArgSlot, Arity, CallSpec, Domain, EntryKind, Fixture, Subcase


def _generate(spec: CallSpec, count: int = 6, seed: int = 0):
    return ArgumentGenerator(Sampler()).generate(spec, count, seed=seed)


def test_generated_values_satisfy_predicates():
    spec = CallSpec(
        name="mix",
        program="tool",
        slots=(
            ArgSlot("word", Domain.STRING, Regex("[a-z]{2,5}") & SizeLessThan(4), flag="--word"),
            ArgSlot("count", Domain.INTEGER, FromTo(1, 50)),
            ArgSlot("mode", Domain.ENUM, NotEqualTo("slow"), choices=("fast", "slow", "auto")),
        ),
    )
    items = _generate(spec)
    assert len(items) == 6
    for sc in items:
        assert isinstance(sc, Subcase), sc
        assert re.fullmatch("[a-z]{2,3}", sc.values["word"])
        assert 1 <= sc.values["count"] <= 50
        assert sc.values["mode"] in ("fast", "auto")
        assert sc.argv == ("tool", "--word", sc.values["word"], str(sc.values["count"]), sc.values["mode"])


def test_solver_values_are_distinct_across_subcases():
    spec = CallSpec(name="d", program="tool", slots=(ArgSlot("w", Domain.STRING, Regex("[a-z]{4}")),))
    words = [sc.values["w"] for sc in _generate(spec, count=8)]
    assert len(set(words)) == 8


def test_generation_is_deterministic_for_a_seed():
    spec = CallSpec(
        name="det",
        program="tool",
        slots=(
            ArgSlot("w", Domain.STRING, Regex("[a-z]{3,6}")),
            ArgSlot("n", Domain.INTEGER, FromTo(0, 1000), arity=Arity(1, 3)),
        ),
    )
    first = [sc.argv for sc in _generate(spec, seed=7)]
    second = [sc.argv for sc in _generate(spec, seed=7)]
    assert first == second


def test_variadic_slot_respects_arity():
    spec = CallSpec(name="v", program="tool", slots=(ArgSlot("n", Domain.INTEGER, FromTo(0, 99), arity=Arity(1, 4)),))
    for sc in _generate(spec, count=8):
        assert 1 <= len(sc.values["n"]) <= 4
        assert sc.argv[1:] == tuple(str(v) for v in sc.values["n"])


def test_items_predicate_orders_variadic_values():
    slot = ArgSlot("n", Domain.INTEGER, FromTo(0, 99), arity=Arity(2, 5), items=Ascending())
    for sc in _generate(CallSpec(name="asc", program="tool", slots=(slot,)), count=6):
        assert sc.values["n"] == sorted(sc.values["n"])

    short = ArgSlot("w", Domain.STRING, Regex("[a-z]{3}"), arity=Arity(1, 6), items=SizeLessThan(3))
    for sc in _generate(CallSpec(name="short", program="tool", slots=(short,)), count=6):
        assert 1 <= len(sc.values["w"]) <= 2


def test_path_exists_draws_from_fixtures():
    spec = CallSpec(
        name="paths",
        program="cat",
        fixtures=(
            Fixture("data/a.txt", "a"),
            Fixture("data/b.txt", "b"),
            Fixture("data/sub", None, kind=EntryKind.DIR),
        ),
        slots=(ArgSlot("src", Domain.PATH, PathExists("file") & InDir("data")),),
    )
    for sc in _generate(spec):
        assert sc.values["src"] in ("data/a.txt", "data/b.txt")


def test_path_without_exists_is_generated_under_root():
    spec = CallSpec(name="out", program="tool", slots=(ArgSlot("out", Domain.PATH, InDir("build")),))
    for sc in _generate(spec, count=4):
        assert sc.values["out"].startswith("build/")


def test_dependent_slot_is_refined():
    spec = CallSpec(
        name="range",
        program="tool",
        slots=(
            ArgSlot("hi", Domain.INTEGER, FromTo(0, 100), depends_on=("lo",), refine=lambda v: FromTo(v["lo"], 100)),
            ArgSlot("lo", Domain.INTEGER, FromTo(0, 100)),
        ),
    )
    for sc in _generate(spec):
        assert sc.values["lo"] <= sc.values["hi"]
        # argv keeps declaration order
        assert sc.argv == ("tool", str(sc.values["hi"]), str(sc.values["lo"]))


def test_unsatisfiable_slot_fails_every_subcase():
    spec = CallSpec(name="never", program="tool", slots=(ArgSlot("x", Domain.STRING, Regex("[a-z]+") & ~Regex("[a-z]+")),))
    items = _generate(spec, count=3)
    assert all(isinstance(i, GenerationFailure) for i in items)
    assert {i.kind for i in items} == {ErrorKind.UNSATISFIABLE}
    assert items[0].slot == "x"
    assert items[0].to_record().meta == {"index": 0, "slot": "x"}


def test_pattern_errors_are_reported_as_data():
    spec = CallSpec(name="backref", program="tool", slots=(ArgSlot("x", Domain.STRING, Regex("(a)\\1")),))
    items = _generate(spec, count=2)
    assert [i.kind for i in items] == [ErrorKind.PATTERN_COMPILE_ERROR] * 2


def test_exhausted_language_repeats_known_witnesses():
    spec = CallSpec(name="tiny", program="tool", slots=(ArgSlot("x", Domain.STRING, Regex("[ab]")),))
    items = _generate(spec, count=5)
    assert all(isinstance(i, Subcase) for i in items), items
    words = [i.values["x"] for i in items]
    assert sorted(words[:2]) == ["a", "b"]
    assert set(words) == {"a", "b"}


def test_solver_timeout_falls_back_to_random_values(monkeypatch):
    sampler = Sampler()
    monkeypatch.setattr(sampler, "check_satisfiable", lambda pred, sort: SampleStatus.TIMEOUT)
    monkeypatch.setattr(sampler, "draw", lambda *a, **kw: SampleResult(SampleStatus.TIMEOUT, message="timed out"))
    spec = CallSpec(name="slow", program="tool", slots=(ArgSlot("w", Domain.STRING, Regex("[A-Za-z0-9_.-]+")),))
    items = ArgumentGenerator(sampler).generate(spec, 4)
    assert all(isinstance(i, Subcase) for i in items), items
    assert all(re.fullmatch("[A-Za-z0-9_.-]+", i.values["w"]) for i in items)


def test_solver_timeout_fails_only_the_affected_slot(monkeypatch):
    sampler = Sampler()
    monkeypatch.setattr(sampler, "check_satisfiable", lambda pred, sort: SampleStatus.TIMEOUT)
    monkeypatch.setattr(sampler, "draw", lambda *a, **kw: SampleResult(SampleStatus.TIMEOUT, message="timed out"))
    spec = CallSpec(
        name="slow",
        program="tool",
        slots=(
            ArgSlot("mode", Domain.ENUM, choices=("fast", "auto")),
            ArgSlot("w", Domain.STRING, Regex("q{20}")),
        ),
    )
    items = ArgumentGenerator(sampler).generate(spec, 2)
    assert [i.kind for i in items] == [ErrorKind.SOLVER_TIMEOUT] * 2
    assert {i.slot for i in items} == {"w"}


def test_tiny_solver_timeout_never_breaks_soundness():
    spec = CallSpec(name="t", program="tool", slots=(ArgSlot("w", Domain.STRING, Regex("[a-z]{3}")),))
    for item in ArgumentGenerator(Sampler(timeout_ms=1)).generate(spec, 4):
        if isinstance(item, GenerationFailure):
            assert item.slot == "w"
            assert item.kind in (ErrorKind.SOLVER_TIMEOUT, ErrorKind.EXHAUSTED)
        else:
            assert re.fullmatch("[a-z]{3}", item.values["w"])


def test_optional_slot_may_be_omitted():
    spec = CallSpec(
        name="opt",
        program="tool",
        slots=(ArgSlot("name", Domain.STRING, Regex("[a-z]{3}"), arity=Arity(0, 1), flag="--name"),),
    )
    for sc in _generate(spec, count=8):
        if sc.values["name"] is None:
            assert sc.argv == ("tool",)
        else:
            assert sc.argv == ("tool", "--name", sc.values["name"])


# ----------------------------------------------------------------------------
# Shrinking
# ----------------------------------------------------------------------------

def test_shrink_candidates():
    ints = ArgSlot("n", Domain.INTEGER)
    assert list(shrink_candidates(ints, 10)) == [0, 5, 9]
    assert list(shrink_candidates(ints, -7)) == [0, -3, -6]
    assert list(shrink_candidates(ints, 0)) == []

    words = ArgSlot("w")
    assert list(shrink_candidates(words, "abcd")) == ["", "ab", "abc", "bcd"]

    enum = ArgSlot("m", Domain.ENUM, choices=("a", "b", "c"))
    assert list(shrink_candidates(enum, "c")) == ["a", "b"]

    many = ArgSlot("xs", Domain.INTEGER, arity=Arity(1, None))
    cands = list(shrink_candidates(many, [3, 4]))
    assert cands[:2] == [[4], [3]]
    assert [0, 4] in cands


def test_shrink_keeps_subcases_valid():
    spec = CallSpec(name="s", program="tool", slots=(ArgSlot("w", Domain.STRING, Regex("[a-z]{2,}")),))
    gen = ArgumentGenerator(Sampler())
    base = Subcase("s", 0, 0, ("tool", "abcdef"), {"w": "abcdef"})
    smaller = [sc.values["w"] for sc in gen.shrink(spec, base)]
    assert smaller == ["abc", "abcde", "bcdef"]
    assert all(validate(Regex("[a-z]{2,}"), w) is None for w in smaller)


def test_sampled_strings_never_carry_nul():
    spec = CallSpec(name="nul", program="tool", slots=(ArgSlot("x", Domain.STRING, Regex("\\0|a")),))
    items = _generate(spec, count=3)
    assert [i.values["x"] for i in items] == ["a", "a", "a"]

    only_nul = CallSpec(name="nul-only", program="tool", slots=(ArgSlot("x", Domain.STRING, Regex("\\0")),))
    assert {i.kind for i in _generate(only_nul, count=2)} == {ErrorKind.UNSATISFIABLE}
