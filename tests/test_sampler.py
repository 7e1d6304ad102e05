from __future__ import annotations

import random
import re
from concurrent.futures import ThreadPoolExecutor

import pytest
from hypothesis import given, settings, strategies as st

from callspec_core.engines import NotEncodable, Sampler, SampleStatus, ValueSort
from callspec_core.errors import UnsupportedPattern
from callspec_core.predicates import (
    DivisibleBy, FromTo, LowerCase, OneOf, PathExists, Regex, SizeGreaterThan, SizeLessThan, validate,
)

PATTERNS = [
    "[a-z]{3}",
    "[A-Z][a-z]*",
    "(foo|bar)+-[0-9]{1,3}",
    "x?y{2,4}",
    "[^a-c]+",
    "v[0-9]\\.[0-9]+",
]


@settings(max_examples=25, deadline=None)
@given(pattern=st.sampled_from(PATTERNS), seed=st.integers(min_value=0, max_value=10_000))
def test_samples_match_python_re(pattern, seed):
    res = Sampler().sample(Regex(pattern), ValueSort.STRING, rng=random.Random(seed))
    assert res.status == SampleStatus.VALUE, res.message
    assert re.fullmatch(pattern, res.value), f"{res.value!r} does not match {pattern!r}"


def test_draw_returns_distinct_values(sampler):
    pred = Regex("[a-z]{3}")
    rng = random.Random(1)
    values = []
    for _ in range(10):
        res = sampler.draw("slot", pred, ValueSort.STRING, rng=rng)
        assert res.ok, res.message
        values.append(res.value)
    assert len(set(values)) == 10
    assert all(re.fullmatch("[a-z]{3}", v) for v in values)


def test_exclusions_are_respected(sampler):
    res = sampler.sample(OneOf(("a", "b", "c")), ValueSort.STRING, exclusions=("a", "b"))
    assert res.status == SampleStatus.VALUE
    assert res.value == "c"


def test_contradiction_is_unsatisfiable(sampler):
    pred = Regex("[a-z]+") & ~Regex("[a-z]+")
    res = sampler.sample(pred, ValueSort.STRING)
    assert res.status == SampleStatus.UNSATISFIABLE
    assert sampler.check_satisfiable(pred, ValueSort.STRING) == SampleStatus.UNSATISFIABLE


def test_small_language_is_exhausted(sampler):
    pred = Regex("[ab]")
    rng = random.Random(0)
    first = sampler.draw("k", pred, ValueSort.STRING, rng=rng)
    second = sampler.draw("k", pred, ValueSort.STRING, rng=rng)
    third = sampler.draw("k", pred, ValueSort.STRING, rng=rng)
    assert {first.value, second.value} == {"a", "b"}
    assert third.status == SampleStatus.EXHAUSTED
    # exhaustion is not a proof of emptiness
    assert sampler.check_satisfiable(pred, ValueSort.STRING) == SampleStatus.VALUE


def test_integer_sampling(sampler):
    pred = FromTo(10, 20) & DivisibleBy(5)
    seen = set()
    for _ in range(3):
        res = sampler.draw("n", pred, ValueSort.INT, rng=random.Random(3))
        assert res.ok
        assert validate(pred, res.value) is None
        seen.add(res.value)
    assert seen == {10, 15, 20}
    assert sampler.draw("n", pred, ValueSort.INT).status == SampleStatus.EXHAUSTED


def test_string_size_and_case_predicates(sampler):
    pred = Regex("[a-zA-Z]+") & LowerCase() & SizeGreaterThan(2) & SizeLessThan(5)
    res = sampler.sample(pred, ValueSort.STRING, rng=random.Random(11))
    assert res.ok
    assert validate(pred, res.value) is None


def test_same_rng_state_gives_same_value():
    pred = Regex("[a-z]{2,6}[0-9]")
    a = Sampler().sample(pred, ValueSort.STRING, rng=random.Random(42))
    b = Sampler().sample(pred, ValueSort.STRING, rng=random.Random(42))
    assert a.value == b.value


def test_path_predicates_are_not_encodable(sampler):
    with pytest.raises(NotEncodable):
        sampler.sample(PathExists(), ValueSort.STRING)


def test_unsupported_pattern_propagates(sampler):
    with pytest.raises(UnsupportedPattern):
        sampler.sample(Regex("(a)\\1"), ValueSort.STRING)


def test_debug_trace_is_recorded():
    s = Sampler(debug=True)
    res = s.sample(Regex("ab+"), ValueSort.STRING)
    assert res.trace is not None
    assert res.trace[0]["event"] == "sample_start"
    assert res.trace[-1]["event"] == "sample_end"


def test_concurrent_draws_share_one_sampler(sampler):
    patterns = [f"p{i}[a-z]{{2}}[0-9]?" for i in range(32)]

    def work(pattern):
        assert sampler.is_encodable(Regex(pattern), ValueSort.STRING)
        assert sampler.check_satisfiable(Regex(pattern), ValueSort.STRING) == SampleStatus.VALUE
        rng = random.Random(pattern)
        return [sampler.draw(pattern, Regex(pattern), ValueSort.STRING, rng=rng) for _ in range(3)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = dict(zip(patterns, pool.map(work, patterns)))

    for pattern, draws in results.items():
        assert all(r.ok for r in draws), [r.message for r in draws]
        values = [r.value for r in draws]
        assert len(set(values)) == 3
        assert all(re.fullmatch(pattern, v) for v in values)


def test_errors_cross_the_lock_without_traceback_frames(sampler):
    with pytest.raises(UnsupportedPattern) as info:
        sampler.check_satisfiable(Regex("(?=a)a"), ValueSort.STRING)
    tb = info.value.__traceback__
    names = []
    while tb is not None:
        names.append(tb.tb_frame.f_code.co_name)
        tb = tb.tb_next
    assert "_to_term" not in names
