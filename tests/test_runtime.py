from __future__ import annotations

import json
import os
import shutil
import sys

import pytest

from callspec_core.audit.report import render_report
from callspec_core.errors import ErrorKind
from callspec_core.factory import SpecLoadError, load_registry, verify_file
from callspec_core.predicates import EqualTo, FromTo, Regex
from callspec_core.runtime import SpecStatus, Verifier, VerifierConfig
from callspec_core.sandbox import SandboxExecutor
from callspec_core.spec import ArgSlot, CallSpec, Domain, Effects, FileEffect, SpecRegistry
from callspec_core.verification import MismatchKind, OutcomeStatus

ECHO = CallSpec(
    name="echo",
    program=sys.executable,
    base_args=("-c", "import sys; print(sys.argv[1])"),
    slots=(ArgSlot("word", Domain.STRING, Regex("[a-z]{3}")),),
    effects=Effects(stdout=lambda v: EqualTo(v["word"] + "\n")),
)

FORGETS = CallSpec(
    name="forgets",
    program=sys.executable,
    base_args=("-c", "pass"),
    slots=(ArgSlot("job", Domain.STRING, Regex("job-[0-9]{2}")),),
    effects=Effects(files=(FileEffect("result.txt"),)),
)

SLEEPS = CallSpec(
    name="sleeps",
    program=sys.executable,
    base_args=("-c", "import time; time.sleep(5)"),
    timeout_s=0.2,
)


def test_conforming_spec_passes():
    report = Verifier(VerifierConfig(subcases_per_spec=4)).run([ECHO])
    assert report.passed
    spec = report.specs[0]
    assert spec.status == SpecStatus.PASSED
    assert len(spec.subcases) == 4
    words = [s.values["word"] for s in spec.subcases]
    assert len(set(words)) == 4
    assert all(s.result.stdout == w + "\n" for s, w in zip(spec.subcases, words))


def test_missing_artifact_fails_and_sandbox_is_removed(tmp_path):
    executor = SandboxExecutor(base_dir=str(tmp_path))
    report = Verifier(VerifierConfig(subcases_per_spec=3), executor=executor).run([FORGETS])
    assert not report.passed
    spec = report.specs[0]
    assert spec.status == SpecStatus.FAILED
    assert len(spec.failures) == 3
    first = report.first_failure
    assert first.outcome.kinds() == [MismatchKind.MISSING_ARTIFACT]
    assert first.outcome.mismatches[0].subject == "result.txt"
    assert first.argv[:3] == (sys.executable, "-c", "pass")
    assert os.listdir(tmp_path) == []


def test_failures_are_shrunk():
    spec = CallSpec(
        name="rejects-big",
        program=sys.executable,
        base_args=("-c", "import sys; sys.exit(1 if int(sys.argv[1]) >= 10 else 0)"),
        slots=(ArgSlot("n", Domain.INTEGER, FromTo(10, 500)),),
    )
    report = Verifier(VerifierConfig(subcases_per_spec=1)).run([spec])
    failure = report.first_failure
    assert failure.outcome.kinds() == [MismatchKind.EXIT_CODE_MISMATCH]
    assert failure.values["n"] == 10
    if failure.original_argv is not None:
        assert failure.shrink_steps >= 1


def test_shrinking_can_be_disabled():
    report = Verifier(VerifierConfig(subcases_per_spec=2, shrink_failures=False)).run([FORGETS])
    assert all(f.original_argv is None and f.shrink_steps == 0 for f in report.failures)


def test_timeout_is_reported_per_subcase():
    report = Verifier(VerifierConfig(subcases_per_spec=1)).run([SLEEPS])
    spec = report.specs[0]
    assert spec.status == SpecStatus.FAILED
    assert spec.subcases[0].outcome.status == OutcomeStatus.TIMED_OUT


def test_fail_complete_runs_everything():
    report = Verifier(VerifierConfig(subcases_per_spec=2, shrink_failures=False)).run([FORGETS, ECHO])
    assert [s.status for s in report.specs] == [SpecStatus.FAILED, SpecStatus.PASSED]
    assert report.counts()["SUBCASES"] == 4


def test_fail_fast_stops_after_first_failure():
    cfg = VerifierConfig(subcases_per_spec=3, mode="fail-fast", shrink_failures=False)
    report = Verifier(cfg).run([FORGETS, ECHO])
    forgets, echo = report.specs
    assert forgets.status == SpecStatus.FAILED
    assert len(forgets.subcases) == 1
    assert echo.status == SpecStatus.CANCELLED
    assert report.mode == "fail-fast"


def test_spawn_failure_is_an_error_not_a_crash():
    missing = CallSpec(name="missing", program="/nonexistent/tool-xyz")
    report = Verifier(VerifierConfig(subcases_per_spec=3)).run([missing, ECHO])
    assert report.specs[0].status == SpecStatus.ERROR
    assert report.specs[0].errors[0].kind == ErrorKind.PROCESS_SPAWN_FAILURE
    assert len(report.specs[0].subcases) == 1
    assert report.specs[1].status == SpecStatus.PASSED


def test_generation_failure_is_an_error_subcase():
    never = CallSpec(
        name="never",
        program=sys.executable,
        slots=(ArgSlot("x", Domain.STRING, Regex("a") & ~Regex("a")),),
    )
    report = Verifier(VerifierConfig(subcases_per_spec=2)).run([never])
    spec = report.specs[0]
    assert spec.status == SpecStatus.ERROR
    assert [s.outcome.status for s in spec.subcases] == [OutcomeStatus.ERROR] * 2
    assert spec.errors[0].kind == ErrorKind.UNSATISFIABLE


class _BreaksOnSecondSubcase(SandboxExecutor):
    def run(self, subcase, **kwargs):
        if subcase.index == 1:
            raise RuntimeError("snapshot exploded")
        return super().run(subcase, **kwargs)


def test_unexpected_subcase_error_keeps_the_rest_of_the_report():
    report = Verifier(VerifierConfig(subcases_per_spec=3), executor=_BreaksOnSecondSubcase()).run([ECHO])
    spec = report.specs[0]
    assert spec.status == SpecStatus.ERROR
    assert [s.outcome.status for s in spec.subcases] == [OutcomeStatus.PASSED, OutcomeStatus.ERROR, OutcomeStatus.PASSED]
    assert spec.errors[0].kind == ErrorKind.INTERNAL_ERROR
    assert "snapshot exploded" in spec.errors[0].message
    assert spec.errors[0].meta == {"index": 1}


def test_rejected_specs_fail_the_suite():
    registry = SpecRegistry([ECHO, CallSpec(name="bad", program="x", slots=(ArgSlot("n", Domain.INTEGER, Regex("1")),))])
    report = Verifier(VerifierConfig(subcases_per_spec=1)).run(registry)
    assert all(s.passed for s in report.specs)
    assert not report.passed
    assert report.counts()["REJECTED"] == 1


def test_parallel_workers_and_shared_resources():
    a = CallSpec(name="a", program=sys.executable, base_args=("-c", "pass"), shared_resources=("db",))
    b = CallSpec(name="b", program=sys.executable, base_args=("-c", "pass"), shared_resources=("db",))
    report = Verifier(VerifierConfig(subcases_per_spec=2, max_workers=4)).run([a, b, ECHO])
    assert [s.name for s in report.specs] == ["a", "b", "echo"]
    assert report.passed


def test_specs_sharing_a_resource_never_overlap(tmp_path):
    log = tmp_path / "runs.log"
    code = (
        "import sys, time\n"
        "with open(sys.argv[1], 'a') as f:\n"
        "    f.write('start\\n'); f.flush()\n"
        "    time.sleep(0.1)\n"
        "    f.write('end\\n')\n"
    )
    specs = [
        CallSpec(name=f"db-{i}", program=sys.executable, base_args=("-c", code, str(log)), shared_resources=("db",))
        for i in range(3)
    ]
    report = Verifier(VerifierConfig(subcases_per_spec=2, max_workers=3)).run(specs)
    assert report.passed, "\n".join(render_report(report))
    assert log.read_text().split() == ["start", "end"] * 6


def test_many_regex_specs_with_parallel_workers():
    program = shutil.which("true") or "/bin/true"
    specs = [
        CallSpec(
            name=f"re-{i}",
            program=program,
            slots=(
                ArgSlot("tag", Domain.STRING, Regex(f"s{i}-[a-z]{{2,4}}")),
                ArgSlot("code", Domain.STRING, Regex("[0-9]{3}|x[a-f]+")),
            ),
        )
        for i in range(24)
    ]
    report = Verifier(VerifierConfig(subcases_per_spec=4, max_workers=8)).run(specs)
    assert report.passed, "\n".join(render_report(report))
    for i, spec in enumerate(report.specs):
        assert len(spec.subcases) == 4
        assert all(s.values["tag"].startswith(f"s{i}-") for s in spec.subcases)


def test_language_smaller_than_subcase_count_still_passes():
    spec = CallSpec(
        name="yes-no",
        program=shutil.which("true") or "/bin/true",
        slots=(ArgSlot("answer", Domain.STRING, Regex("yes|no")),),
    )
    report = Verifier(VerifierConfig(subcases_per_spec=8)).run([spec])
    assert report.passed
    answers = [s.values["answer"] for s in report.specs[0].subcases]
    assert len(answers) == 8
    assert set(answers) == {"yes", "no"}


def test_suite_budget_cancels_remaining_work():
    slow = CallSpec(
        name="slow",
        program=sys.executable,
        base_args=("-c", "import time; time.sleep(5)"),
        timeout_s=5,
    )
    cfg = VerifierConfig(subcases_per_spec=3, suite_timeout_s=0.5)
    report = Verifier(cfg).run([slow, ECHO])
    assert report.duration_ms < 5000
    assert report.specs[0].status == SpecStatus.CANCELLED
    assert report.specs[1].status == SpecStatus.CANCELLED
    assert not report.passed


def test_invalid_config():
    with pytest.raises(ValueError):
        Verifier(VerifierConfig(subcases_per_spec=0))
    with pytest.raises(ValueError):
        Verifier(VerifierConfig(max_workers=0))


# ----------------------------------------------------------------------------
# Report and factory
# ----------------------------------------------------------------------------

def test_report_to_dict_is_json_serializable():
    report = Verifier(VerifierConfig(subcases_per_spec=2)).run([FORGETS, ECHO])
    data = json.loads(json.dumps(report.to_dict()))
    assert data["passed"] is False
    assert data["counts"]["FAILED"] == 1
    failing = data["specs"][0]["subcases"][0]
    assert failing["outcome"]["mismatches"][0]["kind"] == "MISSING_ARTIFACT"


def test_render_report_lines():
    report = Verifier(VerifierConfig(subcases_per_spec=2)).run([FORGETS, ECHO])
    text = "\n".join(render_report(report))
    assert "CONTRACT VIOLATIONS FOUND" in text
    assert "MISSING_ARTIFACT" in text
    assert "result.txt" in text
    assert "echo" in text

    ok = "\n".join(render_report(Verifier(VerifierConfig(subcases_per_spec=1)).run([ECHO])))
    assert "ALL CALL CONTRACTS HOLD" in ok


def test_load_registry(echo_contracts_path, broken_contracts_path, tmp_path):
    assert load_registry(echo_contracts_path).names() == ["echo-word", "write-file", "sum-ints"]
    assert load_registry(broken_contracts_path).names() == ["forgets-result"]

    with pytest.raises(FileNotFoundError, match="Current working directory"):
        load_registry(tmp_path / "nope.py")

    empty = tmp_path / "empty.py"
    empty.write_text("X = 1\n", encoding="utf-8")
    with pytest.raises(SpecLoadError):
        load_registry(empty)


def test_example_contracts_hold(echo_contracts_path):
    report = verify_file(echo_contracts_path, VerifierConfig(subcases_per_spec=3))
    assert report.passed, "\n".join(render_report(report))
