"""
Call contracts for small, well-behaved programs.

    python -m callspec_core.cli verify examples/echo_contracts.py
"""

import sys

from callspec_core.predicates import EqualTo, FromTo, Regex, SizeLessThan
from callspec_core.spec import (
    ArgSlot, Arity, CallSpec, ChangeKind, Domain, Effects, FileEffect, SpecRegistry,
)

# A tiny "tool" written in Python so the contracts run on any platform with an interpreter.
WRITE_FILE = (
    "import sys\n"
    "name, text = sys.argv[1], sys.argv[2]\n"
    "open(name, 'w').write(text)\n"
)

SUM_ARGS = "import sys; print(sum(int(a) for a in sys.argv[1:]))"


def build_registry() -> SpecRegistry:
    registry = SpecRegistry()

    registry.register(CallSpec(
        name="echo-word",
        program=sys.executable,
        base_args=("-c", "import sys; print(sys.argv[1])"),
        slots=(ArgSlot("word", Domain.STRING, Regex("[a-z]{3}")),),
        effects=Effects(
            exit_codes=(0,),
            stdout=lambda v: EqualTo(v["word"] + "\n"),
        ),
    ))

    registry.register(CallSpec(
        name="write-file",
        program=sys.executable,
        base_args=("-c", WRITE_FILE),
        slots=(
            ArgSlot("out", Domain.PATH, Regex("[a-z]{1,8}\\.txt")),
            ArgSlot("text", Domain.STRING, Regex("[A-Za-z0-9 ]+") & SizeLessThan(20)),
        ),
        effects=Effects(
            files=(FileEffect("{out}", ChangeKind.ADDED, content=lambda v: EqualTo(v["text"])),),
        ),
    ))

    registry.register(CallSpec(
        name="sum-ints",
        program=sys.executable,
        base_args=("-c", SUM_ARGS),
        slots=(ArgSlot("n", Domain.INTEGER, FromTo(0, 99), arity=Arity(1, 4)),),
        effects=Effects(stdout=lambda v: EqualTo(f"{sum(v['n'])}\n")),
    ))
    return registry
