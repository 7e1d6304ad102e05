"""
A contract the program does not honor: it promises result.txt but writes nothing.

    python -m callspec_core.cli verify examples/broken_contracts.py   # exit code 10
"""

import sys

from callspec_core.predicates import Regex
from callspec_core.spec import ArgSlot, CallSpec, Domain, Effects, FileEffect

SPECS = [
    CallSpec(
        name="forgets-result",
        program=sys.executable,
        base_args=("-c", "import sys; sys.exit(0)"),
        slots=(ArgSlot("job", Domain.STRING, Regex("job-[0-9]{2}")),),
        effects=Effects(files=(FileEffect("result.txt"),)),
    ),
]
