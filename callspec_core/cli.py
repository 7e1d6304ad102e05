"""
CallSpec Core - Command Line Interface

    python -m callspec_core.cli verify SPECFILE [options]
    python -m callspec_core.cli sample PATTERN [-n N] [--seed S]

Exit codes:
    0   all specs passed (verify) / samples produced (sample)
    10  at least one contract violation, error or rejected spec
    2   usage error, spec file could not be loaded, pattern rejected
"""

import argparse
import json
import logging
import random
import sys
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from .audit.report import ReportRenderer
from .engines import Sampler, SampleStatus, ValueSort
from .errors import PatternCompileError
from .factory import SpecLoadError, load_registry
from .predicates import Regex
from .runtime import Verifier, VerifierConfig

EXIT_OK = 0
EXIT_USAGE = 2
EXIT_FAILED = 10


def _setup_logging(verbose: int):
    level = logging.WARNING if verbose == 0 else (logging.INFO if verbose == 1 else logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="callspec", description="Verify executables against declared call contracts.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for info, -vv for debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    v = sub.add_parser("verify", help="Run every spec in a Python spec file")
    v.add_argument("specfile")
    v.add_argument("--subcases", type=int, default=8, help="Subcases generated per spec")
    v.add_argument("--seed", type=int, default=0)
    v.add_argument("--fail-fast", action="store_true", help="Stop at the first failing spec")
    v.add_argument("--workers", type=int, default=1, help="Specs verified concurrently")
    v.add_argument("--timeout", type=float, default=10.0, help="Per-process timeout in seconds")
    v.add_argument("--suite-timeout", type=float, default=None, help="Whole-suite time budget in seconds")
    v.add_argument("--solver-timeout-ms", type=int, default=2000)
    v.add_argument("--sample-budget", type=int, default=16, help="Solver checks per sample")
    v.add_argument("--max-unroll", type=int, default=256, help="Largest unrolled regex size accepted")
    v.add_argument("--output-limit", type=int, default=64 * 1024, help="Bytes of stdout/stderr kept per run")
    v.add_argument("--content-limit", type=int, default=1024 * 1024, help="Bytes of file content kept per changed file")
    v.add_argument("--max-shrink-steps", type=int, default=32, help="Candidate runs spent shrinking one failure")
    v.add_argument("--solver-trace", action="store_true", help="Keep solver debug traces on sample results")
    v.add_argument("--retain", action="store_true", help="Keep sandboxes of failing subcases")
    v.add_argument("--no-shrink", action="store_true", help="Report failing subcases as generated")
    v.add_argument("--env", action="append", default=[], metavar="NAME",
                   help="Host environment variable passed to the binary (repeatable; PATH is always passed)")
    v.add_argument("--json", action="store_true", help="Print the report as JSON")

    s = sub.add_parser("sample", help="Draw distinct values matching a regular expression")
    s.add_argument("pattern")
    s.add_argument("-n", "--count", type=int, default=5)
    s.add_argument("--seed", type=int, default=0)
    return parser


def config_from_args(args: argparse.Namespace) -> VerifierConfig:
    return VerifierConfig(
        subcases_per_spec=args.subcases,
        seed=args.seed,
        mode="fail-fast" if args.fail_fast else "fail-complete",
        max_workers=args.workers,
        suite_timeout_s=args.suite_timeout,
        process_timeout_s=args.timeout,
        solver_timeout_ms=args.solver_timeout_ms,
        sample_budget=args.sample_budget,
        max_unroll=args.max_unroll,
        output_limit=args.output_limit,
        content_limit=args.content_limit,
        env_allowlist=tuple(dict.fromkeys(["PATH", *args.env])),
        retain_on_failure=args.retain,
        shrink_failures=not args.no_shrink,
        max_shrink_steps=args.max_shrink_steps,
        debug=args.solver_trace,
    )


def _cmd_verify(args: argparse.Namespace, console: Console) -> int:
    try:
        verifier = Verifier(config_from_args(args))
        registry = load_registry(args.specfile)
    except (FileNotFoundError, SpecLoadError, ValueError) as e:
        console.print(f"[bold red]Error:[/] {escape(str(e))}")
        return EXIT_USAGE

    report = verifier.run(registry)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
    else:
        ReportRenderer(console=console).render(report)
        if report.passed:
            console.print("[bold green]Verification passed[/]")
    return EXIT_OK if report.passed else EXIT_FAILED


def _cmd_sample(args: argparse.Namespace, console: Console) -> int:
    sampler = Sampler()
    rng = random.Random(args.seed)
    key = ("cli", args.pattern)
    try:
        for _ in range(args.count):
            res = sampler.draw(key, Regex(args.pattern), ValueSort.STRING, rng=rng)
            if res.status != SampleStatus.VALUE:
                console.print(f"[yellow]{res.status.value}[/]: {escape(res.message)}")
                return EXIT_OK if res.status == SampleStatus.EXHAUSTED else EXIT_FAILED
            console.print(repr(res.value), highlight=False, markup=False)
    except PatternCompileError as e:
        console.print(f"[bold red]Pattern rejected:[/] {escape(str(e))}")
        return EXIT_USAGE
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)
    console = Console()

    if args.command == "verify":
        return _cmd_verify(args, console)
    return _cmd_sample(args, console)


if __name__ == "__main__":
    sys.exit(main())
