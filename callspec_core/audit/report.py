"""
CallSpec Core - Suite Report Renderer

Terminal rendering for SuiteReport: status panel, per-spec summary table,
one tree per failing spec (subcase -> argv -> mismatches -> refine error tree),
rejected specs, and a footer.
"""

import io
from typing import Any, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from ..errors import ErrorRecord
from ..predicates import RefineError, RefineErrorKind
from ..runtime import SpecReport, SpecStatus, SubcaseReport, SuiteReport
from ..verification import Mismatch, OutcomeStatus

_STATUS_STYLE = {
    SpecStatus.PASSED: "green",
    SpecStatus.FAILED: "red",
    SpecStatus.ERROR: "magenta",
    SpecStatus.CANCELLED: "yellow",
}

_OUTCOME_STYLE = {
    OutcomeStatus.PASSED: "green",
    OutcomeStatus.FAILED: "red",
    OutcomeStatus.TIMED_OUT: "yellow",
    OutcomeStatus.ERROR: "magenta",
}


class ReportRenderer:
    def __init__(
        self,
        console: Optional[Console] = None,
        width: int = 92,
        max_value_len: int = 80,
        max_failures: int = 20,
    ):
        self.console = console or Console()
        self.width = width
        self.max_value_len = max_value_len
        self.max_failures = max_failures

    def render(self, report: SuiteReport, title: str = "CallSpec Verification"):
        self.console.print()

        # --- Header status ---
        counts = report.counts()
        if report.passed:
            status_text, style = "ALL CALL CONTRACTS HOLD", "green"
        elif counts["FAILED"] or counts["FAILED_SUBCASES"]:
            status_text, style = "CONTRACT VIOLATIONS FOUND", "red"
        else:
            status_text, style = "VERIFICATION INCOMPLETE", "yellow"

        self.console.print(
            Panel(
                Text(status_text, justify="center", style=f"bold {style}"),
                title=f"[white]{title}[/]",
                border_style=style,
                width=self.width,
            )
        )

        # --- Per-spec summary ---
        if report.specs:
            table = Table(box=box.SIMPLE, show_header=True, header_style="bold cyan", width=self.width)
            table.add_column("Spec", style="cyan")
            table.add_column("Status", width=10)
            table.add_column("Subcases", justify="right", width=9)
            table.add_column("Failed", justify="right", width=7)
            table.add_column("Time", justify="right", width=10)
            for spec in report.specs:
                s = _STATUS_STYLE[spec.status]
                table.add_row(
                    Text(self._format_value(spec.name)),
                    f"[{s}]{spec.status.value}[/]",
                    str(len(spec.subcases)),
                    str(len(spec.failures)),
                    f"{spec.duration_ms:.0f}ms",
                )
            self.console.print(table)

        # --- Failure trees ---
        shown = 0
        for spec in report.specs:
            if spec.passed:
                continue
            if shown >= self.max_failures:
                self.console.print(Text(f"(truncated after {self.max_failures} failing specs)", style="dim"))
                break
            self.console.print(self.spec_tree(spec))
            shown += 1

        # --- Rejected specs ---
        if report.rejected:
            self.console.print()
            rej = Table(title="Rejected Specs", box=box.ROUNDED, style="red", width=self.width, show_header=True)
            rej.add_column("Spec", style="cyan", width=24)
            rej.add_column("Kind", style="magenta", width=18)
            rej.add_column("Reason", style="red")
            for r in report.rejected:
                rej.add_row(Text(self._format_value(r.subject or "?")), r.kind.value, Text(self._format_value(r.message)))
            self.console.print(rej)

        # --- Footer ---
        self.console.print()
        footer = Text.assemble(
            ("Specs: ", "dim"),
            (str(len(report.specs)), "bold white"),
            (" | ", "dim"),
            ("Subcases: ", "dim"),
            (str(counts["SUBCASES"]), "bold white"),
            (" | ", "dim"),
            ("Mode: ", "dim"),
            (report.mode, "bold white"),
            (" | ", "dim"),
            ("Time: ", "dim"),
            (f"{report.duration_ms:.0f}ms", "bold white"),
        )
        self.console.print(footer, justify="right", width=self.width)
        self.console.print()

    # -----------------------------
    # Trees
    # -----------------------------
    def spec_tree(self, spec: SpecReport) -> Tree:
        s = _STATUS_STYLE[spec.status]
        tree = Tree(Text.assemble((spec.name, "bold cyan"), ("  ", ""), (spec.status.value, f"bold {s}")))
        for err in spec.errors:
            if not any(sc.outcome.error is err for sc in spec.subcases):
                self._add_error(tree, err)
        for sc in spec.failures:
            self._add_subcase(tree, sc)
        return tree

    def _add_subcase(self, parent: Tree, sc: SubcaseReport):
        s = _OUTCOME_STYLE[sc.outcome.status]
        node = parent.add(Text.assemble((f"subcase {sc.index}", "white"), ("  ", ""), (sc.outcome.status.value, s)))
        if sc.argv is not None:
            node.add(Text.assemble(("argv: ", "dim"), (self._format_value(" ".join(sc.argv)), "white")))
        if sc.original_argv is not None:
            node.add(Text.assemble(
                ("shrunk from: ", "dim"),
                (self._format_value(" ".join(sc.original_argv)), "dim"),
                (f" ({sc.shrink_steps} steps)", "dim"),
            ))
        if sc.result is not None and sc.result.sandbox_path:
            node.add(Text.assemble(("sandbox kept at: ", "dim"), (sc.result.sandbox_path, "white")))
        if sc.outcome.error is not None:
            self._add_error(node, sc.outcome.error)
        if sc.outcome.status == OutcomeStatus.TIMED_OUT and sc.result is not None:
            node.add(Text(f"killed after {sc.result.duration_ms:.0f}ms", style="yellow"))
        for m in sc.outcome.mismatches:
            self._add_mismatch(node, m)

    def _add_mismatch(self, parent: Tree, m: Mismatch):
        node = parent.add(Text.assemble((m.kind.value, "bold red"), ("  ", ""), (self._format_value(m.subject), "cyan")))
        node.add(Text.assemble(("expected: ", "dim"), (self._format_value(m.expected), "green")))
        node.add(Text.assemble(("observed: ", "dim"), (self._format_value(m.observed), "red")))
        if m.detail is not None:
            self._add_refine_error(node, m.detail)

    def _add_refine_error(self, parent: Tree, err: RefineError):
        if err.kind == RefineErrorKind.OTHER:
            parent.add(Text.assemble((f"({err.predicate}) ", "cyan"), (err.message, "white")))
            return
        if err.kind == RefineErrorKind.NOT:
            parent.add(Text(f"({err.predicate}) does not hold", style="white"))
            return
        node = parent.add(Text(err.predicate, style="cyan"))
        if err.kind == RefineErrorKind.XOR and not err.children:
            node.add(Text("both predicates were satisfied", style="white"))
        for child in err.children:
            self._add_refine_error(node, child)

    def _add_error(self, parent: Tree, err: ErrorRecord):
        parent.add(Text.assemble((err.kind.value, "bold magenta"), (": ", "dim"), (self._format_value(err.message), "white")))

    def _format_value(self, v: Any) -> str:
        s = str(v).replace("\n", "\\n")
        if len(s) > self.max_value_len:
            s = s[: self.max_value_len - 3] + "..."
        return s


def render_report(report: SuiteReport, width: int = 100) -> List[str]:
    """Render into an off-screen console and return the plain-text lines (for logs and tests)."""
    rec = Console(record=True, width=width, file=io.StringIO(), color_system=None)
    ReportRenderer(console=rec, width=width).render(report)
    return rec.export_text().splitlines()
