"""End-of-run summary of step results."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from rich import box
from rich.console import Group, RenderableType
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .steps import ExecutionResult, StepStatus

__all__ = ["RunSummary"]


@dataclass
class RunSummary:
    """Aggregate diagnostic state rendered at the end of a setup run."""

    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    results: List[ExecutionResult] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    def record(self, result: ExecutionResult) -> None:
        self.results.append(result)

    def count(self, status: StepStatus) -> int:
        return sum(1 for result in self.results if result.status is status)

    def failures(self) -> list[ExecutionResult]:
        return [result for result in self.results if result.status is StepStatus.FAILED]

    def as_panel(self) -> Panel:
        stats = Table.grid(padding=(0, 2))
        stats.add_column(justify="left")
        stats.add_column(justify="right")
        stats.add_row("Ran", Text(str(self.count(StepStatus.SUCCESS)), style="bold green"))
        stats.add_row("Already satisfied", Text(str(self.count(StepStatus.SKIPPED)), style="bold cyan"))
        stats.add_row("Failed", Text(str(self.count(StepStatus.FAILED)), style="bold red"))

        steps = Table(
            show_lines=False,
            expand=True,
            header_style="bold magenta",
            box=box.SIMPLE_HEAVY,
        )
        steps.add_column("Step", overflow="fold", ratio=2)
        steps.add_column("Status", no_wrap=True)
        steps.add_column("Duration", no_wrap=True)
        steps.add_column("Notes", ratio=1, overflow="fold")
        if self.results:
            for result in self.results:
                note = f"[cyan]{escape(result.hint)}[/]" if result.hint else ""
                steps.add_row(
                    escape(result.step_name),
                    result.status_badge(),
                    "" if result.status is StepStatus.SKIPPED else result.duration_text(),
                    note,
                )
        else:
            steps.add_row("(no steps recorded)", "", "", "")

        details = Table.grid(padding=(0, 2))
        if self.warnings:
            details.add_row(Text("Warnings", style="bold yellow"), Text("\n".join(self.warnings), style="yellow"))
        if self.errors:
            details.add_row(Text("Errors", style="bold red"), Text("\n".join(self.errors), style="red"))
        excerpts = [result for result in self.failures() if result.log_excerpt]
        if excerpts:
            last = excerpts[-1]
            details.add_row(
                Text(f"Log ({last.step_name})", style="bold"),
                Text(last.log_excerpt, style="dim"),
            )

        sections: List[RenderableType] = [stats, steps]
        if details.row_count:
            sections.append(details)
        return Panel(Group(*sections), title="Run Summary", border_style="magenta", padding=(1, 2))
