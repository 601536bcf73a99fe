"""Sequential execution of idempotent setup steps."""
from __future__ import annotations

import logging
from typing import Iterable, Sequence

from rich.markup import escape

from .config import Config
from .errors import FatalStepError
from .runner import StepRunner
from .steps import ExecutionResult, Step, StepStatus
from .summary import RunSummary
from .ui import SKIP_GLYPH, LockingConsole, banner

__all__ = ["SetupOrchestrator"]


class SetupOrchestrator:
    """Run steps strictly in order, stopping at the first fatal failure."""

    def __init__(
        self,
        config: Config,
        runner: StepRunner,
        console: LockingConsole,
        *,
        summary: RunSummary | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.console = console
        self.summary = summary or RunSummary()
        self.logger = logger or logging.getLogger("devstrap.orchestrator")
        self.failed_step: str | None = None

    @staticmethod
    def validate(steps: Iterable[Step]) -> list[Step]:
        seen: set[str] = set()
        ordered: list[Step] = []
        for step in steps:
            if step.name in seen:
                raise ValueError(f"Step '{step.name}' declared twice")
            seen.add(step.name)
            ordered.append(step)
        return ordered

    def run(self, steps: Sequence[Step]) -> int:
        """Execute *steps*; return 0 or the first fatal step's exit status."""

        ordered = self.validate(steps)
        self.failed_step = None
        self.logger.info("running %d steps", len(ordered))
        for step in ordered:
            if self._satisfied(step):
                self.console.print(f"[cyan]{SKIP_GLYPH}[/] {escape(step.name)} [dim](already satisfied)[/]")
                self.logger.info("step %s already satisfied", step.name)
                self.summary.record(ExecutionResult.skipped(step.name))
                continue

            try:
                result = self.runner.run(
                    step.name,
                    step.action,
                    interactive=step.interactive,
                    cwd=step.cwd,
                    hint=step.hint,
                )
            except FatalStepError as exc:
                self.summary.record(
                    ExecutionResult(
                        step_name=step.name,
                        exit_code=exc.exit_code,
                        status=StepStatus.FAILED,
                        hint=str(exc),
                    )
                )
                return self._abort(step, exc.exit_code, str(exc))

            self.summary.record(result)
            if result.ok:
                continue
            if step.fatal:
                return self._abort(step, result.exit_code)
            message = f"{step.name} failed (exit {result.exit_code}); continuing."
            self.logger.warning(message)
            self.summary.add_warning(message)
            self.console.print(f"[yellow]![/] {escape(message)}")

        self.logger.info("all steps complete")
        self.console.print(
            banner("Setup complete", f"Next: {self.config.next_action}", colors=self.config.rainbow_colors, style="green")
        )
        return 0

    def _satisfied(self, step: Step) -> bool:
        try:
            return step.is_satisfied()
        except Exception:
            self.logger.warning("precondition for %s raised; running the step", step.name, exc_info=True)
            return False

    def _abort(self, step: Step, exit_code: int, reason: str | None = None) -> int:
        self.failed_step = step.name
        message = f"Aborted at step '{step.name}' (exit {exit_code})"
        if reason:
            message = f"{message}: {reason}"
        self.logger.error(message)
        self.summary.add_error(message)
        self.console.print(f"[bold red]{escape(message)}[/]")
        self.console.print(f"[dim]Details: {escape(str(self.config.log_file))}[/]")
        return exit_code or 1
