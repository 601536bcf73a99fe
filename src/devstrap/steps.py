"""Step definitions and per-step execution results."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Sequence, Union

__all__ = [
    "Action",
    "Criticality",
    "ExecutionResult",
    "Precondition",
    "Step",
    "StepStatus",
    "describe_action",
]

Precondition = Callable[[], bool]
Action = Union[Sequence[str], Callable[[], int]]


class Criticality(Enum):
    """Whether a failing step aborts the run."""

    FATAL = "fatal"
    ADVISORY = "advisory"


class StepStatus(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Step:
    """One idempotent unit of setup work.

    ``precondition`` must be a side-effect-free query; when it returns
    ``True`` the step's effect already holds and ``action`` is not run.
    ``None`` means the step is never considered satisfied.
    """

    name: str
    action: Action
    precondition: Precondition | None = None
    criticality: Criticality = Criticality.FATAL
    interactive: bool = False
    cwd: Path | None = None
    hint: str | None = None

    @property
    def fatal(self) -> bool:
        return self.criticality is Criticality.FATAL

    def is_satisfied(self) -> bool:
        if self.precondition is None:
            return False
        return bool(self.precondition())


def describe_action(action: Action) -> str:
    if callable(action):
        return getattr(action, "__qualname__", None) or repr(action)
    return " ".join(map(str, action))


@dataclass
class ExecutionResult:
    """Outcome of one step, reported once and then kept for the summary."""

    step_name: str
    exit_code: int
    duration: float = 0.0
    log_excerpt: str = ""
    status: StepStatus = StepStatus.SUCCESS
    hint: str | None = None

    @classmethod
    def skipped(cls, step_name: str) -> "ExecutionResult":
        return cls(step_name=step_name, exit_code=0, status=StepStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def status_badge(self) -> str:
        if self.status is StepStatus.SKIPPED:
            return "[dim]satisfied[/]"
        if self.ok:
            return "[green]OK[/]"
        return f"[red]exit {self.exit_code}[/]"

    def duration_text(self) -> str:
        return f"{self.duration:.2f}s"
