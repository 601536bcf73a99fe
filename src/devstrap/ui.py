"""Terminal helpers shared by the runner and orchestrator."""
from __future__ import annotations

import threading
from typing import Sequence

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, ProgressColumn, Task, TextColumn, TimeElapsedColumn
from rich.table import Column
from rich.text import Text

from .config import DEFAULT_RAINBOW

__all__ = [
    "FAILURE_GLYPH",
    "SKIP_GLYPH",
    "SUCCESS_GLYPH",
    "LockingConsole",
    "RainbowSpinnerColumn",
    "banner",
    "create_progress",
    "rainbow_text",
]

SUCCESS_GLYPH = "✓"
FAILURE_GLYPH = "✗"
SKIP_GLYPH = "•"


class RainbowSpinnerColumn(ProgressColumn):
    """Braille spinner whose colour walks the palette once per full turn.

    The frame is derived from the task's elapsed time, so redraws between
    ticks show the same glyph.
    """

    FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

    def __init__(self, colors: Sequence[str] | None = None, *, frames_per_second: float = 12.5):
        super().__init__()
        self.colors = tuple(colors or DEFAULT_RAINBOW)
        self.frames_per_second = frames_per_second

    def get_table_column(self) -> Column:
        return Column(no_wrap=True, min_width=1)

    def render(self, task: Task) -> Text:
        tick = int((task.elapsed or 0.0) * self.frames_per_second)
        turn, frame = divmod(tick, len(self.FRAMES))
        return Text(self.FRAMES[frame], style=self.colors[turn % len(self.colors)])


def rainbow_text(message: str, colors: Sequence[str] | None = None) -> Text:
    """Colour each word of *message* with the next palette entry."""

    palette = tuple(colors or DEFAULT_RAINBOW)
    text = Text()
    for index, word in enumerate(message.split(" ")):
        if index:
            text.append(" ")
        text.append(word, style=f"bold {palette[index % len(palette)]}")
    return text


class LockingConsole:
    """Thread-safe wrapper around a rich console."""

    def __init__(self, base: Console | None = None):
        self._lock = threading.RLock()
        self._console = base or Console(soft_wrap=False, highlight=False)

    def print(self, *args, **kwargs):
        with self._lock:
            self._console.print(*args, **kwargs)

    def show_cursor(self, show: bool = True) -> None:
        with self._lock:
            self._console.show_cursor(show)

    @property
    def raw(self) -> Console:
        return self._console


def create_progress(
    console: LockingConsole,
    *,
    colors: Sequence[str] | None = None,
    refresh_per_second: float = 10.0,
    disable: bool = False,
) -> Progress:
    """Create a transient single-line spinner for one running step."""

    return Progress(
        RainbowSpinnerColumn(colors=colors),
        TextColumn("{task.description}"),
        TimeElapsedColumn(),
        console=console.raw,
        refresh_per_second=refresh_per_second,
        transient=True,
        disable=disable,
    )


def banner(title: str, body: str, *, colors: Sequence[str] | None = None, style: str = "magenta") -> Panel:
    content = Text.assemble(rainbow_text(title, colors), "\n", Text(body, style=f"bold {style}"))
    return Panel(content, box=box.ROUNDED, expand=False, border_style=style)
