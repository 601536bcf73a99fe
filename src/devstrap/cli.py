"""Command line entry point for devstrap."""
from __future__ import annotations

import argparse
import sys
from typing import Callable, Sequence

from rich.markup import escape

from . import __version__
from .config import Config, load_config
from .errors import ConfigError, PrivilegeError
from .keepalive import PrivilegeKeepAlive, install_signal_handlers, running_as_root
from .logging_config import configure_logging, logger
from .orchestrator import SetupOrchestrator
from .plan import build_steps
from .runner import StepRunner
from .steps import Step
from .summary import RunSummary
from .ui import SKIP_GLYPH, SUCCESS_GLYPH, LockingConsole, banner

__all__ = ["main", "run"]

StepsFactory = Callable[[Config, StepRunner], Sequence[Step]]
KeepAliveFactory = Callable[[Config], PrivilegeKeepAlive]

PRIVILEGE_LABEL = "Acquire administrator privileges"


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="devstrap",
        description=(
            "Bootstrap the development environment: tooling, GitHub and AWS "
            "credentials, the monorepo and its database. Safe to rerun."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def default_keepalive(config: Config) -> PrivilegeKeepAlive:
    return PrivilegeKeepAlive(
        config.keepalive_marker,
        interval=config.keepalive_interval,
        enabled=config.use_sudo and not running_as_root(),
    )


def run(
    config: Config,
    *,
    console: LockingConsole | None = None,
    steps_factory: StepsFactory = build_steps,
    keepalive_factory: KeepAliveFactory = default_keepalive,
) -> int:
    """Run the whole setup; return the process exit status."""

    configure_logging(config.log_file)
    install_signal_handlers()
    console = console or LockingConsole()
    console.print(banner(f"devstrap v{__version__}", config.repo, colors=config.rainbow_colors))

    summary = RunSummary()
    runner = StepRunner(config, console)
    orchestrator = SetupOrchestrator(config, runner, console, summary=summary)
    exit_code = 1
    try:
        with keepalive_factory(config) as keepalive:
            if keepalive.enabled:
                console.print(f"[green]{SUCCESS_GLYPH}[/] {PRIVILEGE_LABEL}")
            else:
                console.print(f"[cyan]{SKIP_GLYPH}[/] {PRIVILEGE_LABEL} [dim](not required)[/]")
            exit_code = orchestrator.run(steps_factory(config, runner))
    except PrivilegeError as exc:
        logger.error("%s", exc)
        summary.add_error(str(exc))
        console.print(f"[bold red]Aborted at step '{PRIVILEGE_LABEL}': {escape(str(exc))}[/]")
        exit_code = 1
    except KeyboardInterrupt:
        logger.warning("interrupted by user")
        summary.add_warning("Interrupted by user.")
        console.print("[yellow]Interrupted.[/]")
        exit_code = 130
    finally:
        console.print(summary.as_panel())
        console.show_cursor(True)
        logger.info("session finished with exit %s", exit_code)
    return exit_code


def main(argv: Sequence[str] | None = None) -> None:
    _parse_args(sys.argv[1:] if argv is None else argv)
    console = LockingConsole()
    try:
        config = load_config()
    except ConfigError as exc:
        console.print(f"[bold red]Configuration error:[/] {escape(str(exc))}")
        sys.exit(2)
    sys.exit(run(config, console=console))
