"""Spinner-decorated execution of a single setup action."""
from __future__ import annotations

import logging
import subprocess
import time
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Callable, Iterator, Mapping, Sequence

import psutil
from rich.markup import escape

from .config import Config, command_env
from .errors import FatalStepError
from .logging_config import flush_logs
from .steps import Action, ExecutionResult, StepStatus, describe_action
from .ui import FAILURE_GLYPH, SUCCESS_GLYPH, LockingConsole, create_progress

__all__ = [
    "EXIT_NOT_EXECUTABLE",
    "EXIT_NOT_FOUND",
    "StepRunner",
    "exit_status",
    "hint_for_command",
    "terminate_process_tree",
]

logger = logging.getLogger("devstrap.runner")

EXIT_NOT_FOUND = 127
EXIT_NOT_EXECUTABLE = 126
EXCERPT_LINES = 20


def hint_for_command(cmd: Sequence[str], exit_code: int) -> str | None:
    if exit_code == EXIT_NOT_FOUND:
        return f"'{cmd[0]}' was not found on PATH; install it or open a new shell and rerun."
    if exit_code == EXIT_NOT_EXECUTABLE:
        return f"'{cmd[0]}' could not be executed; check its permissions."
    tool = Path(str(cmd[0])).name if cmd else ""
    if tool == "brew":
        return "Run 'brew doctor' and rerun devstrap."
    if tool in {"gh", "git"}:
        return "Verify GitHub access with 'gh auth status' and rerun."
    if tool == "aws":
        return "Check the SSO session with 'aws sso login' and rerun."
    if tool in {"yarn", "npm", "npx"}:
        return "Check network connectivity and the registry credentials, then rerun."
    return None


def exit_status(returncode: int) -> int:
    """Shell-style status: a child killed by signal N reports 128 + N."""

    return 128 - returncode if returncode < 0 else returncode


def terminate_process_tree(pid: int, *, grace: float = 3.0) -> None:
    """Terminate *pid* and every descendant, killing stragglers after *grace*."""

    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    try:
        procs = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        procs = []
    procs.append(parent)
    for proc in procs:
        with suppress(psutil.NoSuchProcess):
            proc.terminate()
    _, alive = psutil.wait_procs(procs, timeout=grace)
    for proc in alive:
        with suppress(psutil.NoSuchProcess):
            proc.kill()
    psutil.wait_procs(alive, timeout=grace)


class StepRunner:
    """Run one action at a time with a live indicator and a one-line verdict.

    Non-interactive actions never touch the terminal: their stdout and stderr
    go to the session log, so the spinner cannot interleave with them.
    """

    def __init__(
        self,
        config: Config,
        console: LockingConsole,
        *,
        grace_period: float = 3.0,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self.config = config
        self.console = console
        self.log_file: Path = config.log_file
        self.grace_period = grace_period
        self._env = env

    # --- public API -----------------------------------------------------
    def run(
        self,
        label: str,
        action: Action,
        *,
        interactive: bool = False,
        cwd: Path | None = None,
        hint: str | None = None,
    ) -> ExecutionResult:
        offset = self._log_offset()
        start = time.perf_counter()
        logger.info("step start: %s (%s)", label, describe_action(action))
        try:
            if callable(action):
                exit_code = self._run_callable(label, action, interactive=interactive)
            else:
                exit_code = self._run_command(label, action, interactive=interactive, cwd=cwd)
        except FatalStepError as exc:
            exc.step = exc.step or label
            logger.error("step %s aborted: %s", label, exc)
            self._report(label, exc.exit_code)
            raise
        except (KeyboardInterrupt, SystemExit):
            logger.warning("step %s interrupted", label)
            raise
        duration = time.perf_counter() - start
        logger.info("step end: %s exit=%s duration=%.2fs", label, exit_code, duration)
        self._report(label, exit_code)
        if exit_code != 0 and hint is None and not callable(action):
            hint = hint_for_command([str(part) for part in action], exit_code)
        return ExecutionResult(
            step_name=label,
            exit_code=exit_code,
            duration=duration,
            log_excerpt=self._excerpt(offset),
            status=StepStatus.SUCCESS if exit_code == 0 else StepStatus.FAILED,
            hint=hint if exit_code != 0 else None,
        )

    def probe(self, cmd: Sequence[str], *, cwd: Path | None = None) -> subprocess.CompletedProcess[str] | None:
        """Run a read-only query command quietly, returning ``None`` if it cannot start."""

        try:
            return subprocess.run(
                [str(part) for part in cmd],
                cwd=cwd,
                env=self.env,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError:
            logger.debug("probe could not start: %s", " ".join(map(str, cmd)), exc_info=True)
            return None

    def run_logged(
        self,
        cmd: Sequence[str],
        *,
        cwd: Path | None = None,
        input: bytes | None = None,
        env: Mapping[str, str] | None = None,
    ) -> int:
        """Run *cmd* from inside a callable action, output to the session log."""

        cmd = [str(part) for part in cmd]
        logger.info("$ %s", " ".join(cmd))
        flush_logs()
        with self.log_file.open("ab") as sink:
            proc = self._spawn(
                cmd,
                cwd=cwd,
                stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
                stdout=sink,
                env=env,
            )
            if isinstance(proc, int):
                return proc
            try:
                proc.communicate(input)
            except BaseException:
                terminate_process_tree(proc.pid, grace=self.grace_period)
                raise
            return exit_status(proc.returncode)

    def chain(self, *cmds: Sequence[str], cwd: Path | None = None) -> Callable[[], int]:
        """Action running *cmds* in order, stopping at the first failure."""

        def action() -> int:
            for cmd in cmds:
                rc = self.run_logged(cmd, cwd=cwd)
                if rc != 0:
                    return rc
            return 0

        action.__qualname__ = " && ".join(" ".join(map(str, cmd)) for cmd in cmds)
        return action

    @property
    def env(self) -> dict[str, str]:
        return command_env(self.config, self._env)

    # --- execution ------------------------------------------------------
    def _run_command(
        self,
        label: str,
        action: Sequence[str],
        *,
        interactive: bool,
        cwd: Path | None,
    ) -> int:
        cmd = [str(part) for part in action]
        logger.info("$ %s%s", " ".join(cmd), f"  (cwd={cwd})" if cwd else "")
        flush_logs()
        if interactive:
            proc = self._spawn(cmd, cwd=cwd, stdin=None, stdout=None)
            if isinstance(proc, int):
                return proc
            return self._wait(proc)

        self.log_file.parent.mkdir(parents=True, exist_ok=True)
        with self.log_file.open("ab") as sink:
            proc = self._spawn(cmd, cwd=cwd, stdin=subprocess.DEVNULL, stdout=sink)
            if isinstance(proc, int):
                return proc
            with self._indicator(label):
                return self._wait(proc)

    def _spawn(
        self,
        cmd: list[str],
        *,
        cwd: Path | None,
        stdin,
        stdout,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.Popen | int:
        try:
            return subprocess.Popen(
                cmd,
                cwd=cwd,
                env=dict(env) if env is not None else self.env,
                stdin=stdin,
                stdout=stdout,
                stderr=subprocess.STDOUT if stdout is not None else None,
            )
        except FileNotFoundError:
            logger.error("command not found: %s", cmd[0])
            return EXIT_NOT_FOUND
        except PermissionError:
            logger.error("command not executable: %s", cmd[0])
            return EXIT_NOT_EXECUTABLE
        except OSError as exc:
            logger.error("command could not start: %s (%s)", cmd[0], exc)
            return EXIT_NOT_EXECUTABLE

    def _wait(self, proc: subprocess.Popen) -> int:
        try:
            return exit_status(proc.wait())
        except BaseException:
            terminate_process_tree(proc.pid, grace=self.grace_period)
            with suppress(subprocess.TimeoutExpired):
                proc.wait(timeout=self.grace_period)
            raise

    def _run_callable(self, label: str, action: Callable[[], int], *, interactive: bool) -> int:
        if interactive:
            return self._call(action)
        with self._indicator(label):
            return self._call(action)

    def _call(self, action: Callable[[], int]) -> int:
        try:
            result = action()
        except FatalStepError:
            raise
        except Exception:
            logger.exception("action %s failed", describe_action(action))
            return 1
        return int(result or 0)

    # --- terminal -------------------------------------------------------
    @contextmanager
    def _indicator(self, label: str) -> Iterator[None]:
        progress = create_progress(
            self.console,
            colors=self.config.rainbow_colors,
            refresh_per_second=self.config.refresh_per_second,
            disable=self.config.no_anim,
        )
        with progress:
            progress.add_task(escape(label), total=None)
            yield

    def _report(self, label: str, exit_code: int) -> None:
        if exit_code == 0:
            self.console.print(f"[green]{SUCCESS_GLYPH}[/] {escape(label)}")
        else:
            self.console.print(f"[red]{FAILURE_GLYPH}[/] {escape(label)} (exit {exit_code})")

    # --- session log ----------------------------------------------------
    def _log_offset(self) -> int:
        flush_logs()
        try:
            return self.log_file.stat().st_size
        except FileNotFoundError:
            return 0

    def _excerpt(self, offset: int) -> str:
        flush_logs()
        try:
            with self.log_file.open("rb") as handle:
                handle.seek(offset)
                data = handle.read()
        except FileNotFoundError:
            return ""
        lines = data.decode("utf-8", errors="replace").splitlines()
        return "\n".join(lines[-EXCERPT_LINES:])
