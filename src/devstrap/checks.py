"""Side-effect-free preconditions used to skip already-satisfied steps."""
from __future__ import annotations

import filecmp
import logging
import re
import shutil
from pathlib import Path
from typing import Callable, Sequence

from packaging.version import InvalidVersion, Version

from .blocks import block_is_current
from .runner import StepRunner

__all__ = [
    "all_of",
    "block_current",
    "dir_exists",
    "file_exists",
    "files_match",
    "on_path",
    "probe_ok",
    "probe_output_contains",
    "probe_output_lacks",
    "tool_version_at_least",
]

logger = logging.getLogger("devstrap.checks")

Check = Callable[[], bool]

_VERSION_RE = re.compile(r"(\d+(?:\.\d+){0,3})")


def on_path(runner: StepRunner, binary: str) -> Check:
    def check() -> bool:
        return shutil.which(binary, path=runner.env.get("PATH")) is not None

    check.__qualname__ = f"on_path({binary})"
    return check


def tool_version_at_least(runner: StepRunner, cmd: Sequence[str], minimum: str) -> Check:
    """Installed tool reports a version of at least *minimum*."""

    required = Version(minimum)

    def check() -> bool:
        result = runner.probe(cmd)
        if result is None or result.returncode != 0:
            return False
        match = _VERSION_RE.search(result.stdout or "")
        if not match:
            return False
        try:
            found = Version(match.group(1))
        except InvalidVersion:
            return False
        logger.debug("%s reports %s (need >= %s)", cmd[0], found, required)
        return found >= required

    check.__qualname__ = f"tool_version_at_least({cmd[0]}>={minimum})"
    return check


def file_exists(path: Path) -> Check:
    return lambda: path.is_file()


def dir_exists(path: Path) -> Check:
    return lambda: path.is_dir()


def files_match(source: Path, target: Path) -> Check:
    """*target* is a byte-identical copy of *source*."""

    def check() -> bool:
        if not (source.is_file() and target.is_file()):
            return False
        return filecmp.cmp(source, target, shallow=False)

    return check


def block_current(path: Path, name: str, body: str) -> Check:
    return lambda: block_is_current(path, name, body)


def probe_ok(runner: StepRunner, cmd: Sequence[str], *, cwd: Path | None = None) -> Check:
    """Query command exits zero (e.g. ``gh auth status``)."""

    def check() -> bool:
        if cwd is not None and not cwd.is_dir():
            return False
        result = runner.probe(cmd, cwd=cwd)
        return result is not None and result.returncode == 0

    return check


def probe_output_contains(
    runner: StepRunner, cmd: Sequence[str], needle: Callable[[], str | None], *, cwd: Path | None = None
) -> Check:
    """Query command succeeds and its stdout contains the lazily computed *needle*."""

    def check() -> bool:
        expected = needle()
        if not expected:
            return False
        if cwd is not None and not cwd.is_dir():
            return False
        result = runner.probe(cmd, cwd=cwd)
        return result is not None and result.returncode == 0 and expected in (result.stdout or "")

    return check


def probe_output_lacks(
    runner: StepRunner, cmd: Sequence[str], pattern: str, *, cwd: Path | None = None
) -> Check:
    """Query command succeeds and no stdout line matches *pattern*."""

    compiled = re.compile(pattern, re.MULTILINE)

    def check() -> bool:
        if cwd is not None and not cwd.is_dir():
            return False
        result = runner.probe(cmd, cwd=cwd)
        if result is None or result.returncode != 0:
            return False
        return compiled.search(result.stdout or "") is None

    return check


def all_of(*checks: Check) -> Check:
    return lambda: all(check() for check in checks)
