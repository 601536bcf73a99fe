"""Named, delimited blocks managed inside user text files.

Shell profiles and ``~/.ssh/config`` are shared with the user, so devstrap
never appends blindly. Each managed region is wrapped in begin/end markers
and replaced in place on rerun::

    # >>> devstrap:homebrew >>>
    eval "$(/opt/homebrew/bin/brew shellenv)"
    # <<< devstrap:homebrew <<<
"""
from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from string import Template
from typing import Mapping

from .errors import DevstrapError

__all__ = [
    "apply_block",
    "block_is_current",
    "render_block",
    "render_template",
    "write_atomic",
]


def _begin(name: str) -> str:
    return f"# >>> devstrap:{name} >>>"


def _end(name: str) -> str:
    return f"# <<< devstrap:{name} <<<"


def render_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute ``$name`` placeholders; unknown names are an error."""

    return Template(template).substitute(values)


def render_block(name: str, body: str) -> str:
    if not re.fullmatch(r"[A-Za-z0-9_.-]+", name):
        raise ValueError(f"invalid block name: {name!r}")
    return f"{_begin(name)}\n{body.strip()}\n{_end(name)}\n"


def _pattern(name: str) -> re.Pattern[str]:
    return re.compile(
        rf"^{re.escape(_begin(name))}\n.*?^{re.escape(_end(name))}\n?",
        re.MULTILINE | re.DOTALL,
    )


def _check_markers(path: Path, text: str, name: str) -> None:
    begins = len(re.findall(rf"^{re.escape(_begin(name))}$", text, re.MULTILINE))
    if begins != len(_pattern(name).findall(text)):
        raise DevstrapError(
            f"{path} has an unterminated '{_begin(name)}' marker; remove it or add '{_end(name)}' and rerun."
        )


def block_is_current(path: Path, name: str, body: str) -> bool:
    """Return ``True`` when *path* holds exactly one up-to-date block."""

    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return False
    matches = _pattern(name).findall(text)
    if len(matches) != 1:
        return False
    return matches[0].rstrip("\n") == render_block(name, body).rstrip("\n")


def write_atomic(path: Path, text: str, *, mode: int | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        if mode is None:
            mode = path.stat().st_mode & 0o7777 if path.exists() else 0o644
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def apply_block(path: Path, name: str, body: str, *, mode: int | None = None) -> bool:
    """Replace the named block in *path* or insert it at the end.

    Duplicate copies left by older runs collapse into one. A begin marker
    without its end marker raises :class:`DevstrapError` and the file is left
    untouched. Returns ``True`` when the file was changed.
    """

    try:
        original = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        original = ""
    _check_markers(path, original, name)
    block = render_block(name, body)
    pattern = _pattern(name)

    if pattern.search(original):
        first = True

        def _replace(_match: re.Match[str]) -> str:
            nonlocal first
            if first:
                first = False
                return block
            return ""

        updated = pattern.sub(_replace, original)
    else:
        updated = original
        if updated and not updated.endswith("\n"):
            updated += "\n"
        if updated:
            updated += "\n"
        updated += block

    if updated == original:
        return False
    write_atomic(path, updated, mode=mode)
    return True
