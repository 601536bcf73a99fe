"""Keep a ``sudo`` grant alive for the whole setup run."""
from __future__ import annotations

import atexit
import logging
import os
import signal
import subprocess
import threading
from pathlib import Path
from typing import Callable, Sequence

from .errors import PrivilegeError

__all__ = ["PrivilegeKeepAlive", "install_signal_handlers", "running_as_root"]

logger = logging.getLogger("devstrap.keepalive")

CommandRunner = Callable[[Sequence[str], bool], int]


def _run_sudo(cmd: Sequence[str], interactive: bool) -> int:
    try:
        completed = subprocess.run(
            list(cmd),
            stdin=None if interactive else subprocess.DEVNULL,
            stdout=None if interactive else subprocess.DEVNULL,
            stderr=None if interactive else subprocess.DEVNULL,
            check=False,
        )
    except OSError as exc:
        logger.error("could not run %s: %s", cmd[0], exc)
        return 127
    return completed.returncode


class PrivilegeKeepAlive:
    """Validate ``sudo`` once, then refresh the grant in a background thread.

    The refresh thread stops when the shared ``stop`` event is set. Release
    runs on every exit path: context exit, ``atexit``, and termination
    signals converted to ``SystemExit`` by :func:`install_signal_handlers`.
    """

    def __init__(
        self,
        marker: Path,
        *,
        interval: float = 5.0,
        enabled: bool = True,
        command_runner: CommandRunner | None = None,
    ) -> None:
        self.marker = marker
        self.interval = interval
        self.enabled = enabled
        self.stop = threading.Event()
        self.refreshes = 0
        self._run = command_runner or _run_sudo
        self._thread: threading.Thread | None = None
        self._released = threading.Event()
        self._lock = threading.Lock()

    def __enter__(self) -> "PrivilegeKeepAlive":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    def start(self) -> None:
        if self.enabled:
            logger.info("validating sudo credentials")
            rc = self._run(["sudo", "-v"], True)
            if rc != 0:
                raise PrivilegeError(f"Could not obtain administrator privileges (sudo exit {rc}).")
        self.marker.parent.mkdir(parents=True, exist_ok=True)
        self.marker.write_text(f"{os.getpid()}\n", encoding="utf-8")
        atexit.register(self.release)
        if self.enabled:
            self._thread = threading.Thread(target=self._loop, name="sudo-keepalive", daemon=True)
            self._thread.start()
        logger.debug("keep-alive started (marker=%s, sudo=%s)", self.marker, self.enabled)

    def _loop(self) -> None:
        while not self.stop.wait(self.interval):
            rc = self._run(["sudo", "-n", "-v"], False)
            self.refreshes += 1
            if rc != 0:
                logger.warning("sudo refresh failed with exit %s", rc)

    def release(self) -> None:
        with self._lock:
            if self._released.is_set():
                return
            self._released.set()
        self.stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval + 1.0)
        self.marker.unlink(missing_ok=True)
        atexit.unregister(self.release)
        logger.debug("keep-alive released")

    @property
    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


def running_as_root() -> bool:
    return hasattr(os, "geteuid") and os.geteuid() == 0


def _raise_exit(signum: int, _frame) -> None:
    raise SystemExit(128 + signum)


def install_signal_handlers() -> None:
    """Turn SIGTERM/SIGHUP into ``SystemExit`` so cleanup blocks run."""

    if threading.current_thread() is not threading.main_thread():
        return
    for name in ("SIGTERM", "SIGHUP"):
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, _raise_exit)
