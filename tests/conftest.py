from __future__ import annotations

import io
import signal
from pathlib import Path

import pytest
from rich.console import Console

from devstrap.config import Config
from devstrap.logging_config import configure_logging, reset_logging
from devstrap.runner import StepRunner
from devstrap.ui import LockingConsole


@pytest.fixture()
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture()
def config(home: Path, tmp_path: Path) -> Config:
    return Config.for_home(
        home,
        brew_prefix=tmp_path / "brew",
        use_sudo=False,
        no_anim=True,
        keepalive_interval=0.05,
    )


@pytest.fixture()
def console() -> LockingConsole:
    return LockingConsole(Console(file=io.StringIO(), width=120, color_system=None, force_terminal=False))


@pytest.fixture(autouse=True)
def _process_state_isolation():
    handlers = {signum: signal.getsignal(signum) for signum in (signal.SIGTERM, signal.SIGHUP)}
    yield
    reset_logging()
    for signum, handler in handlers.items():
        signal.signal(signum, handler)


@pytest.fixture()
def runner(config: Config, console: LockingConsole) -> StepRunner:
    configure_logging(config.log_file)
    return StepRunner(config, console, grace_period=1.0)
