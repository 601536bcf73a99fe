import io
import os
import signal
import subprocess
import sys
from dataclasses import replace

import pytest
from rich.console import Console

from _helpers import py, screen_lines
from devstrap import runner as runner_mod
from devstrap.errors import FatalStepError
from devstrap.runner import EXIT_NOT_FOUND, StepRunner, exit_status, hint_for_command
from devstrap.steps import StepStatus
from devstrap.ui import LockingConsole


def test_success_prints_single_line_and_keeps_output_out_of_terminal(runner, console, config):
    result = runner.run("Say hello", py("print('hello from child')"))

    assert result.exit_code == 0
    assert result.status is StepStatus.SUCCESS
    assert screen_lines(console) == ["✓ Say hello"]
    assert "hello from child" in config.log_file.read_text()
    assert "hello from child" in result.log_excerpt


def test_failure_reports_real_exit_status(runner, console):
    result = runner.run("Break things", py("import sys; sys.exit(1)"))

    assert result.exit_code == 1
    assert result.status is StepStatus.FAILED
    assert screen_lines(console)[-1] == "✗ Break things (exit 1)"


@pytest.mark.parametrize("code", [2, 3, 42])
def test_exit_status_is_never_swallowed(runner, code):
    result = runner.run("exit", py(f"import sys; sys.exit({code})"))
    assert result.exit_code == code


def test_missing_executable_is_synthetic_failure(runner, console):
    result = runner.run("Ghost", ["devstrap-definitely-missing-binary"])

    assert result.exit_code == EXIT_NOT_FOUND
    assert screen_lines(console) == [f"✗ Ghost (exit {EXIT_NOT_FOUND})"]
    assert result.hint and "not found" in result.hint


def test_stderr_goes_to_session_log(runner, console, config):
    runner.run("Warn", py("import sys; sys.stderr.write('careful now\\n'); sys.exit(4)"))

    assert "careful now" in config.log_file.read_text()
    assert "careful now" not in console.raw.file.getvalue()


def test_session_log_is_appended_not_truncated(runner, config):
    runner.run("first", py("print('one')"))
    runner.run("second", py("print('two')"))

    text = config.log_file.read_text()
    assert text.index("one") < text.index("two")


def test_callable_action_status(runner, console):
    assert runner.run("callable", lambda: 0).exit_code == 0
    assert runner.run("callable fails", lambda: 5).exit_code == 5
    assert screen_lines(console) == ["✓ callable", "✗ callable fails (exit 5)"]


def test_callable_exception_is_logged_as_failure(runner, config):
    def explode():
        raise ValueError("kaboom")

    result = runner.run("explode", explode)

    assert result.exit_code == 1
    log_text = config.log_file.read_text()
    assert "ValueError: kaboom" in log_text


def test_fatal_error_propagates_after_status_line(runner, console):
    def refuse():
        raise FatalStepError("nope", exit_code=3)

    with pytest.raises(FatalStepError) as info:
        runner.run("Refuse", refuse)

    assert info.value.step == "Refuse"
    assert screen_lines(console) == ["✗ Refuse (exit 3)"]


def test_cwd_is_honoured(runner, tmp_path, config):
    workdir = tmp_path / "work"
    workdir.mkdir()
    runner.run("pwd", py("import os; print('cwd=' + os.getcwd())"), cwd=workdir)
    assert f"cwd={workdir}" in config.log_file.read_text()


def test_brew_bin_is_first_on_child_path(runner, config):
    runner.run("path", py("import os; print('first=' + os.environ['PATH'].split(os.pathsep)[0])"))
    assert f"first={config.brew_prefix / 'bin'}" in config.log_file.read_text()


def test_run_logged_feeds_stdin(runner, config):
    rc = runner.run_logged(py("import sys; print('got ' + sys.stdin.read().strip())"), input=b"secret-ish\n")
    assert rc == 0
    assert "got secret-ish" in config.log_file.read_text()


def test_chain_stops_at_first_failure(runner, tmp_path):
    marker = tmp_path / "ran-third"
    action = runner.chain(
        py("pass"),
        py("import sys; sys.exit(6)"),
        py(f"open({str(marker)!r}, 'w').close()"),
    )
    assert action() == 6
    assert not marker.exists()


def test_probe_returns_none_when_binary_missing(runner):
    assert runner.probe(["devstrap-definitely-missing-binary"]) is None
    completed = runner.probe(py("print('x')"))
    assert completed is not None and completed.stdout.strip() == "x"


def test_interrupt_terminates_child_and_reraises(runner, monkeypatch):
    killed = []
    real_wait = subprocess.Popen.wait

    def interrupted_wait(self, timeout=None):
        if timeout is None:
            raise KeyboardInterrupt
        return real_wait(self, timeout=timeout)

    def fake_terminate(pid, *, grace):
        killed.append(pid)
        os.kill(pid, signal.SIGKILL)

    monkeypatch.setattr(subprocess.Popen, "wait", interrupted_wait)
    monkeypatch.setattr(runner_mod, "terminate_process_tree", fake_terminate)

    with pytest.raises(KeyboardInterrupt):
        runner.run("Sleep", py("import time; time.sleep(30)"))
    assert len(killed) == 1


def test_animated_indicator_leaves_no_partial_line(config):
    terminal = LockingConsole(Console(file=io.StringIO(), width=80, force_terminal=True, color_system=None))
    animated = StepRunner(replace(config, no_anim=False, refresh_per_second=50), terminal)

    result = animated.run("Slow fail", py("import time, sys; time.sleep(0.3); sys.exit(1)"))

    assert result.exit_code == 1
    assert screen_lines(terminal)[-1] == "✗ Slow fail (exit 1)"


def test_hints_by_tool():
    assert "brew doctor" in hint_for_command(["brew", "install", "gh"], 1)
    assert "gh auth status" in hint_for_command(["gh", "repo", "clone", "a/b"], 1)
    assert hint_for_command([sys.executable, "-c", "pass"], 1) is None


@pytest.mark.parametrize("returncode,expected", [(0, 0), (3, 3), (-signal.SIGKILL, 137), (-signal.SIGTERM, 143)])
def test_exit_status_follows_shell_convention(returncode, expected):
    assert exit_status(returncode) == expected


def test_run_logged_reports_signal_death(runner):
    killed = py("import os, signal; os.kill(os.getpid(), signal.SIGTERM)")
    assert runner.run_logged(killed) == 128 + signal.SIGTERM
