import pytest

from _helpers import py, screen_lines
from devstrap import cli
from devstrap.checks import block_current, file_exists
from devstrap.errors import ConfigError
from devstrap.keepalive import PrivilegeKeepAlive
from devstrap.plan import _block_action
from devstrap.steps import Criticality, Step


def test_marker_removed_after_fatal_abort(config, console):
    seen = {}

    def steps(cfg, runner):
        def peek():
            seen["marker"] = cfg.keepalive_marker.exists()
            return 0

        return [
            Step("Peek at marker", peek),
            Step("Fatal install", py("import sys; sys.exit(3)")),
        ]

    assert cli.run(config, console=console, steps_factory=steps) == 3
    assert seen["marker"] is True
    assert not config.keepalive_marker.exists()
    assert "Run Summary" in console.raw.file.getvalue()


def test_interrupt_exits_130_and_cleans_up(config, console):
    def steps(cfg, runner):
        def interrupt():
            raise KeyboardInterrupt

        return [Step("Long download", interrupt)]

    assert cli.run(config, console=console, steps_factory=steps) == 130
    assert not config.keepalive_marker.exists()
    assert "Interrupted." in screen_lines(console)


def test_refused_privileges_abort_before_any_step(config, console):
    ran = []

    def keepalive(cfg):
        return PrivilegeKeepAlive(cfg.keepalive_marker, command_runner=lambda cmd, interactive: 1)

    def steps(cfg, runner):
        return [Step("Anything", lambda: ran.append(1) or 0)]

    assert cli.run(config, console=console, steps_factory=steps, keepalive_factory=keepalive) == 1
    assert ran == []
    assert not config.keepalive_marker.exists()


def test_success_run(config, console):
    def steps(cfg, runner):
        return [
            Step("Already there", lambda: 0, precondition=lambda: True),
            Step("Optional", lambda: 9, criticality=Criticality.ADVISORY),
        ]

    assert cli.run(config, console=console, steps_factory=steps) == 0
    lines = screen_lines(console)
    assert any(line == "• Acquire administrator privileges (not required)" for line in lines)
    assert "• Already there (already satisfied)" in lines
    assert "✗ Optional (exit 9)" in lines


def test_second_run_has_no_duplicate_side_effects(config, console):
    key = config.ssh_key
    keygen = py(
        "import os, sys; p = sys.argv[1]; os.makedirs(os.path.dirname(p), exist_ok=True); "
        "open(p, 'w').write(os.urandom(16).hex())"
    ) + [str(key)]

    def steps(cfg, runner):
        return [
            Step(
                "Configure shell",
                _block_action(cfg.shell_profile, "homebrew", 'eval "$(brew shellenv)"'),
                precondition=block_current(cfg.shell_profile, "homebrew", 'eval "$(brew shellenv)"'),
            ),
            Step("Generate SSH key", keygen, precondition=file_exists(key)),
            Step(
                "Configure SSH",
                _block_action(cfg.ssh_config, "github", "Host github.com", mode=0o600),
                precondition=block_current(cfg.ssh_config, "github", "Host github.com"),
            ),
        ]

    config.shell_profile.write_text("export LANG=en_US.UTF-8\n")
    assert cli.run(config, console=console, steps_factory=steps) == 0
    first_key = key.read_text()
    first_profile = config.shell_profile.read_text()

    assert cli.run(config, console=console, steps_factory=steps) == 0

    assert key.read_text() == first_key
    assert config.shell_profile.read_text() == first_profile
    assert first_profile.count("# >>> devstrap:homebrew >>>") == 1
    assert config.ssh_config.read_text().count("# >>> devstrap:github >>>") == 1
    assert screen_lines(console).count("• Generate SSH key (already satisfied)") == 1


def test_main_version(capsys):
    with pytest.raises(SystemExit) as info:
        cli.main(["--version"])
    assert info.value.code == 0
    assert "devstrap" in capsys.readouterr().out


def test_main_config_error(monkeypatch):
    def broken(*args, **kwargs):
        raise ConfigError("bad file")

    monkeypatch.setattr(cli, "load_config", broken)
    with pytest.raises(SystemExit) as info:
        cli.main([])
    assert info.value.code == 2


def test_main_runs_with_loaded_config(monkeypatch, config):
    captured = {}

    def fake_run(cfg, *, console):
        captured["config"] = cfg
        return 0

    monkeypatch.setattr(cli, "load_config", lambda: config)
    monkeypatch.setattr(cli, "run", fake_run)
    with pytest.raises(SystemExit) as info:
        cli.main([])
    assert info.value.code == 0
    assert captured["config"] is config


def test_main_bad_env_value_exits_2(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("DEVSTRAP_HOME", str(tmp_path))
    monkeypatch.setenv("DEVSTRAP_KEEPALIVE_INTERVAL", "five")
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit) as info:
        cli.main([])
    assert info.value.code == 2
    assert "keepalive_interval" in capsys.readouterr().out
    assert not (tmp_path / ".devstrap").exists()
