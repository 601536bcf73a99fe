import pytest

from devstrap.blocks import block_is_current
from devstrap.plan import build_steps
from devstrap.runner import StepRunner
from devstrap.steps import Criticality

EXPECTED_ORDER = [
    "Install Homebrew",
    "Configure shell for Homebrew",
    "Install GitHub CLI",
    "Collect GitHub token",
    "Generate SSH key",
    "Configure SSH for GitHub",
    "Authenticate GitHub CLI",
    "Register SSH key with GitHub",
    "Clone acme/monorepo",
    "Install Node.js",
    "Install Yarn",
    "Install AWS CLI",
    "Authenticate AWS CLI",
    "Write AWS CLI config",
    "Install project dependencies",
    "Clone submodules",
    "Build project",
    "Install Docker",
    "Fetch environment secrets",
    "Install PostgreSQL",
    "Start PostgreSQL",
    "Create database role postgres",
    "Run database migrations",
    "Install 1Password",
]


@pytest.fixture()
def isolated_runner(config, console, tmp_path):
    empty = tmp_path / "empty-path"
    empty.mkdir()
    return StepRunner(config, console, env={"PATH": str(empty)})


@pytest.fixture()
def steps(config, isolated_runner):
    return {step.name: step for step in build_steps(config, isolated_runner, env={})}


def test_step_order(config, isolated_runner):
    assert [step.name for step in build_steps(config, isolated_runner, env={})] == EXPECTED_ORDER


def test_criticality_and_interaction(steps):
    advisory = [name for name, step in steps.items() if step.criticality is Criticality.ADVISORY]
    assert advisory == ["Install 1Password"]
    assert steps["Collect GitHub token"].interactive
    assert steps["Authenticate AWS CLI"].interactive
    assert not steps["Install Homebrew"].interactive


def test_fresh_machine_has_nothing_satisfied(steps, home, tmp_path):
    before = sorted(str(p) for p in tmp_path.rglob("*"))

    satisfied = [name for name, step in steps.items() if step.is_satisfied()]

    assert satisfied == []
    assert sorted(str(p) for p in tmp_path.rglob("*")) == before


def test_project_steps_run_inside_repository(steps, config):
    for name in ("Install project dependencies", "Clone submodules", "Build project", "Run database migrations"):
        assert steps[name].cwd == config.repo_dir
    assert steps["Run database migrations"].precondition is None


def test_shell_block_step_is_idempotent(steps, config):
    step = steps["Configure shell for Homebrew"]
    config.shell_profile.write_text("export PATH=$HOME/bin:$PATH\n")

    assert step.action() == 0
    assert step.is_satisfied()
    assert step.action() == 0

    text = config.shell_profile.read_text()
    assert text.count("brew shellenv") == 1
    assert f'eval "$({config.brew} shellenv)"' in text
    assert block_is_current(config.shell_profile, "homebrew", f'eval "$({config.brew} shellenv)"')


def test_ssh_config_step(steps, config):
    step = steps["Configure SSH for GitHub"]
    assert step.action() == 0
    text = config.ssh_config.read_text()
    assert f"IdentityFile {config.ssh_key}" in text
    assert config.ssh_config.stat().st_mode & 0o777 == 0o600
    assert step.is_satisfied()


def test_aws_config_copied_verbatim(steps, config):
    step = steps["Write AWS CLI config"]
    template = config.repo_dir / config.aws_config_template

    assert step.action() == 1
    assert not config.aws_config.exists()

    template.parent.mkdir(parents=True)
    template.write_text("[profile dev]\nsso_region = us-east-1\n")
    assert step.action() == 0
    assert config.aws_config.read_text() == template.read_text()
    assert step.is_satisfied()


def test_token_step_satisfied_by_token_file(steps, config):
    config.token_file.parent.mkdir(parents=True)
    config.token_file.write_text("ghp_saved\n")
    assert steps["Collect GitHub token"].is_satisfied()


def test_clone_step_satisfied_by_checkout(steps, config):
    (config.repo_dir / ".git").mkdir(parents=True)
    assert steps["Clone acme/monorepo"].is_satisfied()
    assert steps["Clone acme/monorepo"].action[:3] == ["gh", "repo", "clone"]
