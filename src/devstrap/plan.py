"""The ordered step catalogue for the monorepo development environment.

Order matters: later preconditions look at artifacts earlier steps leave
behind (``brew`` on PATH, the token file, the cloned repository).
"""
from __future__ import annotations

import logging
import shutil
from typing import Callable, Mapping

from . import checks
from .blocks import apply_block, render_template
from .config import Config
from .credentials import (
    SSH_CONFIG_TEMPLATE,
    TokenPrompt,
    collect_token,
    gh_login,
    public_key_material,
    ssh_key_title,
    ssh_keygen_command,
    token_available,
)
from .runner import StepRunner
from .steps import Criticality, Step

__all__ = ["HOMEBREW_INSTALL_URL", "SHELLENV_TEMPLATE", "build_steps"]

logger = logging.getLogger("devstrap.plan")

HOMEBREW_INSTALL_URL = "https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh"

SHELLENV_TEMPLATE = 'eval "$$($brew shellenv)"\n'


def _block_action(path, name: str, body: str, *, mode: int | None = None) -> Callable[[], int]:
    def action() -> int:
        changed = apply_block(path, name, body, mode=mode)
        logger.info("managed block %s in %s %s", name, path, "updated" if changed else "unchanged")
        return 0

    action.__qualname__ = f"write block {name} -> {path}"
    return action


def _ssh_keygen_action(config: Config, runner: StepRunner) -> Callable[[], int]:
    def action() -> int:
        config.ssh_key.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        return runner.run_logged(ssh_keygen_command(config))

    action.__qualname__ = "ssh-keygen -t ed25519"
    return action


def _copy_aws_config(config: Config) -> Callable[[], int]:
    source = config.repo_dir / config.aws_config_template

    def action() -> int:
        if not source.is_file():
            logger.error("AWS config template missing: %s", source)
            return 1
        config.aws_config.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, config.aws_config)
        logger.info("copied %s -> %s", source, config.aws_config)
        return 0

    action.__qualname__ = f"copy {source}"
    return action


def build_steps(
    config: Config,
    runner: StepRunner,
    *,
    env: Mapping[str, str] | None = None,
    prompt: TokenPrompt | None = None,
) -> list[Step]:
    """Return every setup step in execution order.

    *prompt* replaces the interactive token question, e.g. for unattended runs.
    """

    repo = config.repo_dir
    values = config.template_vars()
    shellenv = render_template(SHELLENV_TEMPLATE, values)
    ssh_stanza = render_template(SSH_CONFIG_TEMPLATE, values)
    aws_template = repo / config.aws_config_template
    psql_role_query = f"SELECT 1 FROM pg_roles WHERE rolname = '{config.postgres_role}'"

    return [
        Step(
            "Install Homebrew",
            ["/bin/bash", "-c", f'curl -fsSL "{HOMEBREW_INSTALL_URL}" | /bin/bash'],
            precondition=checks.on_path(runner, "brew"),
        ),
        Step(
            "Configure shell for Homebrew",
            _block_action(config.shell_profile, "homebrew", shellenv),
            precondition=checks.block_current(config.shell_profile, "homebrew", shellenv),
        ),
        Step(
            "Install GitHub CLI",
            ["brew", "install", "gh"],
            precondition=checks.on_path(runner, "gh"),
        ),
        Step(
            "Collect GitHub token",
            lambda: collect_token(config, prompt=prompt, env=env),
            precondition=token_available(config, env),
            interactive=True,
            hint=f"Create a token with repo and admin:public_key scopes, or export {config.token_env}.",
        ),
        Step(
            "Generate SSH key",
            _ssh_keygen_action(config, runner),
            precondition=checks.file_exists(config.ssh_key),
        ),
        Step(
            "Configure SSH for GitHub",
            _block_action(config.ssh_config, "github", ssh_stanza, mode=0o600),
            precondition=checks.block_current(config.ssh_config, "github", ssh_stanza),
        ),
        Step(
            "Authenticate GitHub CLI",
            gh_login(config, runner, env),
            precondition=checks.probe_ok(runner, ["gh", "auth", "status", "--hostname", "github.com"]),
        ),
        Step(
            "Register SSH key with GitHub",
            ["gh", "ssh-key", "add", str(config.ssh_public_key), "--title", ssh_key_title(config)],
            precondition=checks.probe_output_contains(
                runner, ["gh", "ssh-key", "list"], lambda: public_key_material(config)
            ),
        ),
        Step(
            f"Clone {config.repo}",
            ["gh", "repo", "clone", config.repo, str(repo)],
            precondition=checks.dir_exists(repo / ".git"),
        ),
        Step(
            "Install Node.js",
            runner.chain(
                ["brew", "install", config.node_formula],
                ["brew", "link", "--overwrite", "--force", config.node_formula],
            ),
            precondition=checks.tool_version_at_least(runner, ["node", "--version"], config.node_min_version),
        ),
        Step(
            "Install Yarn",
            ["npm", "install", "--global", "yarn"],
            precondition=checks.on_path(runner, "yarn"),
        ),
        Step(
            "Install AWS CLI",
            ["brew", "install", "awscli"],
            precondition=checks.on_path(runner, "aws"),
        ),
        Step(
            "Authenticate AWS CLI",
            ["aws", "configure", "sso", "--profile", config.aws_profile],
            precondition=checks.probe_ok(
                runner, ["aws", "sts", "get-caller-identity", "--profile", config.aws_profile]
            ),
            interactive=True,
        ),
        Step(
            "Write AWS CLI config",
            _copy_aws_config(config),
            precondition=checks.files_match(aws_template, config.aws_config),
            hint=f"Expected template at {aws_template}.",
        ),
        Step(
            "Install project dependencies",
            list(config.install_command),
            precondition=checks.dir_exists(repo / "node_modules"),
            cwd=repo,
        ),
        Step(
            "Clone submodules",
            ["git", "submodule", "update", "--init", "--recursive"],
            precondition=checks.probe_output_lacks(
                runner, ["git", "submodule", "status", "--recursive"], r"^[-+U]", cwd=repo
            ),
            cwd=repo,
        ),
        Step(
            "Build project",
            list(config.build_command),
            precondition=checks.dir_exists(repo / config.build_output),
            cwd=repo,
        ),
        Step(
            "Install Docker",
            ["brew", "install", "--cask", "docker"],
            precondition=checks.on_path(runner, "docker"),
        ),
        Step(
            "Fetch environment secrets",
            list(config.secrets_command),
            precondition=checks.file_exists(repo / config.secrets_file),
            cwd=repo,
        ),
        Step(
            "Install PostgreSQL",
            runner.chain(
                ["brew", "install", config.postgres_formula],
                ["brew", "link", "--force", config.postgres_formula],
            ),
            precondition=checks.probe_ok(runner, ["brew", "list", "--versions", config.postgres_formula]),
        ),
        Step(
            "Start PostgreSQL",
            runner.chain(
                ["brew", "services", "start", config.postgres_formula],
                ["pg_isready", "-q", "-t", "30"],
            ),
            precondition=checks.probe_ok(runner, ["pg_isready", "-q"]),
        ),
        Step(
            f"Create database role {config.postgres_role}",
            ["createuser", "--superuser", config.postgres_role],
            precondition=checks.probe_output_contains(
                runner, ["psql", "-d", "postgres", "-tAc", psql_role_query], lambda: "1"
            ),
        ),
        Step(
            "Run database migrations",
            list(config.migrate_command),
            cwd=repo,
        ),
        Step(
            "Install 1Password",
            ["brew", "install", "--cask", "1password"],
            precondition=checks.dir_exists(config.onepassword_app),
            criticality=Criticality.ADVISORY,
        ),
    ]
