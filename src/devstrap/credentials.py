"""GitHub token and SSH key handling."""
from __future__ import annotations

import logging
import os
from typing import Callable, Mapping

from rich.prompt import Prompt

from .blocks import write_atomic
from .config import Config
from .errors import FatalStepError
from .runner import StepRunner

__all__ = [
    "SSH_CONFIG_TEMPLATE",
    "collect_token",
    "gh_login",
    "public_key_material",
    "resolve_token",
    "ssh_key_title",
    "ssh_keygen_command",
    "token_available",
]

logger = logging.getLogger("devstrap.credentials")

SSH_CONFIG_TEMPLATE = """\
Host github.com
  HostName github.com
  User git
  AddKeysToAgent yes
  IgnoreUnknown UseKeychain
  UseKeychain yes
  IdentityFile $ssh_key
"""

TokenPrompt = Callable[[], str]


def _default_prompt() -> str:
    return Prompt.ask("GitHub personal access token", password=True, default="", show_default=False)


def resolve_token(config: Config, env: Mapping[str, str] | None = None) -> str | None:
    """Return a previously captured token from the environment or token file."""

    env = os.environ if env is None else env
    value = (env.get(config.token_env) or "").strip()
    if value:
        return value
    try:
        value = config.token_file.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    return value or None


def token_available(config: Config, env: Mapping[str, str] | None = None) -> Callable[[], bool]:
    return lambda: resolve_token(config, env) is not None


def collect_token(
    config: Config,
    *,
    prompt: TokenPrompt | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    """Prompt for a token and store it with owner-only permissions.

    An empty answer aborts the run; the token file is left untouched.
    """

    if resolve_token(config, env) is not None:
        return 0
    answer = (prompt or _default_prompt)().strip()
    if not answer:
        raise FatalStepError("No GitHub token entered; cannot authenticate.")
    write_atomic(config.token_file, answer + "\n", mode=0o600)
    logger.info("GitHub token stored in %s", config.token_file)
    return 0


def ssh_keygen_command(config: Config) -> list[str]:
    comment = config.git_email or f"{os.environ.get('USER', 'dev')}@devstrap"
    return ["ssh-keygen", "-t", "ed25519", "-N", "", "-C", comment, "-f", str(config.ssh_key)]


def public_key_material(config: Config) -> str | None:
    """Return the base64 body of the public key, as listed by ``gh ssh-key list``."""

    try:
        parts = config.ssh_public_key.read_text(encoding="utf-8").split()
    except FileNotFoundError:
        return None
    return parts[1] if len(parts) >= 2 else None


def gh_login(config: Config, runner: StepRunner, env: Mapping[str, str] | None = None) -> Callable[[], int]:
    """Action that feeds the stored token to ``gh auth login --with-token``."""

    def action() -> int:
        token = resolve_token(config, env)
        if token is None:
            raise FatalStepError("No GitHub token available for gh auth login.")
        child_env = runner.env
        # gh refuses to store credentials while GITHUB_TOKEN is exported
        child_env.pop("GITHUB_TOKEN", None)
        child_env.pop("GH_TOKEN", None)
        return runner.run_logged(
            ["gh", "auth", "login", "--hostname", "github.com", "--git-protocol", "ssh", "--with-token"],
            input=(token + "\n").encode("utf-8"),
            env=child_env,
        )

    action.__qualname__ = "gh auth login --with-token"
    return action


def ssh_key_title(config: Config) -> str:
    host = os.uname().nodename if hasattr(os, "uname") else "workstation"
    return f"devstrap {host}"
