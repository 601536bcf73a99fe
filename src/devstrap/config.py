"""Configuration and environment-derived settings for devstrap."""
from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml

from .errors import ConfigError

__all__ = ["Config", "DEFAULT_RAINBOW", "command_env", "config_files", "load_config"]

DEFAULT_RAINBOW = (
    "#e40303",
    "#ff8c00",
    "#ffed00",
    "#008026",
    "#004dff",
    "#750787",
)

_CONFIG_NAMES: tuple[str, ...] = (".devstrap.yaml", ".devstrap.yml", ".devstrap.json")


@dataclass(frozen=True)
class Config:
    """Immutable runtime configuration shared by the runner and orchestrator."""

    home: Path
    workspace: Path
    token_file: Path
    ssh_key: Path
    ssh_config: Path
    shell_profile: Path
    aws_config: Path
    log_file: Path
    keepalive_marker: Path
    repo: str = "acme/monorepo"
    git_email: str = ""
    token_env: str = "GITHUB_TOKEN"
    brew_prefix: Path = Path("/opt/homebrew")
    node_formula: str = "node@20"
    node_min_version: str = "20.0.0"
    aws_profile: str = "dev"
    aws_config_template: str = "config/aws/config"
    postgres_formula: str = "postgresql@15"
    postgres_role: str = "postgres"
    install_command: Sequence[str] = ("yarn", "install")
    build_command: Sequence[str] = ("yarn", "build")
    build_output: str = "dist"
    secrets_command: Sequence[str] = ("yarn", "env:pull")
    secrets_file: str = ".env"
    migrate_command: Sequence[str] = ("yarn", "db:migrate")
    onepassword_app: Path = Path("/Applications/1Password.app")
    next_action: str = "Open a new terminal, cd into the repository and run 'yarn dev'."
    keepalive_interval: float = 5.0
    refresh_per_second: float = 10.0
    use_sudo: bool = True
    no_anim: bool = False
    rainbow_colors: Sequence[str] = field(default_factory=lambda: DEFAULT_RAINBOW)

    @classmethod
    def for_home(cls, home: Path, **overrides: Any) -> "Config":
        """Build a config whose per-user paths default to locations under *home*."""

        state = home / ".devstrap"
        values: dict[str, Any] = {
            "workspace": home / "src",
            "token_file": state / "github_token",
            "ssh_key": home / ".ssh" / "id_ed25519",
            "ssh_config": home / ".ssh" / "config",
            "shell_profile": home / ".zprofile",
            "aws_config": home / ".aws" / "config",
            "log_file": state / "logs" / "setup.log",
            "keepalive_marker": state / "sudo-keepalive.pid",
        }
        values.update(overrides)
        return cls(home=home, **values)

    @property
    def repo_name(self) -> str:
        return self.repo.rstrip("/").rsplit("/", 1)[-1]

    @property
    def repo_dir(self) -> Path:
        return self.workspace / self.repo_name

    @property
    def ssh_public_key(self) -> Path:
        return self.ssh_key.with_name(self.ssh_key.name + ".pub")

    @property
    def brew(self) -> str:
        return str(self.brew_prefix / "bin" / "brew")

    def template_vars(self) -> dict[str, str]:
        """Values available to ``$name`` substitutions in managed blocks."""

        return {
            "home": str(self.home),
            "brew": self.brew,
            "brew_prefix": str(self.brew_prefix),
            "ssh_key": str(self.ssh_key),
            "repo": self.repo,
            "repo_dir": str(self.repo_dir),
            "aws_profile": self.aws_profile,
        }


def command_env(config: Config, base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Environment for child actions and PATH lookups.

    Homebrew's bin directory is prepended so tools installed by an earlier
    step are visible to later steps without a new shell.
    """

    env = dict(os.environ if base is None else base)
    brew_bin = str(config.brew_prefix / "bin")
    parts = [part for part in env.get("PATH", os.defpath).split(os.pathsep) if part]
    if brew_bin not in parts:
        parts.insert(0, brew_bin)
    env["PATH"] = os.pathsep.join(parts)
    env.update(
        {
            "HOMEBREW_NO_ENV_HINTS": "1",
            "HOMEBREW_NO_AUTO_UPDATE": "1",
            "NONINTERACTIVE": "1",
            "PYTHONUNBUFFERED": "1",
        }
    )
    return env


def config_files(home: Path, cwd: Path) -> list[Path]:
    """Return candidate config files, lowest priority first."""

    candidates = [home / name for name in _CONFIG_NAMES]
    if cwd.resolve() != home.resolve():
        candidates.extend(cwd / name for name in _CONFIG_NAMES)
    return [path for path in candidates if path.is_file()]


def _read_file(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not read {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
    return dict(data)


def _truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() not in {"", "0", "false", "no", "off"}


_ENV_KEYS: dict[str, str] = {
    "DEVSTRAP_REPO": "repo",
    "DEVSTRAP_WORKSPACE": "workspace",
    "DEVSTRAP_GIT_EMAIL": "git_email",
    "DEVSTRAP_TOKEN_ENV": "token_env",
    "DEVSTRAP_TOKEN_FILE": "token_file",
    "DEVSTRAP_SSH_KEY": "ssh_key",
    "DEVSTRAP_SHELL_PROFILE": "shell_profile",
    "DEVSTRAP_BREW_PREFIX": "brew_prefix",
    "DEVSTRAP_AWS_PROFILE": "aws_profile",
    "DEVSTRAP_LOG_FILE": "log_file",
    "DEVSTRAP_KEEPALIVE_MARKER": "keepalive_marker",
    "DEVSTRAP_KEEPALIVE_INTERVAL": "keepalive_interval",
}


def _coerce(name: str, value: Any, home: Path) -> Any:
    if name in {"install_command", "build_command", "secrets_command", "migrate_command"}:
        if isinstance(value, str):
            return tuple(value.split())
        return tuple(str(part) for part in value)
    if name == "rainbow_colors":
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        return tuple(value)
    if name in {"keepalive_interval", "refresh_per_second"}:
        if isinstance(value, bool):
            raise TypeError(f"expected a number, got {value!r}")
        number = float(value)
        if not number > 0:
            raise ValueError(f"must be a positive number, got {value!r}")
        return number
    if name in {"use_sudo", "no_anim"}:
        return value if isinstance(value, bool) else _truthy(str(value))
    if name in _PATH_FIELDS:
        path = Path(str(value)).expanduser()
        return path if path.is_absolute() else home / path
    if name in _STR_FIELDS and not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


_PATH_FIELDS = {f.name for f in fields(Config) if "Path" in str(f.type) and f.name != "home"}
_STR_FIELDS = {f.name for f in fields(Config) if str(f.type) == "str"}


def _setting(name: str, value: Any, home: Path, source: str) -> Any:
    try:
        return _coerce(name, value, home)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for {name} in {source}: {exc}") from exc


def load_config(
    env: Mapping[str, str] | None = None,
    *,
    home: Path | None = None,
    cwd: Path | None = None,
    is_tty: bool | None = None,
) -> Config:
    """Build the effective configuration from files and environment."""

    env = os.environ if env is None else env
    home = Path(home or env.get("DEVSTRAP_HOME") or Path.home()).expanduser()
    cwd = Path(cwd or Path.cwd())
    known = {f.name for f in fields(Config)} - {"home"}

    values: dict[str, Any] = {}
    for path in config_files(home, cwd):
        for key, value in _read_file(path).items():
            name = str(key).replace("-", "_")
            if name in known:
                values[name] = _setting(name, value, home, str(path))

    for var, name in _ENV_KEYS.items():
        if env.get(var):
            values[name] = _setting(name, env[var], home, var)
    if env.get("DEVSTRAP_COLORS"):
        values["rainbow_colors"] = _setting("rainbow_colors", env["DEVSTRAP_COLORS"], home, "DEVSTRAP_COLORS")
    if _truthy(env.get("DEVSTRAP_NO_SUDO")):
        values["use_sudo"] = False

    config = Config.for_home(home, **values)

    if is_tty is None:
        is_tty = sys.stdout.isatty()
    no_anim = (
        config.no_anim
        or _truthy(env.get("DEVSTRAP_NO_ANIM"))
        or _truthy(env.get("CI"))
        or not is_tty
    )
    return replace(config, no_anim=no_anim)
