"""Exception types raised by devstrap."""
from __future__ import annotations

__all__ = ["ConfigError", "DevstrapError", "FatalStepError", "PrivilegeError"]


class DevstrapError(RuntimeError):
    """Base class for errors surfaced to the user."""


class ConfigError(DevstrapError):
    """Raised when a configuration file cannot be used."""


class PrivilegeError(DevstrapError):
    """Raised when elevated privileges cannot be obtained."""


class FatalStepError(DevstrapError):
    """Abort the run from inside a step action.

    Raised by callable actions (credential prompts and friends) when the
    orchestrator cannot safely continue, independent of the step's declared
    criticality.
    """

    def __init__(self, message: str, *, step: str | None = None, exit_code: int = 1) -> None:
        super().__init__(message)
        self.step = step
        self.exit_code = exit_code or 1
