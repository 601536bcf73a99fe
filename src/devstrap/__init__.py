"""Public package interface for devstrap."""

__version__ = "0.4.0"

from .errors import ConfigError, DevstrapError, FatalStepError, PrivilegeError
from .steps import Criticality, ExecutionResult, Step, StepStatus

__all__ = [
    "__version__",
    "ConfigError",
    "Criticality",
    "DevstrapError",
    "ExecutionResult",
    "FatalStepError",
    "PrivilegeError",
    "Step",
    "StepStatus",
]
