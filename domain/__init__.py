"""
Domain layer package.

This package contains the orchestration core: models, ports, the error
taxonomy and the services that drive application tasks. Nothing here
depends on a specific browser, storage or framework.
"""

from .errors import (  # noqa: F401
    AutomationError,
    CircuitOpenError,
    ConfigurationError,
    ConfirmationTimeoutError,
    ErrorKind,
    InvalidTransitionError,
    RateLimitedError,
    StepExecutionError,
    StepTimeoutError,
)
from .models import (  # noqa: F401
    Action,
    ActionKind,
    ActionResult,
    ActionSignal,
    ApplicationState,
    ApplicationTask,
    AutomationConfig,
    BreakerState,
    JobPostingRef,
    ProgressSnapshot,
    TargetConfig,
    TaskResult,
    UserProfile,
)
from .ports import (  # noqa: F401
    ActionExecutorPort,
    ClockPort,
    IdGeneratorPort,
    LoggerPort,
)

__all__ = [
    # Errors
    "AutomationError",
    "ErrorKind",
    "InvalidTransitionError",
    "StepExecutionError",
    "StepTimeoutError",
    "CircuitOpenError",
    "RateLimitedError",
    "ConfirmationTimeoutError",
    "ConfigurationError",
    # Models
    "UserProfile",
    "JobPostingRef",
    "ApplicationState",
    "ApplicationTask",
    "BreakerState",
    "Action",
    "ActionKind",
    "ActionResult",
    "ActionSignal",
    "TargetConfig",
    "TaskResult",
    "ProgressSnapshot",
    "AutomationConfig",
    # Ports
    "ActionExecutorPort",
    "ClockPort",
    "IdGeneratorPort",
    "LoggerPort",
]
