"""Error taxonomy for the orchestration core.

Every variant carries its own retry classification so callers never have to
dispatch on error names. ``retryable`` and ``terminal`` are class-level
defaults; a few variants (step timeouts) can be marked terminal per instance.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from domain.models import ActionSignal, ApplicationState


class ErrorKind(str, Enum):
    """Coarse classification of a step failure."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    THROTTLED = "throttled"
    DOM = "dom"
    NAVIGATION = "navigation"
    FORM = "form"
    VALIDATION = "validation"
    STRUCTURAL = "structural"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self not in (ErrorKind.VALIDATION, ErrorKind.STRUCTURAL)


class AutomationError(Exception):
    """Base class for every error raised by the orchestration core."""

    retryable: bool = False
    terminal: bool = True


class InvalidTransitionError(AutomationError):
    """A transition outside the state table was attempted. Never retried."""

    def __init__(self, from_state: ApplicationState, to_state: ApplicationState) -> None:
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")
        self.from_state = from_state
        self.to_state = to_state


class StepExecutionError(AutomationError):
    """A step's side effect failed in the action executor."""

    retryable = True
    terminal = False

    def __init__(
        self,
        message: str,
        *,
        step: int | None = None,
        kind: ErrorKind | None = None,
        signal: ActionSignal | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.step = step
        self.kind = kind
        self.signal = signal
        if retryable is not None:
            self.retryable = retryable
            self.terminal = not retryable


class StepTimeoutError(StepExecutionError):
    """A step exceeded its timeout."""

    def __init__(
        self,
        message: str,
        *,
        step: int | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message, step=step, kind=ErrorKind.TIMEOUT, retryable=retryable)


class CircuitOpenError(AutomationError):
    """The target's breaker is open; the request failed fast."""

    def __init__(self, target: str, retry_after_seconds: float) -> None:
        super().__init__(
            f"Circuit open for {target}; retry after {retry_after_seconds:.1f}s",
        )
        self.target = target
        self.retry_after_seconds = retry_after_seconds


class RateLimitedError(AutomationError):
    """Admission was denied for longer than the caller is willing to wait."""

    def __init__(self, target: str, reason: str, retry_after_seconds: float) -> None:
        super().__init__(
            f"Rate limited on {target} ({reason}); retry after {retry_after_seconds:.1f}s",
        )
        self.target = target
        self.reason = reason
        self.retry_after_seconds = retry_after_seconds


class ConfirmationTimeoutError(AutomationError):
    """No confirmation signal was observed before the timeout."""

    reason = "confirmation_timeout"

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"No confirmation observed within {timeout_seconds:.1f}s")
        self.timeout_seconds = timeout_seconds


class ConfigurationError(AutomationError):
    """A configuration value has the wrong type or is out of range."""


__all__ = [
    "ErrorKind",
    "AutomationError",
    "InvalidTransitionError",
    "StepExecutionError",
    "StepTimeoutError",
    "CircuitOpenError",
    "RateLimitedError",
    "ConfirmationTimeoutError",
    "ConfigurationError",
]
