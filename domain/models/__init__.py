from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from domain.errors import ConfigurationError
from domain.models.config import (
    PLATFORM_RATE_LIMITS,
    AutomationConfig,
    BackoffSettings,
    BreakerSettings,
    RateLimitPreset,
    RateLimitSettings,
)


@dataclass(frozen=True)
class UserProfile:
    """The person an application is submitted for.

    The core only carries the profile as task identity; deciding which
    profile value goes into which field is the caller's business.
    """

    full_name: str
    email: str
    phone: str | None = None
    address: str | None = None


@dataclass(frozen=True)
class JobPostingRef:
    """Lightweight reference to a job posting on a specific job board."""

    company_name: str
    job_title: str
    job_url: str
    job_board_type: str | None = None


class ApplicationState(str, Enum):
    """Lifecycle states of an application task."""

    INITIALIZED = "INITIALIZED"
    DETECTING_STEPS = "DETECTING_STEPS"
    FILLING_STEP = "FILLING_STEP"
    VALIDATING_STEP = "VALIDATING_STEP"
    SUBMITTING = "SUBMITTING"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    ERROR_RECOVERY = "ERROR_RECOVERY"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ApplicationState.COMPLETED,
            ApplicationState.FAILED,
            ApplicationState.CANCELLED,
        )


class BreakerState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class ActionKind(str, Enum):
    """Side effects the core asks the action executor to perform."""

    INSPECT = "inspect"
    FILL = "fill"
    SELECT = "select"
    UPLOAD = "upload"
    CLICK = "click"
    NAVIGATE = "navigate"
    READ = "read"
    SUBMIT = "submit"
    CONFIRM = "confirm"


class ActionSignal(str, Enum):
    """Target-distress hints an executor may attach to any result."""

    DETECTED_AUTOMATION = "detected_automation"
    THROTTLED = "throttled"
    ELEMENT_NOT_FOUND = "element_not_found"
    STEP_RESET = "step_reset"


class AdmissionReason(str, Enum):
    CIRCUIT_OPEN = "circuit_open"
    RATE_LIMITED = "rate_limited"
    RATE_EXCEEDED = "rate_exceeded"
    BURST_EXCEEDED = "burst_exceeded"


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    selector_hint: str | None = None
    value: str | None = None


@dataclass(frozen=True)
class ActionResult:
    """Outcome reported by the action executor.

    ``data`` carries kind-specific details, e.g. ``has_more_steps`` and
    ``total_steps`` for inspection, ``confirmed`` for confirmation checks,
    ``retry_after`` alongside a throttling signal.
    """

    success: bool
    error: str | None = None
    signal: ActionSignal | None = None
    data: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", MappingProxyType(dict(self.data)))


@dataclass(frozen=True)
class Admission:
    """Rate limiter decision for one pending action."""

    allowed: bool
    target: str
    operation: str = "default"
    reason: AdmissionReason | None = None
    retry_after_seconds: float = 0.0
    admitted_at: float | None = None


@dataclass(frozen=True)
class FieldMapping:
    """One field of a form step, as supplied by the caller."""

    name: str
    selector_hint: str
    value: str | None = None
    kind: ActionKind = ActionKind.FILL
    required: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FieldMapping":
        try:
            name = str(data["name"])
        except KeyError as exc:
            raise ConfigurationError("field mapping is missing 'name'") from exc
        kind_raw = str(data.get("kind", ActionKind.FILL.value))
        try:
            kind = ActionKind(kind_raw)
        except ValueError as exc:
            raise ConfigurationError(f"field '{name}' has unknown kind '{kind_raw}'") from exc
        value = data.get("value")
        return cls(
            name=name,
            selector_hint=str(data.get("selector", name)),
            value=None if value is None else str(value),
            kind=kind,
            required=bool(data.get("required", True)),
        )


@dataclass(frozen=True)
class StepConfig:
    fields: Sequence[FieldMapping] = field(default_factory=tuple)
    timeout_seconds: float | None = None
    next_hint: str | None = None
    detect_hint: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StepConfig":
        timeout_ms = data.get("timeoutMs")
        return cls(
            fields=tuple(FieldMapping.from_mapping(item) for item in data.get("fields", [])),
            timeout_seconds=None if timeout_ms is None else float(timeout_ms) / 1000.0,
            next_hint=data.get("next"),
            detect_hint=data.get("detect"),
        )


@dataclass(frozen=True)
class ConfirmationStrategy:
    """How AWAITING_CONFIRMATION recognises a successful submission."""

    selector_hint: str | None = None
    timeout_seconds: float | None = None
    poll_interval_seconds: float = 0.5

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ConfirmationStrategy":
        timeout_ms = data.get("timeoutMs")
        return cls(
            selector_hint=data.get("selector"),
            timeout_seconds=None if timeout_ms is None else float(timeout_ms) / 1000.0,
            poll_interval_seconds=float(data.get("pollMs", 500)) / 1000.0,
        )


@dataclass(frozen=True)
class TargetConfig:
    """Everything the core needs to drive one target flow."""

    platform: str
    url: str | None = None
    steps: Sequence[StepConfig] = field(default_factory=tuple)
    submit_hint: str | None = None
    confirmation: ConfirmationStrategy = field(default_factory=ConfirmationStrategy)
    step_timeout_seconds: float | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TargetConfig":
        platform = data.get("platform") or data.get("url")
        if not platform:
            raise ConfigurationError("target config needs 'platform' or 'url'")
        timeout_ms = data.get("stepTimeoutMs")
        return cls(
            platform=str(platform),
            url=data.get("url"),
            steps=tuple(StepConfig.from_mapping(item) for item in data.get("steps", [])),
            submit_hint=data.get("submit"),
            confirmation=ConfirmationStrategy.from_mapping(data.get("confirmation", {})),
            step_timeout_seconds=None if timeout_ms is None else float(timeout_ms) / 1000.0,
        )


@dataclass(frozen=True)
class TransitionRecord:
    from_state: ApplicationState
    to_state: ApplicationState
    timestamp: datetime
    outcome: str | None = None


@dataclass(frozen=True)
class ErrorEntry:
    step: int
    state: ApplicationState
    message: str
    timestamp: datetime
    recovered: bool = False
    kind: str | None = None


@dataclass
class ApplicationTask:
    """One attempt to drive a target through to completion.

    Mutated only by the state machine; ``lock`` guards history reads made
    from other threads while the task is running.
    """

    task_id: str
    platform: str
    profile: UserProfile
    created_at: datetime
    job: JobPostingRef | None = None
    state: ApplicationState = ApplicationState.INITIALIZED
    step_index: int = 0
    total_steps: int = 0
    history: list[TransitionRecord] = field(default_factory=list)
    errors: list[ErrorEntry] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    reason: str | None = None
    cancel_requested: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def last_error(self) -> ErrorEntry | None:
        return self.errors[-1] if self.errors else None


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only projection of a task's progress."""

    task_id: str
    state: ApplicationState
    phase: str
    step_index: int
    total_steps: int
    percentage: int
    phase_timestamps: Mapping[str, datetime]
    elapsed_seconds: float


@dataclass(frozen=True)
class TaskResult:
    """What a caller gets back once a task reaches a terminal state."""

    task_id: str
    platform: str
    state: ApplicationState
    reason: str
    duration_seconds: float
    history: Sequence[TransitionRecord]
    errors: Sequence[ErrorEntry]
    progress: ProgressSnapshot
    last_error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state is ApplicationState.COMPLETED


__all__ = [
    "UserProfile",
    "JobPostingRef",
    "ApplicationState",
    "BreakerState",
    "ActionKind",
    "ActionSignal",
    "AdmissionReason",
    "Action",
    "ActionResult",
    "Admission",
    "FieldMapping",
    "StepConfig",
    "ConfirmationStrategy",
    "TargetConfig",
    "TransitionRecord",
    "ErrorEntry",
    "ApplicationTask",
    "ProgressSnapshot",
    "TaskResult",
    "AutomationConfig",
    "RateLimitSettings",
    "RateLimitPreset",
    "BreakerSettings",
    "BackoffSettings",
    "PLATFORM_RATE_LIMITS",
]
