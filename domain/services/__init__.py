"""
Domain services.

Per-target health (rate limiting, circuit breaking), retry policy, progress
projection and the state machine, composed by ``JobApplicationAgent``. They
depend only on domain models and ports so infrastructure stays thin.
"""

from .circuit_breaker import CircuitBreaker  # noqa: F401
from .job_application import JobApplicationAgent
from .progress import PHASES, ProgressTracker
from .rate_limiter import RateLimiter
from .retry_policy import RetryPolicy, classify_message, default_classifier
from .state_machine import (
    TRANSITIONS,
    ApplicationStateMachine,
    can_transition,
    is_valid_walk,
)
from .target_registry import TargetHealth, TargetRegistry, normalize_target

__all__ = [
    "CircuitBreaker",
    "RateLimiter",
    "TargetHealth",
    "TargetRegistry",
    "normalize_target",
    "RetryPolicy",
    "classify_message",
    "default_classifier",
    "PHASES",
    "ProgressTracker",
    "TRANSITIONS",
    "ApplicationStateMachine",
    "can_transition",
    "is_valid_walk",
    "JobApplicationAgent",
]
