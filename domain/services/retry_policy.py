from __future__ import annotations

import random
import re
from typing import Callable

from domain.errors import AutomationError, ErrorKind, StepExecutionError
from domain.models import ActionSignal, BackoffSettings

ErrorClassifier = Callable[[BaseException], ErrorKind]

_MESSAGE_PATTERNS: tuple[tuple[ErrorKind, re.Pattern[str]], ...] = (
    (ErrorKind.NETWORK, re.compile(r"network|timeout|connection", re.IGNORECASE)),
    (ErrorKind.DOM, re.compile(r"element|selector|not found", re.IGNORECASE)),
    (ErrorKind.VALIDATION, re.compile(r"validation|invalid|required", re.IGNORECASE)),
    (ErrorKind.NAVIGATION, re.compile(r"navigation|button|next", re.IGNORECASE)),
    (ErrorKind.FORM, re.compile(r"form|input|field", re.IGNORECASE)),
)


def classify_message(message: str) -> ErrorKind:
    for kind, pattern in _MESSAGE_PATTERNS:
        if pattern.search(message):
            return kind
    return ErrorKind.UNKNOWN


def default_classifier(error: BaseException) -> ErrorKind:
    """Transient (network, DOM, navigation) vs structural/validation failures."""
    if isinstance(error, StepExecutionError):
        if error.kind is not None:
            return error.kind
        if error.signal is ActionSignal.THROTTLED:
            return ErrorKind.THROTTLED
        if error.signal is ActionSignal.ELEMENT_NOT_FOUND:
            return ErrorKind.DOM
    return classify_message(str(error))


class RetryPolicy:
    """Decides whether a failed step is retried and how long to wait first."""

    def __init__(
        self,
        *,
        max_retries: int = 3,
        submission_max_retries: int = 1,
        backoff: BackoffSettings | None = None,
        classifier: ErrorClassifier | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.max_retries = max_retries
        self.submission_max_retries = submission_max_retries
        self._backoff = backoff or BackoffSettings()
        self._classifier = classifier or default_classifier
        self._rng = rng or random.Random()

    def classify(self, error: BaseException) -> ErrorKind:
        return self._classifier(error)

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, AutomationError) and not error.retryable:
            return False
        return self.classify(error).retryable

    def max_attempts(self, *, submission: bool = False) -> int:
        retries = self.submission_max_retries if submission else self.max_retries
        return 1 + retries

    def should_retry(
        self,
        error: BaseException,
        failures: int,
        *,
        submission: bool = False,
    ) -> bool:
        """``failures`` counts failed attempts of the step so far, including this one."""
        if not self.is_retryable(error):
            return False
        return failures < self.max_attempts(submission=submission)

    def compute_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0 for the first retry)."""
        settings = self._backoff
        if settings.strategy == "linear":
            delay = settings.base_seconds * (attempt + 1)
        elif settings.strategy == "fixed":
            delay = settings.base_seconds
        else:
            delay = settings.base_seconds * (settings.factor ** attempt)
        delay = min(delay, settings.max_seconds)
        return delay + self._rng.uniform(0.0, delay * settings.jitter_ratio)
