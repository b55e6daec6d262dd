from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from domain.errors import ConfigurationError

BACKOFF_STRATEGIES = ("exponential", "linear", "fixed")


@dataclass(frozen=True)
class RateLimitPreset:
    """Starting budget for a well-known platform."""

    limit: int
    burst: int
    window_seconds: float = 60.0


# Starting budgets observed to keep the big boards quiet.
PLATFORM_RATE_LIMITS: Mapping[str, RateLimitPreset] = MappingProxyType({
    "linkedin.com": RateLimitPreset(limit=8, burst=2),
    "indeed.com": RateLimitPreset(limit=12, burst=3),
    "glassdoor.com": RateLimitPreset(limit=6, burst=1),
    "monster.com": RateLimitPreset(limit=10, burst=2),
    "ziprecruiter.com": RateLimitPreset(limit=15, burst=4),
    "google.com": RateLimitPreset(limit=20, burst=5),
})


@dataclass(frozen=True)
class RateLimitSettings:
    """Per-target admission budget and adaptive adjustment knobs."""

    base: int = 10
    burst: int = 3
    window_seconds: float = 60.0
    burst_window_seconds: float = 10.0
    increase_factor: float = 1.1
    decrease_factor: float = 0.8
    ceiling: int = 50
    rejections_before_decrease: int = 3
    default_block_seconds: float = 60.0
    max_block_seconds: float = 300.0
    adaptive: bool = True

    def __post_init__(self) -> None:
        if self.base < 1 or self.burst < 1:
            raise ConfigurationError("rateLimit.base and rateLimit.burst must be >= 1")
        if self.window_seconds <= 0 or self.burst_window_seconds <= 0:
            raise ConfigurationError("rateLimit windows must be positive")
        if not 1.0 < self.increase_factor <= 1.1:
            raise ConfigurationError("increase_factor must be in (1.0, 1.1]")
        if not 0.0 < self.decrease_factor <= 0.8:
            raise ConfigurationError("decrease_factor must be in (0.0, 0.8]")
        if self.ceiling < self.base:
            raise ConfigurationError("rateLimit ceiling must be >= base")


@dataclass(frozen=True)
class BreakerSettings:
    threshold: int = 5
    reset_timeout_seconds: float = 300.0

    def __post_init__(self) -> None:
        if self.threshold < 1:
            raise ConfigurationError("breaker.threshold must be >= 1")
        if self.reset_timeout_seconds <= 0:
            raise ConfigurationError("breaker.resetTimeoutMs must be positive")


@dataclass(frozen=True)
class BackoffSettings:
    base_seconds: float = 1.0
    max_seconds: float = 30.0
    factor: float = 2.0
    strategy: str = "exponential"
    jitter_ratio: float = 0.1

    def __post_init__(self) -> None:
        if self.strategy not in BACKOFF_STRATEGIES:
            raise ConfigurationError(
                f"backoff.strategy must be one of {', '.join(BACKOFF_STRATEGIES)}",
            )
        if self.base_seconds < 0 or self.max_seconds < self.base_seconds:
            raise ConfigurationError("backoff delays must satisfy 0 <= base <= max")
        if not 0.0 <= self.jitter_ratio <= 0.1:
            raise ConfigurationError("backoff jitter must be within 10% of the delay")


@dataclass(frozen=True)
class AutomationConfig:
    """Options recognised by the orchestration core.

    Built from a camelCase mapping (the documented surface) via
    :meth:`from_mapping`. Unknown keys are ignored rather than rejected.
    """

    max_retries: int = 3
    step_timeout_seconds: float = 30.0
    submission_max_retries: int = 1
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    breaker: BreakerSettings = field(default_factory=BreakerSettings)
    backoff: BackoffSettings = field(default_factory=BackoffSettings)
    confirmation_timeout_seconds: float = 30.0
    max_admission_wait_seconds: float = 600.0
    enforce_spacing: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 0 or self.submission_max_retries < 0:
            raise ConfigurationError("retry counts must be >= 0")
        if self.step_timeout_seconds <= 0:
            raise ConfigurationError("stepTimeoutMs must be positive")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AutomationConfig":
        rate = _section(data, "rateLimit", "rate_limit")
        breaker = _section(data, "breaker")
        backoff = _section(data, "backoff")
        defaults = cls()
        rate_defaults = RateLimitSettings()
        backoff_defaults = BackoffSettings()
        return cls(
            max_retries=_int(data, ("maxRetries", "max_retries"), defaults.max_retries),
            step_timeout_seconds=_ms(
                data, ("stepTimeoutMs", "step_timeout_ms"), defaults.step_timeout_seconds,
            ),
            submission_max_retries=_int(
                data,
                ("submissionMaxRetries", "submission_max_retries"),
                defaults.submission_max_retries,
            ),
            rate_limit=RateLimitSettings(
                base=_int(rate, ("base",), rate_defaults.base),
                burst=_int(rate, ("burst",), rate_defaults.burst),
                window_seconds=_ms(rate, ("window", "windowMs"), rate_defaults.window_seconds),
                ceiling=max(
                    _int(rate, ("ceiling",), rate_defaults.ceiling),
                    _int(rate, ("base",), rate_defaults.base),
                ),
                adaptive=_bool(data, ("adaptive",), rate_defaults.adaptive),
            ),
            breaker=BreakerSettings(
                threshold=_int(breaker, ("threshold",), BreakerSettings.threshold),
                reset_timeout_seconds=_ms(
                    breaker,
                    ("resetTimeoutMs", "reset_timeout_ms"),
                    BreakerSettings.reset_timeout_seconds,
                ),
            ),
            backoff=BackoffSettings(
                base_seconds=_ms(backoff, ("baseMs", "base_ms"), backoff_defaults.base_seconds),
                max_seconds=_ms(backoff, ("maxMs", "max_ms"), backoff_defaults.max_seconds),
                factor=float(backoff.get("factor", backoff_defaults.factor)),
                strategy=str(backoff.get("strategy", backoff_defaults.strategy)),
            ),
            confirmation_timeout_seconds=_ms(
                data,
                ("confirmationTimeoutMs", "confirmation_timeout_ms"),
                defaults.confirmation_timeout_seconds,
            ),
            max_admission_wait_seconds=_ms(
                data,
                ("maxAdmissionWaitMs", "max_admission_wait_ms"),
                defaults.max_admission_wait_seconds,
            ),
            enforce_spacing=_bool(
                data, ("enforceSpacing", "enforce_spacing"), defaults.enforce_spacing,
            ),
        )

    @staticmethod
    def unknown_keys(data: Mapping[str, Any]) -> list[str]:
        """Return top-level and section keys that :meth:`from_mapping` ignores."""
        unknown = [key for key in data if key not in _KNOWN_TOP_LEVEL]
        for section, known in _KNOWN_SECTIONS.items():
            value = data.get(section)
            if isinstance(value, Mapping):
                unknown.extend(f"{section}.{key}" for key in value if key not in known)
        return sorted(unknown)

    def to_mapping(self) -> dict[str, Any]:
        return {
            "maxRetries": self.max_retries,
            "stepTimeoutMs": int(self.step_timeout_seconds * 1000),
            "submissionMaxRetries": self.submission_max_retries,
            "rateLimit": {
                "base": self.rate_limit.base,
                "burst": self.rate_limit.burst,
                "window": int(self.rate_limit.window_seconds * 1000),
                "ceiling": self.rate_limit.ceiling,
            },
            "breaker": {
                "threshold": self.breaker.threshold,
                "resetTimeoutMs": int(self.breaker.reset_timeout_seconds * 1000),
            },
            "backoff": {
                "baseMs": int(self.backoff.base_seconds * 1000),
                "maxMs": int(self.backoff.max_seconds * 1000),
                "factor": self.backoff.factor,
                "strategy": self.backoff.strategy,
            },
            "confirmationTimeoutMs": int(self.confirmation_timeout_seconds * 1000),
            "maxAdmissionWaitMs": int(self.max_admission_wait_seconds * 1000),
            "adaptive": self.rate_limit.adaptive,
            "enforceSpacing": self.enforce_spacing,
        }


_KNOWN_TOP_LEVEL = {
    "maxRetries", "max_retries",
    "stepTimeoutMs", "step_timeout_ms",
    "submissionMaxRetries", "submission_max_retries",
    "rateLimit", "rate_limit",
    "breaker",
    "backoff",
    "confirmationTimeoutMs", "confirmation_timeout_ms",
    "maxAdmissionWaitMs", "max_admission_wait_ms",
    "enforceSpacing", "enforce_spacing",
    "adaptive",
}
_KNOWN_SECTIONS = {
    "rateLimit": {"base", "burst", "window", "windowMs", "ceiling"},
    "rate_limit": {"base", "burst", "window", "windowMs", "ceiling"},
    "breaker": {"threshold", "resetTimeoutMs", "reset_timeout_ms"},
    "backoff": {"baseMs", "base_ms", "maxMs", "max_ms", "factor", "strategy"},
}


def _section(data: Mapping[str, Any], *names: str) -> Mapping[str, Any]:
    for name in names:
        value = data.get(name)
        if value is None:
            continue
        if not isinstance(value, Mapping):
            raise ConfigurationError(f"{name} must be an object")
        return value
    return {}


def _lookup(data: Mapping[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        if name in data and data[name] is not None:
            return data[name]
    return None


def _int(data: Mapping[str, Any], names: tuple[str, ...], default: int) -> int:
    value = _lookup(data, names)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{names[0]} must be a number, got {value!r}")
    return int(value)


def _ms(data: Mapping[str, Any], names: tuple[str, ...], default_seconds: float) -> float:
    value = _lookup(data, names)
    if value is None:
        return default_seconds
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{names[0]} must be a number of milliseconds, got {value!r}")
    return float(value) / 1000.0


def _bool(data: Mapping[str, Any], names: tuple[str, ...], default: bool) -> bool:
    value = _lookup(data, names)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigurationError(f"{names[0]} must be a boolean (true/false)")
    return value
