"""Per-target health records shared by the rate limiter and circuit breaker.

The registry is created once by the caller and injected wherever target
health is read or mutated, so there is no module-level state. Each record
carries its own lock; every mutation happens while holding it.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Mapping
from urllib.parse import urlparse

from domain.models import (
    PLATFORM_RATE_LIMITS,
    BreakerSettings,
    BreakerState,
    RateLimitPreset,
    RateLimitSettings,
)


def normalize_target(url_or_target: str) -> str:
    """Map a URL or bare identifier onto the key used for accounting."""
    raw = url_or_target.strip()
    if "://" in raw:
        host = urlparse(raw).hostname
        if not host:
            return "unknown"
        raw = host
    raw = raw.lower()
    if raw.startswith("www."):
        raw = raw[4:]
    return raw or "unknown"


@dataclass
class TargetHealth:
    """Mutable health record for one target identifier."""

    target: str
    limit: float
    base_limit: int
    burst: int
    window_seconds: float
    burst_window_seconds: float
    threshold: int
    reset_timeout_seconds: float
    timestamps: deque[float] = field(default_factory=deque)
    blocked_until: float | None = None
    last_action_at: float | None = None
    rejections_in_row: int = 0
    consecutive_failures: int = 0
    breaker_state: BreakerState = BreakerState.CLOSED
    opened_at: float | None = None
    probe_in_flight: bool = False
    total_requests: int = 0
    blocked_requests: int = 0
    adaptations: int = 0
    trips: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def capacity(self) -> int:
        return max(1, int(self.limit))


class TargetRegistry:
    """Lazily creates and hands out ``TargetHealth`` records."""

    def __init__(
        self,
        *,
        rate_limit: RateLimitSettings | None = None,
        breaker: BreakerSettings | None = None,
        presets: Mapping[str, RateLimitPreset] | None = None,
    ) -> None:
        self.rate_limit = rate_limit or RateLimitSettings()
        self.breaker = breaker or BreakerSettings()
        self._presets = PLATFORM_RATE_LIMITS if presets is None else presets
        self._records: dict[str, TargetHealth] = {}
        self._drive_locks: dict[str, asyncio.Lock] = {}
        self._lock = threading.Lock()

    def get(self, target: str) -> TargetHealth:
        key = normalize_target(target)
        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = self._new_record(key)
                self._records[key] = record
            return record

    def drive_lock(self, target: str) -> asyncio.Lock:
        """Lock held by the one task currently driving ``target``."""
        key = normalize_target(target)
        with self._lock:
            lock = self._drive_locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._drive_locks[key] = lock
            return lock

    def reset(self, target: str) -> None:
        """Operator reset: forget everything learned about ``target``."""
        key = normalize_target(target)
        with self._lock:
            self._records[key] = self._new_record(key)

    def targets(self) -> list[str]:
        with self._lock:
            return sorted(self._records)

    def preset_for(self, target: str) -> RateLimitPreset | None:
        key = normalize_target(target)
        for domain, preset in self._presets.items():
            if key == domain or key.endswith("." + domain):
                return preset
        return None

    def _new_record(self, key: str) -> TargetHealth:
        base = self.rate_limit.base
        burst = self.rate_limit.burst
        window = self.rate_limit.window_seconds
        preset = self.preset_for(key)
        if preset is not None:
            # Presets only ever tighten the configured budget.
            base = min(base, preset.limit)
            burst = min(burst, preset.burst)
            window = max(window, preset.window_seconds)
        return TargetHealth(
            target=key,
            limit=float(base),
            base_limit=base,
            burst=burst,
            window_seconds=window,
            burst_window_seconds=self.rate_limit.burst_window_seconds,
            threshold=self.breaker.threshold,
            reset_timeout_seconds=self.breaker.reset_timeout_seconds,
        )
