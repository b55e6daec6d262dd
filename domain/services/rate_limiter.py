"""Adaptive per-target rate limiting.

Each target keeps a sliding window of admission timestamps plus a short
burst window with its own smaller allowance. Limits adapt asymmetrically:
successes widen the budget slowly, throttling signals and repeated
rejections narrow it quickly.
"""

from __future__ import annotations

import random
from typing import Any

from domain.models import Admission, AdmissionReason
from domain.ports import ClockPort, LoggerPort
from domain.services.circuit_breaker import CircuitBreaker
from domain.services.target_registry import TargetHealth, TargetRegistry

_MIN_RETRY_AFTER = 0.001


class RateLimiter:
    def __init__(
        self,
        registry: TargetRegistry,
        *,
        clock: ClockPort,
        logger: LoggerPort,
        breaker: CircuitBreaker | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._registry = registry
        self._settings = registry.rate_limit
        self._clock = clock
        self._logger = logger
        self._breaker = breaker
        self._rng = rng or random.Random()

    def is_request_allowed(self, target: str, operation: str = "default") -> Admission:
        """Admit or reject one request, recording it when admitted."""
        if self._breaker is not None and not self._breaker.allows(target):
            health = self._registry.get(target)
            with health.lock:
                health.blocked_requests += 1
            return Admission(
                allowed=False,
                target=health.target,
                operation=operation,
                reason=AdmissionReason.CIRCUIT_OPEN,
                retry_after_seconds=self._breaker.retry_after(target),
            )

        health = self._registry.get(target)
        with health.lock:
            now = self._clock.monotonic()
            self._prune(health, now)

            if health.blocked_until is not None and now < health.blocked_until:
                return self._reject(
                    health, operation, AdmissionReason.RATE_LIMITED, health.blocked_until - now,
                )

            if len(health.timestamps) >= health.capacity:
                retry_after = health.timestamps[0] + health.window_seconds - now
                return self._reject(health, operation, AdmissionReason.RATE_EXCEEDED, retry_after)

            burst_start = now - health.burst_window_seconds
            recent = [stamp for stamp in health.timestamps if stamp > burst_start]
            if len(recent) >= health.burst:
                retry_after = recent[0] + health.burst_window_seconds - now
                return self._reject(health, operation, AdmissionReason.BURST_EXCEEDED, retry_after)

            health.timestamps.append(now)
            health.total_requests += 1
            health.rejections_in_row = 0
            return Admission(
                allowed=True,
                target=health.target,
                operation=operation,
                admitted_at=now,
            )

    def release(self, target: str, admission: Admission) -> None:
        """Give back an admission that was never used."""
        if not admission.allowed or admission.admitted_at is None:
            return
        health = self._registry.get(target)
        with health.lock:
            try:
                health.timestamps.remove(admission.admitted_at)
            except ValueError:
                return
            health.total_requests -= 1

    def record_success(self, target: str) -> None:
        health = self._registry.get(target)
        with health.lock:
            if not self._settings.adaptive:
                return
            widened = min(
                float(self._settings.ceiling),
                health.limit * self._settings.increase_factor,
            )
            self._adapt(health, widened, direction="increase")

    def record_throttle(self, target: str, retry_after: float | None = None) -> float:
        """Handle an explicit throttling response; returns the block duration."""
        block = self._settings.default_block_seconds if retry_after is None else retry_after
        block = min(max(block, 0.0), self._settings.max_block_seconds)
        health = self._registry.get(target)
        with health.lock:
            now = self._clock.monotonic()
            health.blocked_until = max(health.blocked_until or now, now + block)
            self._narrow(health)
        self._logger.warning("target_throttled", target=health.target, block_seconds=block)
        return block

    def record_distress(self, target: str) -> None:
        """Narrow the budget without blocking (e.g. automation was detected)."""
        health = self._registry.get(target)
        with health.lock:
            self._narrow(health)

    def compute_delay(self, target: str) -> float:
        """Minimum spacing between actions: ``window / limit`` plus up to 20% jitter."""
        health = self._registry.get(target)
        with health.lock:
            base = health.window_seconds / health.limit
        return base + self._rng.uniform(0.0, base * 0.2)

    def seconds_until_next_action(self, target: str) -> float:
        health = self._registry.get(target)
        with health.lock:
            last = health.last_action_at
        if last is None:
            return 0.0
        return max(0.0, last + self.compute_delay(target) - self._clock.monotonic())

    def mark_action(self, target: str) -> None:
        health = self._registry.get(target)
        with health.lock:
            health.last_action_at = self._clock.monotonic()

    def current_limit(self, target: str) -> float:
        health = self._registry.get(target)
        with health.lock:
            return health.limit

    def stats(self, target: str) -> dict[str, Any]:
        health = self._registry.get(target)
        with health.lock:
            now = self._clock.monotonic()
            self._prune(health, now)
            attempted = health.total_requests + health.blocked_requests
            hit_rate = 100.0 if attempted == 0 else health.total_requests / attempted * 100.0
            blocked_for = 0.0
            if health.blocked_until is not None:
                blocked_for = max(0.0, health.blocked_until - now)
            return {
                "target": health.target,
                "requests_in_window": len(health.timestamps),
                "limit": health.limit,
                "capacity": health.capacity,
                "burst": health.burst,
                "remaining": max(0, health.capacity - len(health.timestamps)),
                "blocked_for_seconds": round(blocked_for, 3),
                "total_requests": health.total_requests,
                "blocked_requests": health.blocked_requests,
                "adaptations": health.adaptations,
                "hit_rate": round(hit_rate, 2),
            }

    # -- internal helpers (callers hold health.lock) ----------------------

    def _reject(
        self,
        health: TargetHealth,
        operation: str,
        reason: AdmissionReason,
        retry_after: float,
    ) -> Admission:
        health.blocked_requests += 1
        if reason is not AdmissionReason.RATE_LIMITED:
            health.rejections_in_row += 1
            if health.rejections_in_row >= self._settings.rejections_before_decrease:
                self._narrow(health)
        return Admission(
            allowed=False,
            target=health.target,
            operation=operation,
            reason=reason,
            retry_after_seconds=max(retry_after, _MIN_RETRY_AFTER),
        )

    def _narrow(self, health: TargetHealth) -> None:
        health.rejections_in_row = 0
        if not self._settings.adaptive:
            return
        self._adapt(health, max(1.0, health.limit * self._settings.decrease_factor), direction="decrease")

    def _adapt(self, health: TargetHealth, new_limit: float, *, direction: str) -> None:
        if new_limit == health.limit:
            return
        self._logger.debug(
            "rate_limit_adapted",
            target=health.target,
            direction=direction,
            previous=round(health.limit, 3),
            limit=round(new_limit, 3),
        )
        health.limit = new_limit
        health.adaptations += 1

    @staticmethod
    def _prune(health: TargetHealth, now: float) -> None:
        cutoff = now - health.window_seconds
        while health.timestamps and health.timestamps[0] <= cutoff:
            health.timestamps.popleft()
