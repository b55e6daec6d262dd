from __future__ import annotations

from domain.errors import CircuitOpenError
from domain.models import BreakerState
from domain.ports import ClockPort, LoggerPort
from domain.services.target_registry import TargetHealth, TargetRegistry


class CircuitBreaker:
    """Three-state breaker, one per target, backed by the shared registry.

    CLOSED counts consecutive failures and trips OPEN at the threshold.
    OPEN fails fast until the reset timeout elapses; the next health check
    then moves to HALF_OPEN, which lets exactly one probe through.
    """

    def __init__(
        self,
        registry: TargetRegistry,
        *,
        clock: ClockPort,
        logger: LoggerPort,
    ) -> None:
        self._registry = registry
        self._clock = clock
        self._logger = logger

    def state(self, target: str) -> BreakerState:
        health = self._registry.get(target)
        with health.lock:
            self._refresh(health)
            return health.breaker_state

    def allows(self, target: str) -> bool:
        """Whether a request may pass right now, without claiming the probe."""
        health = self._registry.get(target)
        with health.lock:
            self._refresh(health)
            if health.breaker_state is BreakerState.OPEN:
                return False
            if health.breaker_state is BreakerState.HALF_OPEN:
                return not health.probe_in_flight
            return True

    def check(self, target: str) -> None:
        """Raise ``CircuitOpenError`` unless a request may pass.

        In HALF_OPEN the caller that passes owns the single probe until it
        reports an outcome.
        """
        health = self._registry.get(target)
        with health.lock:
            self._refresh(health)
            if health.breaker_state is BreakerState.OPEN:
                raise CircuitOpenError(health.target, self._retry_after(health))
            if health.breaker_state is BreakerState.HALF_OPEN:
                if health.probe_in_flight:
                    raise CircuitOpenError(health.target, 0.0)
                health.probe_in_flight = True

    def record_success(self, target: str) -> None:
        health = self._registry.get(target)
        with health.lock:
            if health.breaker_state is BreakerState.HALF_OPEN:
                self._logger.info("breaker_closed", target=health.target)
            health.consecutive_failures = 0
            health.breaker_state = BreakerState.CLOSED
            health.opened_at = None
            health.probe_in_flight = False

    def release_probe(self, target: str) -> None:
        """Give back a claimed HALF_OPEN probe that ended without an outcome."""
        health = self._registry.get(target)
        with health.lock:
            health.probe_in_flight = False

    def record_failure(self, target: str) -> None:
        health = self._registry.get(target)
        with health.lock:
            self._refresh(health)
            health.probe_in_flight = False
            if health.breaker_state is BreakerState.HALF_OPEN:
                self._trip(health, reason="probe_failed")
                return
            if health.breaker_state is BreakerState.OPEN:
                return
            health.consecutive_failures += 1
            if health.consecutive_failures >= health.threshold:
                self._trip(health, reason="threshold_reached")

    def retry_after(self, target: str) -> float:
        health = self._registry.get(target)
        with health.lock:
            self._refresh(health)
            return self._retry_after(health)

    def _trip(self, health: TargetHealth, *, reason: str) -> None:
        health.breaker_state = BreakerState.OPEN
        health.opened_at = self._clock.monotonic()
        health.trips += 1
        self._logger.warning(
            "breaker_opened",
            target=health.target,
            reason=reason,
            failures=health.consecutive_failures,
            reset_timeout_seconds=health.reset_timeout_seconds,
        )

    def _refresh(self, health: TargetHealth) -> None:
        if health.breaker_state is not BreakerState.OPEN or health.opened_at is None:
            return
        if self._clock.monotonic() >= health.opened_at + health.reset_timeout_seconds:
            health.breaker_state = BreakerState.HALF_OPEN
            health.probe_in_flight = False
            self._logger.info("breaker_half_open", target=health.target)

    def _retry_after(self, health: TargetHealth) -> float:
        if health.breaker_state is not BreakerState.OPEN or health.opened_at is None:
            return 0.0
        remaining = health.opened_at + health.reset_timeout_seconds - self._clock.monotonic()
        return max(0.0, remaining)
