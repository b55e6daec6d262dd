from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from domain.models import (
    BreakerState,
    JobPostingRef,
    ProgressSnapshot,
    TargetConfig,
    TaskResult,
    UserProfile,
)
from domain.services import JobApplicationAgent, TargetRegistry, normalize_target


@dataclass(frozen=True)
class TargetHealthView:
    target: str
    breaker_state: BreakerState
    consecutive_failures: int
    retry_after_seconds: float
    limit: float
    requests_in_window: int
    remaining: int
    blocked_for_seconds: float
    hit_rate: float
    trips: int


class ApplicationFacade:
    """
    UI-facing facade: run and cancel tasks, watch progress, inspect targets.
    """

    def __init__(self, *, agent: JobApplicationAgent, registry: TargetRegistry) -> None:
        self._agent = agent
        self._registry = registry

    async def start(
        self,
        profile: UserProfile,
        target: TargetConfig,
        job: JobPostingRef | None = None,
    ) -> TaskResult:
        return await self._agent.start_task(profile, target, job)

    def cancel(self, task_id: str) -> bool:
        return self._agent.cancel(task_id)

    def forget(self, task_id: str) -> bool:
        return self._agent.forget(task_id)

    def get_progress(self, task_id: str) -> ProgressSnapshot | None:
        return self._agent.snapshot(task_id)

    def get_target_health(self, target: str) -> TargetHealthView:
        key = normalize_target(target)
        state = self._agent.breaker.state(key)
        retry_after = self._agent.breaker.retry_after(key)
        stats = self._agent.rate_limiter.stats(key)
        health = self._registry.get(key)
        with health.lock:
            failures = health.consecutive_failures
            trips = health.trips
        return TargetHealthView(
            target=key,
            breaker_state=state,
            consecutive_failures=failures,
            retry_after_seconds=round(retry_after, 3),
            limit=round(stats["limit"], 3),
            requests_in_window=stats["requests_in_window"],
            remaining=stats["remaining"],
            blocked_for_seconds=stats["blocked_for_seconds"],
            hit_rate=stats["hit_rate"],
            trips=trips,
        )

    def list_target_health(self) -> Sequence[TargetHealthView]:
        return [self.get_target_health(target) for target in self._registry.targets()]

    def reset_target(self, target: str) -> None:
        self._registry.reset(target)
