from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from domain.models import Action, ActionKind, ActionResult, ActionSignal


@dataclass
class MockActionExecutor:
    """
    Deterministic executor for local CLI runs.

    Every action succeeds unless ``failures`` asks for a number of leading
    failures per action kind. ``confirm_after`` controls how many confirm
    polls it takes before the submission is reported as confirmed.
    """

    failures: dict[str, int] = field(default_factory=dict)
    throttle_once_on: str | None = None
    throttle_retry_after: float | None = None
    confirm_after: int = 1
    latency_seconds: float = 0.0
    executed: list[Action] = field(default_factory=list)

    async def execute(self, action: Action) -> ActionResult:
        self.executed.append(action)
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)

        kind = action.kind.value
        remaining = self.failures.get(kind, 0)
        if remaining > 0:
            self.failures[kind] = remaining - 1
            return ActionResult(
                success=False,
                error=f"Element not found: {action.selector_hint}",
                signal=ActionSignal.ELEMENT_NOT_FOUND,
            )

        if self.throttle_once_on == kind:
            self.throttle_once_on = None
            return ActionResult(
                success=True,
                signal=ActionSignal.THROTTLED,
                data={"retry_after": self.throttle_retry_after},
            )

        if action.kind is ActionKind.CONFIRM:
            polls = sum(1 for a in self.executed if a.kind is ActionKind.CONFIRM)
            return ActionResult(success=True, data={"confirmed": polls >= self.confirm_after})
        if action.kind is ActionKind.READ:
            return ActionResult(success=True, data={"text": f"mock:{action.selector_hint}"})
        return ActionResult(success=True)
