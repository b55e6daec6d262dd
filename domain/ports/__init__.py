from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from domain.models import Action, ActionResult


@runtime_checkable
class ActionExecutorPort(Protocol):
    """
    Performs the side effect of a single step against the target.

    Implementations wrap a browser (Playwright) or a scripted double. They
    report failures through ``ActionResult`` instead of raising, and may
    attach a distress signal to any result, successful or not.
    """

    async def execute(self, action: Action) -> ActionResult:
        ...


@runtime_checkable
class ClockPort(Protocol):
    """Time source for deterministic and easily testable code."""

    def now(self) -> datetime:
        ...

    def monotonic(self) -> float:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


@runtime_checkable
class IdGeneratorPort(Protocol):
    """Generation of stable identifiers for tasks."""

    def new_task_id(self) -> str:
        ...


@runtime_checkable
class LoggerPort(Protocol):
    """Structured, testable logging abstraction."""

    def debug(self, message: str, **fields: Any) -> None:
        ...

    def info(self, message: str, **fields: Any) -> None:
        ...

    def warning(self, message: str, **fields: Any) -> None:
        ...

    def error(self, message: str, **fields: Any) -> None:
        ...


__all__ = [
    "ActionExecutorPort",
    "ClockPort",
    "IdGeneratorPort",
    "LoggerPort",
]
