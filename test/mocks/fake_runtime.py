from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from domain import ClockPort, IdGeneratorPort, LoggerPort


class FakeClock:
    """Manual clock: ``sleep`` advances time instantly instead of waiting."""

    def __init__(self, start: datetime | None = None) -> None:
        self._start = start or datetime(2025, 6, 1, tzinfo=timezone.utc)
        self._offset = 0.0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self._offset)

    def monotonic(self) -> float:
        return self._offset

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self._offset += max(0.0, seconds)


class SequentialIdGenerator:
    def __init__(self) -> None:
        self._counter = 0

    def new_task_id(self) -> str:
        self._counter += 1
        return f"task-{self._counter}"


class InMemoryLogger:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, dict[str, Any]]] = []

    def debug(self, message: str, **fields: Any) -> None:
        self.events.append(("debug", message, fields))

    def info(self, message: str, **fields: Any) -> None:
        self.events.append(("info", message, fields))

    def warning(self, message: str, **fields: Any) -> None:
        self.events.append(("warning", message, fields))

    def error(self, message: str, **fields: Any) -> None:
        self.events.append(("error", message, fields))

    def messages(self, level: str | None = None) -> list[str]:
        return [msg for lvl, msg, _ in self.events if level is None or lvl == level]


_clock_check: ClockPort = FakeClock()
_id_check: IdGeneratorPort = SequentialIdGenerator()
_logger_check: LoggerPort = InMemoryLogger()
