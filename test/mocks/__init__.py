"""
Reusable fakes and in-memory implementations for tests.
"""

from .fake_runtime import FakeClock, InMemoryLogger, SequentialIdGenerator
from .scripted_action_executor import Hang, ScriptedActionExecutor, fail, ok

__all__ = [
    "FakeClock",
    "SequentialIdGenerator",
    "InMemoryLogger",
    "ScriptedActionExecutor",
    "Hang",
    "ok",
    "fail",
]
