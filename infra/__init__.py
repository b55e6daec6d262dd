"""Infrastructure adapters – concrete implementations of domain ports."""

from .browser import MockActionExecutor, PlaywrightActionExecutor
from .config import FileSystemConfigProvider
from .runtime import StructuredLogger, SystemClock, UuidIdGenerator

__all__ = [
    "PlaywrightActionExecutor",
    "MockActionExecutor",
    "FileSystemConfigProvider",
    "SystemClock",
    "UuidIdGenerator",
    "StructuredLogger",
]
