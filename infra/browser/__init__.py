from .mock_executor import MockActionExecutor
from .playwright_executor import PlaywrightActionExecutor, parse_retry_after

__all__ = [
    "PlaywrightActionExecutor",
    "MockActionExecutor",
    "parse_retry_after",
]
