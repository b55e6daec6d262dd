"""Application/UI layer package."""

from .facade import ApplicationFacade, TargetHealthView

__all__ = ["ApplicationFacade", "TargetHealthView"]
