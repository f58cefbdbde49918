"""Application services."""

from .sync import MergedView, SynchronizationCache
from .interaction import BoardInteraction, GestureState
from .runtime import TaskRuntime, configure_runtime, get_runtime, reset_runtime

__all__ = [
    "BoardInteraction",
    "GestureState",
    "MergedView",
    "SynchronizationCache",
    "TaskRuntime",
    "configure_runtime",
    "get_runtime",
    "reset_runtime",
]
