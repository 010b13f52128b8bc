"""Action execution and the collaborators it depends on."""

from __future__ import annotations

from .cache import JourneyCache
from .collaborators import (
    DeliverableGenerator,
    GeneratedDeliverable,
    OfflineDeliverableGenerator,
    ProgressAward,
    ProgressAwarder,
    TimelineProgressAwarder,
)
from .dispatcher import ActionDispatcher, ExecutionResult, normalize_action

__all__ = [
    "ActionDispatcher",
    "DeliverableGenerator",
    "ExecutionResult",
    "GeneratedDeliverable",
    "JourneyCache",
    "OfflineDeliverableGenerator",
    "ProgressAward",
    "ProgressAwarder",
    "TimelineProgressAwarder",
    "normalize_action",
]
