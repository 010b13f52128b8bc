"""Stage ordering, validation, and next-action decisions for a journey."""

from __future__ import annotations

from ..memory.schema import Stage
from .controller import (
    Action,
    AdvanceStage,
    Decision,
    GenerateDeliverable,
    SetPendingValidation,
    ShowForm,
    decide,
    get_next_actions,
)
from .rules import STAGE_SEQUENCE, STAGE_TRANSITIONS, StageTransition
from .validator import AdvanceOutcome, StageValidator, ValidationResult

__all__ = [
    "Action",
    "AdvanceOutcome",
    "AdvanceStage",
    "Decision",
    "GenerateDeliverable",
    "STAGE_SEQUENCE",
    "STAGE_TRANSITIONS",
    "SetPendingValidation",
    "ShowForm",
    "Stage",
    "StageTransition",
    "StageValidator",
    "ValidationResult",
    "decide",
    "get_next_actions",
]
