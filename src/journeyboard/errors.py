"""Exception hierarchy shared by the workflow, board, and dispatcher layers."""

from __future__ import annotations

from typing import Sequence

__all__ = [
    "ExternalCallError",
    "JourneyBoardError",
    "NotFoundError",
    "StageValidationError",
]


class JourneyBoardError(RuntimeError):
    """Base class for recoverable journey board failures."""


class StageValidationError(JourneyBoardError):
    """Raised when a stage transition is attempted with required fields missing."""

    def __init__(self, stage: str, missing_fields: Sequence[str]) -> None:
        self.stage = stage
        self.missing_fields = list(missing_fields)
        joined = ", ".join(self.missing_fields) or "unknown"
        super().__init__(f"Stage '{stage}' is missing required fields: {joined}")


class NotFoundError(JourneyBoardError):
    """Raised when a referenced session, journey, or card does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} '{identifier}' not found")


class ExternalCallError(JourneyBoardError):
    """Raised when a collaborator (generator, progress awarder) fails or returns nothing."""
