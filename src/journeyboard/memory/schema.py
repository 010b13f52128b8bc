"""Typed records tracked by the journey board memory store."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class Stage(str, Enum):
    """Stages of a consulting journey, in their fixed order."""

    ANAMNESE = "anamnese"
    MODELAGEM = "modelagem"
    PRIORIZACAO = "priorizacao"
    EXECUCAO = "execucao"
    CONCLUIDO = "concluido"


class CardStatus(str, Enum):
    """Board column a card currently sits in."""

    TODO = "todo"
    DOING = "doing"
    DONE = "done"
    BLOCKED = "blocked"


class CardSource(str, Enum):
    """Whether a card came from the first plan generation or a later merge."""

    ORIGINAL = "original"
    INCREMENTAL = "incremental"


class WorkflowState(RecordModel):
    """Per-session progress through the staged workflow."""

    session_id: str
    user_id: Optional[str] = None
    journey_id: Optional[str] = None
    stage: Stage = Stage.ANAMNESE
    context: Dict[str, Any] = Field(default_factory=dict)
    pending_validation: Optional[str] = None
    checklist: Dict[str, bool] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class PlanCard(RecordModel):
    """Persisted unit of work materialised from a plan."""

    id: str
    session_id: str
    plan_key: str
    title: str
    description: str = ""
    assignee: str = ""
    due_at: Optional[datetime] = None
    status: CardStatus = CardStatus.TODO
    plan_hash: str
    plan_version: int = Field(default=1, ge=1)
    source: CardSource = CardSource.ORIGINAL
    deprecated: bool = False
    deprecated_version: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Deliverable(RecordModel):
    """Generated document attached to a journey."""

    id: str
    session_id: str
    journey_id: str
    kind: str
    title: str
    slug: str = ""
    html_body: str = ""
    stage: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)


class TimelineEvent(RecordModel):
    """Append-only record of something that happened during a session."""

    id: str
    session_id: str
    kind: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
