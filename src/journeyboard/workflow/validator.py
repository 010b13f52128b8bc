"""Checklist gate deciding whether a journey may leave its current stage."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional
from uuid import uuid4

from ..errors import NotFoundError
from ..memory.schema import Stage, TimelineEvent, WorkflowState
from ..memory.store import MemoryStore
from .rules import (
    StageTransition,
    coerce_stage,
    find_transition,
    missing_required_fields,
    next_stage,
    pending_processes,
    scope_processes,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ValidationResult:
    """Outcome of checking a stage's required fields."""

    is_valid: bool
    missing_fields: List[str] = field(default_factory=list)
    can_advance: bool = False
    next_stage: Optional[Stage] = None
    message: str = ""


@dataclass(slots=True)
class AdvanceOutcome:
    """Result of attempting to move a session to its next stage."""

    success: bool
    message: str
    previous_stage: Optional[Stage] = None
    new_stage: Optional[Stage] = None
    deliverables: List[str] = field(default_factory=list)
    gamification_trigger: Optional[str] = None
    missing_fields: List[str] = field(default_factory=list)


def validate_stage(
    stage: Stage | str | None,
    context: Mapping[str, Any] | None,
    *,
    pending_validation: Optional[str] = None,
) -> ValidationResult:
    """Check the required fields of ``stage`` against ``context``.

    The pending-validation gate never affects ``is_valid`` but always blocks
    ``can_advance``.
    """
    resolved = coerce_stage(stage)
    data: Mapping[str, Any] = context or {}
    if resolved is None:
        return ValidationResult(
            is_valid=False,
            missing_fields=["Etapa desconhecida"],
            message=f"Stage {stage!r} is not part of the workflow",
        )
    if resolved is Stage.CONCLUIDO:
        return ValidationResult(is_valid=True, message="Journey completed")

    missing = missing_required_fields(resolved, data)
    if resolved is Stage.PRIORIZACAO and not scope_processes(data):
        missing.append("Escopo do projeto com processos priorizados")
    if resolved is Stage.EXECUCAO:
        if not scope_processes(data):
            missing.append("Escopo do projeto com processos priorizados")
        missing.extend(f"Atributos do processo {name}" for name in pending_processes(data))

    is_valid = not missing
    blockers = list(missing)
    if pending_validation:
        blockers.append(f"Validação pendente: {pending_validation}")
    can_advance = not blockers
    target = next_stage(resolved) if can_advance else None

    if can_advance:
        message = f"Stage {resolved.value} complete; ready for {target.value if target else 'nothing'}"
    else:
        message = f"Stage {resolved.value} incomplete. Missing: {', '.join(blockers)}"
    return ValidationResult(
        is_valid=is_valid,
        missing_fields=blockers,
        can_advance=can_advance,
        next_stage=target,
        message=message,
    )


class StageValidator:
    """Validate and persist stage transitions for stored sessions."""

    def __init__(self, store: MemoryStore) -> None:
        self._store = store

    def validate(
        self,
        stage: Stage | str | None,
        context: Mapping[str, Any] | None,
        *,
        pending_validation: Optional[str] = None,
    ) -> ValidationResult:
        return validate_stage(stage, context, pending_validation=pending_validation)

    def validate_session(self, session_id: str) -> ValidationResult:
        state = self._store.get_state(session_id)
        if state is None:
            LOGGER.warning("Cannot validate unknown session %s", session_id)
            error = NotFoundError("session", session_id)
            return ValidationResult(is_valid=False, missing_fields=[str(error)], message=str(error))
        return validate_stage(state.stage, state.context, pending_validation=state.pending_validation)

    def advance_stage(self, session_id: str, *, force: bool = False) -> AdvanceOutcome:
        """Move the session one stage forward when its checklist is satisfied."""
        state = self._store.get_state(session_id)
        if state is None:
            return self._missing_session(session_id)
        target = next_stage(state.stage)
        if target is None:
            return AdvanceOutcome(
                success=False,
                message=f"No transition defined from {state.stage.value}",
                previous_stage=state.stage,
            )
        return self._advance(state, target, force=force)

    def advance_to(self, session_id: str, target: Stage | str, *, force: bool = False) -> AdvanceOutcome:
        """Move the session to ``target`` if that edge exists in the transition table."""
        state = self._store.get_state(session_id)
        if state is None:
            return self._missing_session(session_id)
        resolved = coerce_stage(target)
        if resolved is None:
            LOGGER.warning("Ignoring transition of %s to unknown stage %r", session_id, target)
            return AdvanceOutcome(
                success=False,
                message=f"Unknown stage: {target}",
                previous_stage=state.stage,
            )
        return self._advance(state, resolved, force=force)

    def _advance(self, state: WorkflowState, target: Stage, *, force: bool) -> AdvanceOutcome:
        transition = find_transition(state.stage, target)
        if transition is None:
            LOGGER.info(
                "No transition %s -> %s for session %s; staying put",
                state.stage.value,
                target.value,
                state.session_id,
            )
            return AdvanceOutcome(
                success=False,
                message=f"Invalid transition: {state.stage.value} -> {target.value}",
                previous_stage=state.stage,
            )

        validation = validate_stage(
            state.stage,
            state.context,
            pending_validation=state.pending_validation,
        )
        gate_open = not state.pending_validation
        if not validation.can_advance and not (force and gate_open):
            return AdvanceOutcome(
                success=False,
                message=f"Cannot advance: {validation.message}",
                previous_stage=state.stage,
                missing_fields=list(validation.missing_fields),
            )
        if force and not validation.can_advance:
            LOGGER.warning(
                "Forcing %s for session %s despite missing fields: %s",
                transition.key,
                state.session_id,
                ", ".join(validation.missing_fields),
            )

        self._persist(state, transition, forced=force and not validation.can_advance)
        LOGGER.info("Session %s advanced %s", state.session_id, transition.key)
        return AdvanceOutcome(
            success=True,
            message=f"Advanced to {target.value}",
            previous_stage=transition.source,
            new_stage=transition.target,
            deliverables=list(transition.deliverables),
            gamification_trigger=transition.gamification_trigger,
        )

    def _persist(self, state: WorkflowState, transition: StageTransition, *, forced: bool) -> None:
        self._store.save_state(state.model_copy(update={"stage": transition.target}))
        self._store.append_event(
            TimelineEvent(
                id=uuid4().hex,
                session_id=state.session_id,
                kind="stage.advanced",
                payload={
                    "from": transition.source.value,
                    "to": transition.target.value,
                    "deliverables": list(transition.deliverables),
                    "forced": forced,
                },
            )
        )

    @staticmethod
    def _missing_session(session_id: str) -> AdvanceOutcome:
        error = NotFoundError("session", session_id)
        LOGGER.warning("%s", error)
        return AdvanceOutcome(success=False, message=str(error))
