"""Deterministic next-action decisions for a journey's current stage.

``decide`` is a pure function of the stored workflow state: it reads the
stage, the collected context, the pending-validation flag, and the checklist,
and returns the ordered actions the dispatcher should run next. It never
touches storage and never raises for a malformed stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Union

from ..memory.schema import Stage, WorkflowState
from .rules import (
    PRIORITIZATION_GATE,
    coerce_stage,
    is_filled,
    process_attributes_filled,
    process_name,
    scope_processes,
)
from .validator import validate_stage

LOGGER = logging.getLogger(__name__)

ANAMNESE_FORM = "anamnese"
CANVAS_FORM = "canvas"
VALUE_CHAIN_FORM = "cadeia_valor"
ATTRIBUTES_FORM = "atributos_processo"
PRIORITY_MATRIX = "matriz_priorizacao"
PROJECT_SCOPE = "escopo_projeto"


def form_shown_key(form: str, item: Optional[str] = None) -> str:
    """Checklist key recording that ``form`` was already displayed."""
    if item:
        return f"{form}_form_shown:{item}"
    return f"{form}_form_shown"


def deliverable_generated_key(kind: str) -> str:
    """Checklist key recording that a deliverable of ``kind`` was generated."""
    return f"{kind}_generated"


@dataclass(frozen=True, slots=True)
class ShowForm:
    type: ClassVar[str] = "show_form"

    form: str
    item: Optional[str] = None
    reason: str = ""

    def to_payload(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {"form": self.form}
        if self.item:
            params["item"] = self.item
        return {"type": self.type, "params": params, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class GenerateDeliverable:
    type: ClassVar[str] = "generate_deliverable"

    kind: str
    reason: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "params": {"kind": self.kind}, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class SetPendingValidation:
    type: ClassVar[str] = "set_pending_validation"

    kind: str
    reason: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "params": {"kind": self.kind}, "reason": self.reason}


@dataclass(frozen=True, slots=True)
class AdvanceStage:
    type: ClassVar[str] = "transition_stage"

    target: Stage
    reason: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {"type": self.type, "params": {"to": self.target.value}, "reason": self.reason}


Action = Union[ShowForm, GenerateDeliverable, SetPendingValidation, AdvanceStage]


@dataclass(slots=True)
class Decision:
    """Actions to run next plus the validator's view of the current stage."""

    stage: Optional[Stage]
    actions: List[Action] = field(default_factory=list)
    can_advance: bool = False
    missing: List[str] = field(default_factory=list)
    next_stage: Optional[Stage] = None

    def payloads(self) -> List[Dict[str, Any]]:
        return [action.to_payload() for action in self.actions]


def decide(state: WorkflowState | Mapping[str, Any]) -> Decision:
    """Return the next actions for ``state`` along with its validation summary."""
    raw_stage, context, pending, checklist = _read_state(state)
    stage = coerce_stage(raw_stage)
    if stage is None:
        LOGGER.warning("Unknown workflow stage %r; emitting no actions", raw_stage)
        return Decision(stage=None, missing=["Etapa desconhecida"])

    validation = validate_stage(stage, context, pending_validation=pending)
    decision = Decision(
        stage=stage,
        can_advance=validation.can_advance,
        missing=list(validation.missing_fields),
        next_stage=validation.next_stage,
    )

    if pending:
        LOGGER.debug("Session awaiting %s validation; holding at %s", pending, stage.value)
        decision.actions = [SetPendingValidation(pending, reason="awaiting_user_validation")]
        return decision

    if stage is Stage.ANAMNESE:
        decision.actions = _anamnese_actions(validation.is_valid, checklist)
    elif stage is Stage.MODELAGEM:
        decision.actions = _modelagem_actions(context, checklist)
    elif stage is Stage.PRIORIZACAO:
        decision.actions = _priorizacao_actions(validation.can_advance)
    elif stage is Stage.EXECUCAO:
        decision.actions = _execucao_actions(context, checklist)
    LOGGER.debug("Stage %s decided %d action(s)", stage.value, len(decision.actions))
    return decision


def get_next_actions(state: WorkflowState | Mapping[str, Any]) -> List[Action]:
    """Dry-run entry point returning only the ordered actions of ``decide``."""
    return decide(state).actions


def _read_state(state: WorkflowState | Mapping[str, Any]) -> tuple[Any, Mapping[str, Any], Optional[str], Mapping[str, Any]]:
    if isinstance(state, WorkflowState):
        return state.stage, state.context, state.pending_validation, state.checklist
    if not isinstance(state, Mapping):
        return None, {}, None, {}
    context = state.get("context")
    checklist = state.get("checklist")
    pending = state.get("pending_validation")
    return (
        state.get("stage") or Stage.ANAMNESE.value,
        context if isinstance(context, Mapping) else {},
        pending if isinstance(pending, str) and pending.strip() else None,
        checklist if isinstance(checklist, Mapping) else {},
    )


def _anamnese_actions(fields_complete: bool, checklist: Mapping[str, Any]) -> List[Action]:
    if fields_complete:
        return [AdvanceStage(Stage.MODELAGEM, reason="anamnese_complete")]
    if not checklist.get(form_shown_key(ANAMNESE_FORM)):
        return [ShowForm(ANAMNESE_FORM, reason="anamnese_needed")]
    return []


def _modelagem_actions(context: Mapping[str, Any], checklist: Mapping[str, Any]) -> List[Action]:
    has_canvas = is_filled(context.get("canvas"))
    if not has_canvas:
        if not checklist.get(form_shown_key(CANVAS_FORM)):
            return [ShowForm(CANVAS_FORM, reason="canvas_needed")]
        return []

    has_value_chain = is_filled(context.get("cadeia_valor")) or is_filled(context.get("cadeia"))
    if not has_value_chain:
        if not checklist.get(form_shown_key(VALUE_CHAIN_FORM)):
            return [ShowForm(VALUE_CHAIN_FORM, reason="value_chain_needed_after_canvas")]
        return []

    if checklist.get(deliverable_generated_key(PRIORITY_MATRIX)):
        return [AdvanceStage(Stage.PRIORIZACAO, reason="prioritization_confirmed")]

    # both artefacts present: the whole batch goes out together
    return [
        GenerateDeliverable(PRIORITY_MATRIX, reason="auto_generate_after_value_chain"),
        GenerateDeliverable(PROJECT_SCOPE, reason="auto_generate_with_matrix"),
        SetPendingValidation(PRIORITIZATION_GATE, reason="request_user_validation"),
    ]


def _priorizacao_actions(can_advance: bool) -> List[Action]:
    if can_advance:
        return [AdvanceStage(Stage.EXECUCAO, reason="prioritization_validated")]
    LOGGER.info("Prioritisation validated but scope has no processes yet")
    return []


def _execucao_actions(context: Mapping[str, Any], checklist: Mapping[str, Any]) -> List[Action]:
    queue = scope_processes(context)
    if not queue:
        LOGGER.info("No prioritised processes found in execution stage")
        return []
    for item in queue:
        name = process_name(item)
        if name is None:
            LOGGER.warning("Prioritised process without a name blocks the queue")
            return []
        if process_attributes_filled(context, name):
            continue
        if checklist.get(form_shown_key(ATTRIBUTES_FORM, name)):
            return []
        return [ShowForm(ATTRIBUTES_FORM, item=name, reason="attributes_needed_for_next_process")]
    return [AdvanceStage(Stage.CONCLUIDO, reason="all_processes_detailed")]


__all__ = [
    "Action",
    "AdvanceStage",
    "Decision",
    "GenerateDeliverable",
    "SetPendingValidation",
    "ShowForm",
    "decide",
    "deliverable_generated_key",
    "form_shown_key",
    "get_next_actions",
]
