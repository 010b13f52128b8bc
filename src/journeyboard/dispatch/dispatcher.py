"""Execute workflow actions against storage with per-action isolation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence
from uuid import uuid4

from ..board.reconciler import BoardReconciler, BoardSettings
from ..errors import ExternalCallError, JourneyBoardError, NotFoundError, StageValidationError
from ..memory.schema import Deliverable, TimelineEvent, WorkflowState
from ..memory.store import MemoryStore
from ..utils.slug import slugify
from ..workflow.controller import deliverable_generated_key, form_shown_key, get_next_actions
from ..workflow.rules import PRIORITIZATION_GATE
from ..workflow.validator import AdvanceOutcome, StageValidator
from .cache import DEFAULT_CACHE_SIZE, JourneyCache
from .collaborators import (
    DeliverableGenerator,
    OfflineDeliverableGenerator,
    ProgressAwarder,
    TimelineProgressAwarder,
    deliverable_title,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_CONTEXT_DENYLIST: tuple[str, ...] = (
    "estado_atual",
    "contexto_negocio",
    "stage",
    "pending_validation",
    "checklist",
)
DEFAULT_DELIVERABLE_KIND = "diagnostico_exec"
EVIDENCE_MEMO_KIND = "evidencia_memo"

ACTION_ALIASES: Dict[str, str] = {
    "criar_jornada": "start_journey",
    "gerar_entregavel": "generate_deliverable",
    "create_doc": "generate_deliverable",
    "ensure_kanban": "update_kanban",
    "reconcile_plan": "update_kanban",
    "transicao_estado": "transition_stage",
    "avancar_fase": "transition_stage",
    "advance_stage": "transition_stage",
    "exibir_formulario": "show_form",
    "set_validacao": "set_pending_validation",
    "validar_priorizacao": "confirm_validation",
}
EVIDENCE_ACTIONS = frozenset({"diagnose", "analyze_dataset", "compute_kpis", "what_if"})
INFORMATIONAL_ACTIONS = frozenset({"coletar_info", "aplicar_metodologia", "schedule_checkin"})

_KIND_KEYS = ("kind", "deliverableType", "tipo_entregavel", "docType", "tipo")
_TARGET_KEYS = ("to", "novo_estado", "estado", "target", "state", "fase")
_FORM_KEYS = ("form", "formulario", "tipo")
_RESERVED_KEYS = frozenset({"type", "action", "params", "reason"})


@dataclass(slots=True)
class ExecutionResult:
    """Outcome of one dispatched action."""

    success: bool
    action_type: str
    resource_id: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "action_type": self.action_type,
            "resource_id": self.resource_id,
            "error": self.error,
            "data": dict(self.data),
        }


@dataclass(slots=True)
class NormalizedAction:
    type: str
    params: Dict[str, Any]
    raw: Dict[str, Any]


def normalize_action(action: Any) -> NormalizedAction:
    """Coerce an action object or mapping into ``{type, params}``.

    Params may arrive nested under ``params`` or flattened next to ``type``.
    Aliases resolve to their canonical type.
    """
    if hasattr(action, "to_payload"):
        action = action.to_payload()
    if not isinstance(action, Mapping):
        return NormalizedAction(type="", params={}, raw={"value": action})

    raw = dict(action)
    action_type = str(raw.get("type") or raw.get("action") or "").strip()
    nested = raw.get("params")
    if isinstance(nested, Mapping):
        params = dict(nested)
    else:
        params = {key: value for key, value in raw.items() if key not in _RESERVED_KEYS}
    return NormalizedAction(type=ACTION_ALIASES.get(action_type, action_type), params=params, raw=raw)


def _action_type(action: Any) -> str:
    try:
        return normalize_action(action).type
    except Exception:  # noqa: BLE001 - reported as an untyped action
        LOGGER.warning("Could not read action %r", action, exc_info=True)
        return ""


def _first_param(params: Mapping[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = params.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


Handler = Callable[[str, NormalizedAction], ExecutionResult]


class ActionDispatcher:
    """Run batches of workflow actions for one session, in order.

    ``execute`` never raises: each action's failure becomes a failed
    ``ExecutionResult`` and the remaining actions still run.
    """

    def __init__(
        self,
        store: MemoryStore,
        *,
        validator: Optional[StageValidator] = None,
        reconciler: Optional[BoardReconciler] = None,
        generator: Optional[DeliverableGenerator] = None,
        progress: Optional[ProgressAwarder] = None,
        cache: Optional[JourneyCache] = None,
        context_denylist: Sequence[str] = DEFAULT_CONTEXT_DENYLIST,
    ) -> None:
        self._store = store
        self._validator = validator or StageValidator(store)
        self._reconciler = reconciler or BoardReconciler(store)
        self._generator = generator or OfflineDeliverableGenerator()
        self._progress = progress or TimelineProgressAwarder(store)
        self._cache = cache if cache is not None else JourneyCache()
        self._denylist = frozenset(context_denylist)
        self._handlers: Dict[str, Handler] = {
            "start_journey": self._start_journey,
            "generate_deliverable": self._generate_deliverable,
            "design_process_map": self._design_process_map,
            "update_kanban": self._update_kanban,
            "transition_stage": self._transition_stage,
            "show_form": self._show_form,
            "set_pending_validation": self._set_pending_validation,
            "confirm_validation": self._confirm_validation,
        }

    @classmethod
    def from_config(cls, store: MemoryStore, config: Mapping[str, Any]) -> "ActionDispatcher":
        dispatcher_cfg = config.get("dispatcher") or {}
        cache_cfg = config.get("cache") or {}
        denylist = dispatcher_cfg.get("context_denylist")
        return cls(
            store,
            reconciler=BoardReconciler(store, settings=BoardSettings.from_config(config)),
            cache=JourneyCache(int(cache_cfg.get("journey_cache_size") or DEFAULT_CACHE_SIZE)),
            context_denylist=tuple(denylist) if denylist is not None else DEFAULT_CONTEXT_DENYLIST,
        )

    @property
    def cache(self) -> JourneyCache:
        return self._cache

    # Entry points ---------------------------------------------------------------------
    def execute(
        self,
        actions: Sequence[Any],
        session_id: Optional[str],
        user_id: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[ExecutionResult]:
        if not session_id or not str(session_id).strip():
            LOGGER.error("Refusing to execute %d action(s) without a session id", len(actions))
            return [
                ExecutionResult(success=False, action_type=_action_type(action), error="Missing session id")
                for action in actions
            ]

        try:
            self._prepare(session_id, user_id, context)
        except Exception:  # noqa: BLE001 - actions still run against stored state
            LOGGER.exception("Failed to merge context for session %s", session_id)

        results: List[ExecutionResult] = []
        for action in actions:
            results.append(self._run(session_id, action))
        return results

    def execute_next(
        self,
        session_id: Optional[str],
        user_id: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> List[ExecutionResult]:
        """Merge ``context``, decide the next actions from stored state, and run them.

        The session's journey is created first when missing, so deliverables
        decided for the stage can be stored.
        """
        if not session_id or not str(session_id).strip():
            LOGGER.error("Cannot decide next actions without a session id")
            return []
        state = self._prepare(session_id, user_id, context)
        if not state.journey_id:
            self._ensure_journey(state)
        payloads = [action.to_payload() for action in get_next_actions(state)]
        LOGGER.info("Session %s next actions: %s", session_id, [item["type"] for item in payloads])
        return self.execute(payloads, session_id, user_id)

    # Internals ------------------------------------------------------------------------
    def _prepare(
        self,
        session_id: str,
        user_id: Optional[str],
        context: Optional[Mapping[str, Any]],
    ) -> WorkflowState:
        state = self._store.get_or_create_state(session_id, user_id=user_id)
        updates: Dict[str, Any] = {}
        if context:
            merged = dict(state.context)
            dropped = []
            for key, value in context.items():
                if key in self._denylist:
                    dropped.append(key)
                    continue
                merged[key] = value
            if dropped:
                LOGGER.debug("Ignoring derived context keys %s", ", ".join(sorted(dropped)))
            if merged != state.context:
                updates["context"] = merged
        if user_id and state.user_id != user_id:
            updates["user_id"] = user_id
        if not updates:
            return state
        return self._store.save_state(state.model_copy(update=updates))

    def _run(self, session_id: str, raw_action: Any) -> ExecutionResult:
        action_type = ""
        try:
            action = normalize_action(raw_action)
            action_type = action.type
            return self._dispatch(session_id, action)
        except StageValidationError as error:
            LOGGER.warning("Action %s blocked: %s", action_type, error)
            return ExecutionResult(
                success=False,
                action_type=action_type,
                error=str(error),
                data={"missing_fields": list(error.missing_fields)},
            )
        except JourneyBoardError as error:
            LOGGER.warning("Action %s failed: %s", action_type, error)
            return ExecutionResult(success=False, action_type=action_type, error=str(error))
        except Exception as error:  # noqa: BLE001 - one action never aborts the batch
            LOGGER.exception("Action %s raised for session %s", action_type or "<unreadable>", session_id)
            return ExecutionResult(success=False, action_type=action_type, error=str(error))

    def _dispatch(self, session_id: str, action: NormalizedAction) -> ExecutionResult:
        handler = self._handlers.get(action.type)
        if handler is not None:
            return handler(session_id, action)
        if action.type in EVIDENCE_ACTIONS:
            return self._evidence_memo(session_id, action)
        if action.type in INFORMATIONAL_ACTIONS:
            LOGGER.debug("Informational action %s needs no side effects", action.type)
            return ExecutionResult(success=True, action_type=action.type, data={"noop": True})
        LOGGER.warning("Unknown action type %r", action.type)
        return ExecutionResult(
            success=False,
            action_type=action.type,
            error=f"Unknown action type: {action.type or '<missing>'}",
        )

    def _state(self, session_id: str) -> WorkflowState:
        state = self._store.get_state(session_id)
        if state is None:
            raise NotFoundError("session", session_id)
        return state

    def _journey_id(self, session_id: str) -> Optional[str]:
        cached = self._cache.get(session_id)
        if cached:
            return cached
        journey_id = self._store.get_journey_id(session_id)
        if journey_id:
            self._cache.put(session_id, journey_id)
        return journey_id

    def _require_journey(self, session_id: str) -> str:
        journey_id = self._journey_id(session_id)
        if not journey_id:
            LOGGER.warning("Session %s has no journey; run start_journey first", session_id)
            raise NotFoundError("journey", session_id)
        return journey_id

    def _mark(self, session_id: str, key: str) -> WorkflowState:
        state = self._state(session_id)
        if state.checklist.get(key):
            return state
        checklist = dict(state.checklist)
        checklist[key] = True
        return self._store.save_state(state.model_copy(update={"checklist": checklist}))

    def _event(self, session_id: str, kind: str, payload: Dict[str, Any]) -> None:
        self._store.append_event(
            TimelineEvent(id=uuid4().hex, session_id=session_id, kind=kind, payload=payload)
        )

    def _ensure_journey(self, state: WorkflowState) -> tuple[str, bool]:
        journey_id = state.journey_id
        created = False
        if not journey_id:
            journey_id = uuid4().hex
            self._store.save_state(state.model_copy(update={"journey_id": journey_id}))
            self._event(state.session_id, "journey.started", {"journey_id": journey_id})
            created = True
            LOGGER.info("Started journey %s for session %s", journey_id, state.session_id)
        self._cache.put(state.session_id, journey_id)
        return journey_id, created

    # Handlers -------------------------------------------------------------------------
    def _start_journey(self, session_id: str, action: NormalizedAction) -> ExecutionResult:
        journey_id, created = self._ensure_journey(self._state(session_id))
        return ExecutionResult(
            success=True,
            action_type=action.type,
            resource_id=journey_id,
            data={"journey_id": journey_id, "created": created},
        )

    def _generate_deliverable(self, session_id: str, action: NormalizedAction) -> ExecutionResult:
        kind = _first_param(action.params, _KIND_KEYS) or DEFAULT_DELIVERABLE_KIND
        return self._generate(session_id, action, kind)

    def _design_process_map(self, session_id: str, action: NormalizedAction) -> ExecutionResult:
        style = (_first_param(action.params, ("style", "estilo")) or "as_is").lower().replace("-", "_")
        kind = "bpmn_to_be" if style in {"to_be", "tobe"} else "bpmn_as_is"
        return self._generate(session_id, action, kind)

    def _generate(self, session_id: str, action: NormalizedAction, kind: str) -> ExecutionResult:
        journey_id = self._require_journey(session_id)
        state = self._state(session_id)
        generated = self._generator.generate(kind, state.context)
        if generated is None:
            raise ExternalCallError(f"Generator returned nothing for deliverable '{kind}'")

        title = generated.title or deliverable_title(kind)
        deliverable = Deliverable(
            id=uuid4().hex,
            session_id=session_id,
            journey_id=journey_id,
            kind=kind,
            title=title,
            slug=slugify(title, fallback=kind),
            html_body=generated.html_body,
            stage=state.stage.value,
        )
        self._store.insert_deliverable(deliverable)
        self._mark(session_id, deliverable_generated_key(kind))
        LOGGER.info("Generated %s deliverable %s for session %s", kind, deliverable.id, session_id)
        return ExecutionResult(
            success=True,
            action_type=action.type,
            resource_id=deliverable.id,
            data={"kind": kind, "title": title, "slug": deliverable.slug},
        )

    def _evidence_memo(self, session_id: str, action: NormalizedAction) -> ExecutionResult:
        journey_id = self._require_journey(session_id)
        state = self._state(session_id)
        title = f"{deliverable_title(EVIDENCE_MEMO_KIND)}: {action.type}"
        body = json.dumps({"type": action.type, "params": action.params}, ensure_ascii=False, indent=2, default=str)
        deliverable = Deliverable(
            id=uuid4().hex,
            session_id=session_id,
            journey_id=journey_id,
            kind=EVIDENCE_MEMO_KIND,
            title=title,
            slug=slugify(title, fallback=EVIDENCE_MEMO_KIND),
            html_body=f"<pre>{body}</pre>",
            stage=state.stage.value,
        )
        self._store.insert_deliverable(deliverable)
        return ExecutionResult(
            success=True,
            action_type=action.type,
            resource_id=deliverable.id,
            data={"kind": EVIDENCE_MEMO_KIND},
        )

    def _update_kanban(self, session_id: str, action: NormalizedAction) -> ExecutionResult:
        plan = action.params.get("plan") or action.params.get("plano") or action.params
        result = self._reconciler.reconcile(session_id, plan)
        error = None
        if result.errors:
            error = "; ".join(f"{batch}: {message}" for batch, message in sorted(result.errors.items()))
        return ExecutionResult(
            success=result.ok,
            action_type=action.type,
            resource_id=result.plan_hash,
            error=error,
            data=result.as_dict(),
        )

    def _transition_stage(self, session_id: str, action: NormalizedAction) -> ExecutionResult:
        target = _first_param(action.params, _TARGET_KEYS)
        force = bool(action.params.get("force"))
        if target:
            outcome = self._validator.advance_to(session_id, target, force=force)
        else:
            outcome = self._validator.advance_stage(session_id, force=force)

        if not outcome.success:
            if outcome.missing_fields:
                stage = outcome.previous_stage.value if outcome.previous_stage else "unknown"
                raise StageValidationError(stage, outcome.missing_fields)
            return ExecutionResult(success=False, action_type=action.type, error=outcome.message)

        data: Dict[str, Any] = {
            "from": outcome.previous_stage.value if outcome.previous_stage else None,
            "to": outcome.new_stage.value if outcome.new_stage else None,
            "deliverables": list(outcome.deliverables),
            "progress": self._award(session_id, outcome),
        }
        return ExecutionResult(
            success=True,
            action_type=action.type,
            resource_id=data["to"],
            data=data,
        )

    def _award(self, session_id: str, outcome: AdvanceOutcome) -> Optional[Dict[str, Any]]:
        if not outcome.gamification_trigger:
            return None
        try:
            award = self._progress.award(session_id, outcome.gamification_trigger)
        except Exception:  # noqa: BLE001 - progress is best-effort
            LOGGER.warning(
                "Progress award %s failed for session %s",
                outcome.gamification_trigger,
                session_id,
                exc_info=True,
            )
            return None
        return award.as_dict() if award is not None else None

    def _show_form(self, session_id: str, action: NormalizedAction) -> ExecutionResult:
        form = _first_param(action.params, _FORM_KEYS)
        if not form:
            return ExecutionResult(success=False, action_type=action.type, error="show_form requires a form name")
        item = _first_param(action.params, ("item", "processo"))
        self._mark(session_id, form_shown_key(form, item))
        return ExecutionResult(
            success=True,
            action_type=action.type,
            resource_id=form,
            data={"form": form, "item": item},
        )

    def _set_pending_validation(self, session_id: str, action: NormalizedAction) -> ExecutionResult:
        kind = _first_param(action.params, ("kind", "tipo", "validation")) or PRIORITIZATION_GATE
        state = self._state(session_id)
        if state.pending_validation != kind:
            self._store.save_state(state.model_copy(update={"pending_validation": kind}))
            self._event(session_id, "validation.requested", {"kind": kind})
            LOGGER.info("Session %s awaiting %s validation", session_id, kind)
        return ExecutionResult(success=True, action_type=action.type, resource_id=kind, data={"pending": kind})

    def _confirm_validation(self, session_id: str, action: NormalizedAction) -> ExecutionResult:
        requested = _first_param(action.params, ("kind", "tipo", "validation"))
        state = self._state(session_id)
        pending = state.pending_validation
        if pending is None:
            return ExecutionResult(success=True, action_type=action.type, data={"cleared": None})
        if requested and requested != pending:
            return ExecutionResult(
                success=False,
                action_type=action.type,
                error=f"Pending validation is '{pending}', not '{requested}'",
            )
        self._store.save_state(state.model_copy(update={"pending_validation": None}))
        self._event(session_id, "validation.confirmed", {"kind": pending})
        LOGGER.info("Session %s confirmed %s validation", session_id, pending)
        return ExecutionResult(success=True, action_type=action.type, resource_id=pending, data={"cleared": pending})


__all__ = [
    "ACTION_ALIASES",
    "ActionDispatcher",
    "DEFAULT_CONTEXT_DENYLIST",
    "ExecutionResult",
    "NormalizedAction",
    "normalize_action",
]
