from __future__ import annotations

from typing import Any, Dict

import pytest

from journeyboard.memory.schema import Stage, WorkflowState
from journeyboard.workflow.controller import (
    AdvanceStage,
    GenerateDeliverable,
    SetPendingValidation,
    ShowForm,
    decide,
    get_next_actions,
)

MODEL_CONTEXT: Dict[str, Any] = {"canvas": {"proposta_valor": "Entrega rápida"}, "cadeia_valor": ["Compras", "Vendas"]}


def _state(stage: Stage, context: Dict[str, Any] | None = None, **extra: Any) -> WorkflowState:
    return WorkflowState(session_id="s1", stage=stage, context=context or {}, **extra)


def test_anamnese_shows_form_once_then_waits() -> None:
    assert get_next_actions(_state(Stage.ANAMNESE)) == [ShowForm("anamnese", reason="anamnese_needed")]
    shown = _state(Stage.ANAMNESE, checklist={"anamnese_form_shown": True})
    assert get_next_actions(shown) == []


def test_complete_anamnese_advances(anamnese_context: Dict[str, Any]) -> None:
    actions = get_next_actions(_state(Stage.ANAMNESE, anamnese_context))
    assert len(actions) == 1
    assert isinstance(actions[0], AdvanceStage)
    assert actions[0].target is Stage.MODELAGEM
    assert actions[0].to_payload()["params"] == {"to": "modelagem"}


def test_modelagem_asks_for_canvas_then_value_chain() -> None:
    first = get_next_actions(_state(Stage.MODELAGEM))
    assert [(action.type, action.form) for action in first] == [("show_form", "canvas")]

    second = get_next_actions(_state(Stage.MODELAGEM, {"canvas": {"x": 1}}))
    assert [(action.type, action.form) for action in second] == [("show_form", "cadeia_valor")]

    waiting = _state(Stage.MODELAGEM, {"canvas": {"x": 1}}, checklist={"cadeia_valor_form_shown": True})
    assert get_next_actions(waiting) == []


def test_modelagem_emits_prioritisation_batch_together() -> None:
    actions = get_next_actions(_state(Stage.MODELAGEM, MODEL_CONTEXT))

    assert [action.type for action in actions] == [
        "generate_deliverable",
        "generate_deliverable",
        "set_pending_validation",
    ]
    assert isinstance(actions[0], GenerateDeliverable) and actions[0].kind == "matriz_priorizacao"
    assert isinstance(actions[1], GenerateDeliverable) and actions[1].kind == "escopo_projeto"
    assert isinstance(actions[2], SetPendingValidation) and actions[2].kind == "priorizacao"


def test_value_chain_alias_counts_as_present() -> None:
    context = {"canvas": {"x": 1}, "cadeia": ["Compras"]}
    assert get_next_actions(_state(Stage.MODELAGEM, context))[0].type == "generate_deliverable"


def test_confirmed_matrix_moves_to_prioritisation() -> None:
    state = _state(Stage.MODELAGEM, MODEL_CONTEXT, checklist={"matriz_priorizacao_generated": True})
    assert get_next_actions(state) == [AdvanceStage(Stage.PRIORIZACAO, reason="prioritization_confirmed")]


@pytest.mark.parametrize("stage", list(Stage))
@pytest.mark.parametrize(
    "context",
    [
        {},
        MODEL_CONTEXT,
        {"escopo_projeto": {"processos": [{"nome": "Vendas"}]}, "atributos_processo": {"Vendas": {"a": 1}}},
    ],
)
def test_pending_validation_blocks_every_transition(stage: Stage, context: Dict[str, Any]) -> None:
    decision = decide(_state(stage, context, pending_validation="priorizacao"))
    assert not decision.can_advance
    assert not any(isinstance(action, AdvanceStage) for action in decision.actions)
    assert decision.actions == [SetPendingValidation("priorizacao", reason="awaiting_user_validation")]


def test_prioritisation_needs_scoped_processes() -> None:
    assert get_next_actions(_state(Stage.PRIORIZACAO)) == []
    scoped = _state(Stage.PRIORIZACAO, {"escopo_projeto": {"processos": [{"nome": "Vendas"}]}})
    assert get_next_actions(scoped) == [AdvanceStage(Stage.EXECUCAO, reason="prioritization_validated")]


def test_execution_walks_processes_in_priority_order() -> None:
    scope = {
        "processos": [
            {"nome": "Financeiro", "prioridade": 2},
            {"processo_nome": "Vendas", "prioridade": 1},
        ]
    }
    first = get_next_actions(_state(Stage.EXECUCAO, {"escopo_projeto": scope}))
    assert first == [ShowForm("atributos_processo", item="Vendas", reason="attributes_needed_for_next_process")]

    context = {"escopo_projeto": scope, "atributos_processo": {"Vendas": {"dono": "Ana"}}}
    second = get_next_actions(_state(Stage.EXECUCAO, context))
    assert [action.item for action in second] == ["Financeiro"]

    shown = _state(Stage.EXECUCAO, context, checklist={"atributos_processo_form_shown:Financeiro": True})
    assert get_next_actions(shown) == []

    context["atributos_processo"]["Financeiro"] = {"dono": "Rui"}
    assert get_next_actions(_state(Stage.EXECUCAO, context)) == [
        AdvanceStage(Stage.CONCLUIDO, reason="all_processes_detailed")
    ]


def test_nameless_process_blocks_the_queue() -> None:
    context = {"escopo_projeto": {"processos": [{"prioridade": 1}, {"nome": "Vendas", "prioridade": 2}]}}
    assert get_next_actions(_state(Stage.EXECUCAO, context)) == []


def test_unknown_stage_yields_no_actions() -> None:
    decision = decide({"stage": "faturamento", "context": {}})
    assert decision.stage is None
    assert decision.actions == []
    assert decision.missing == ["Etapa desconhecida"]


def test_completed_journey_has_nothing_to_do() -> None:
    assert get_next_actions({"stage": "concluido"}) == []


def test_mapping_state_defaults_to_anamnese() -> None:
    decision = decide({"context": {}})
    assert decision.stage is Stage.ANAMNESE
    assert decision.payloads() == [
        {"type": "show_form", "params": {"form": "anamnese"}, "reason": "anamnese_needed"}
    ]
