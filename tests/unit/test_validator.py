from __future__ import annotations

from typing import Any, Dict

from journeyboard.memory.schema import Stage, WorkflowState
from journeyboard.memory.store import MemoryStore
from journeyboard.workflow.validator import StageValidator, validate_stage


def test_empty_anamnese_lists_every_field() -> None:
    result = validate_stage(Stage.ANAMNESE, {})
    assert not result.is_valid
    assert not result.can_advance
    assert "Nome completo do usuário" in result.missing_fields
    assert "Desafios principais (tem 0, precisa 2)" in result.missing_fields
    assert len(result.missing_fields) == 8


def test_challenges_need_two_items(anamnese_context: Dict[str, Any]) -> None:
    context = dict(anamnese_context, desafios_principais=["Vendas baixas"])
    result = validate_stage("anamnese", context)
    assert result.missing_fields == ["Desafios principais (tem 1, precisa 2)"]


def test_complete_anamnese_can_advance(anamnese_context: Dict[str, Any]) -> None:
    result = validate_stage(Stage.ANAMNESE, anamnese_context)
    assert result.is_valid and result.can_advance
    assert result.next_stage is Stage.MODELAGEM


def test_pending_gate_blocks_advance_but_not_validity() -> None:
    context = {"canvas": {"x": 1}, "cadeia": ["Compras"]}
    result = validate_stage(Stage.MODELAGEM, context, pending_validation="priorizacao")
    assert result.is_valid
    assert not result.can_advance
    assert result.next_stage is None
    assert result.missing_fields == ["Validação pendente: priorizacao"]


def test_execution_requires_attributes_for_each_process() -> None:
    context = {"escopo": {"processos": [{"nome": "Vendas"}, {"name": "Compras"}]}, "atributos_processo": {"Vendas": "ok"}}
    result = validate_stage(Stage.EXECUCAO, context)
    assert result.missing_fields == ["Atributos do processo Compras"]


def test_unknown_and_final_stages() -> None:
    unknown = validate_stage("faturamento", {})
    assert not unknown.is_valid
    assert unknown.missing_fields == ["Etapa desconhecida"]

    done = validate_stage(Stage.CONCLUIDO, {})
    assert done.is_valid
    assert not done.can_advance


def test_advance_persists_stage_and_records_event(store: MemoryStore, anamnese_context: Dict[str, Any]) -> None:
    store.save_state(WorkflowState(session_id="s1", context=anamnese_context))
    validator = StageValidator(store)

    outcome = validator.advance_stage("s1")

    assert outcome.success
    assert outcome.previous_stage is Stage.ANAMNESE
    assert outcome.new_stage is Stage.MODELAGEM
    assert outcome.deliverables == ["anamnese-empresarial"]
    assert outcome.gamification_trigger == "anamnese"
    state = store.get_state("s1")
    assert state is not None and state.stage is Stage.MODELAGEM
    events = store.list_events("s1", kind="stage.advanced")
    assert events[0].payload == {
        "from": "anamnese",
        "to": "modelagem",
        "deliverables": ["anamnese-empresarial"],
        "forced": False,
    }


def test_non_adjacent_or_same_stage_transitions_fail(store: MemoryStore, anamnese_context: Dict[str, Any]) -> None:
    store.save_state(WorkflowState(session_id="s1", context=anamnese_context))
    validator = StageValidator(store)

    skip = validator.advance_to("s1", Stage.PRIORIZACAO)
    same = validator.advance_to("s1", "anamnese")
    bogus = validator.advance_to("s1", "faturamento")

    assert not skip.success and "Invalid transition" in skip.message
    assert not same.success
    assert not bogus.success
    state = store.get_state("s1")
    assert state is not None and state.stage is Stage.ANAMNESE
    assert store.list_events("s1") == []


def test_force_skips_fields_but_never_the_gate(store: MemoryStore) -> None:
    validator = StageValidator(store)
    store.save_state(WorkflowState(session_id="gated", stage=Stage.MODELAGEM, pending_validation="priorizacao"))
    store.save_state(WorkflowState(session_id="open", stage=Stage.MODELAGEM))

    gated = validator.advance_stage("gated", force=True)
    forced = validator.advance_stage("open", force=True)

    assert not gated.success
    assert "Validação pendente: priorizacao" in gated.missing_fields
    assert forced.success
    assert forced.new_stage is Stage.PRIORIZACAO
    assert store.list_events("open")[0].payload["forced"] is True


def test_unknown_session_is_reported_not_raised(store: MemoryStore) -> None:
    validator = StageValidator(store)
    assert not validator.advance_stage("ghost").success
    result = validator.validate_session("ghost")
    assert not result.is_valid
    assert "not found" in result.message
