"""Single source of truth for stage order, required fields, and transition edges."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from ..memory.schema import Stage

STAGE_SEQUENCE: List[Stage] = [
    Stage.ANAMNESE,
    Stage.MODELAGEM,
    Stage.PRIORIZACAO,
    Stage.EXECUCAO,
    Stage.CONCLUIDO,
]

PRIORITIZATION_GATE = "priorizacao"
SCOPE_KEYS: tuple[str, ...] = ("escopo_projeto", "escopo", "matriz_priorizacao")
ATTRIBUTES_KEY = "atributos_processo"


@dataclass(frozen=True, slots=True)
class RequiredField:
    """Context key a stage needs before it may advance."""

    key: str
    label: str
    aliases: tuple[str, ...] = ()
    min_items: Optional[int] = None

    def keys(self) -> tuple[str, ...]:
        return (self.key, *self.aliases)


@dataclass(frozen=True, slots=True)
class StageTransition:
    """Allowed edge between two consecutive stages."""

    source: Stage
    target: Stage
    deliverables: tuple[str, ...]
    gamification_trigger: str

    @property
    def key(self) -> str:
        return f"{self.source.value}->{self.target.value}"


REQUIRED_FIELDS: Dict[Stage, tuple[RequiredField, ...]] = {
    Stage.ANAMNESE: (
        RequiredField("nome_usuario", "Nome completo do usuário"),
        RequiredField("cargo", "Cargo/Função na empresa"),
        RequiredField("empresa_nome", "Nome da empresa"),
        RequiredField("segmento", "Segmento de atuação"),
        RequiredField("porte", "Porte da empresa"),
        RequiredField("tempo_mercado", "Tempo de mercado"),
        RequiredField("tamanho_equipe", "Tamanho da equipe"),
        RequiredField("desafios_principais", "Desafios principais", min_items=2),
    ),
    Stage.MODELAGEM: (
        RequiredField("canvas", "Business Model Canvas"),
        RequiredField("cadeia_valor", "Cadeia de valor", aliases=("cadeia",)),
    ),
    Stage.PRIORIZACAO: (),
    Stage.EXECUCAO: (),
    Stage.CONCLUIDO: (),
}

STAGE_TRANSITIONS: Dict[tuple[Stage, Stage], StageTransition] = {
    (Stage.ANAMNESE, Stage.MODELAGEM): StageTransition(
        Stage.ANAMNESE, Stage.MODELAGEM, ("anamnese-empresarial",), "anamnese"
    ),
    (Stage.MODELAGEM, Stage.PRIORIZACAO): StageTransition(
        Stage.MODELAGEM, Stage.PRIORIZACAO, ("business-canvas", "cadeia-valor"), "modelagem"
    ),
    (Stage.PRIORIZACAO, Stage.EXECUCAO): StageTransition(
        Stage.PRIORIZACAO, Stage.EXECUCAO, ("matriz-priorizacao",), "priorizacao"
    ),
    (Stage.EXECUCAO, Stage.CONCLUIDO): StageTransition(
        Stage.EXECUCAO, Stage.CONCLUIDO, ("plano-acao",), "execucao"
    ),
}


def coerce_stage(value: Any) -> Optional[Stage]:
    """Resolve ``value`` into a ``Stage`` or return ``None`` when unrecognised."""
    if isinstance(value, Stage):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Stage(value.strip().lower())
    except ValueError:
        return None


def next_stage(stage: Stage) -> Optional[Stage]:
    index = STAGE_SEQUENCE.index(stage)
    if index + 1 >= len(STAGE_SEQUENCE):
        return None
    return STAGE_SEQUENCE[index + 1]


def find_transition(source: Stage, target: Stage) -> Optional[StageTransition]:
    return STAGE_TRANSITIONS.get((source, target))


def is_filled(value: Any) -> bool:
    """Return True when a context value counts as provided."""
    if value is None or value is False:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def field_value(context: Mapping[str, Any], field: RequiredField) -> Any:
    for key in field.keys():
        value = context.get(key)
        if is_filled(value):
            return value
    return None


def missing_required_fields(stage: Stage, context: Mapping[str, Any]) -> List[str]:
    """Return human-readable labels for the static required fields still absent."""
    missing: List[str] = []
    for field in REQUIRED_FIELDS.get(stage, ()):
        value = field_value(context, field)
        if field.min_items is not None:
            items = value if isinstance(value, (list, tuple)) else []
            if len(items) < field.min_items:
                missing.append(f"{field.label} (tem {len(items)}, precisa {field.min_items})")
            continue
        if value is None:
            missing.append(field.label)
    return missing


def scope_processes(context: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    """Return the prioritised process queue recorded in the project scope."""
    for key in SCOPE_KEYS:
        scope = context.get(key)
        if not isinstance(scope, Mapping):
            continue
        processes = scope.get("processos")
        if not isinstance(processes, list) or not processes:
            continue
        items = [item for item in processes if isinstance(item, Mapping)]
        # stable sort keeps list order for unranked items
        return sorted(items, key=_priority_rank)
    return []


def _priority_rank(item: Mapping[str, Any]) -> float:
    for key in ("prioridade", "posicao_prioridade", "priority"):
        value = item.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return float(value)
    return float("inf")


def process_name(item: Mapping[str, Any]) -> Optional[str]:
    for key in ("nome", "processo_nome", "name"):
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def process_attributes_filled(context: Mapping[str, Any], name: str) -> bool:
    attributes = context.get(ATTRIBUTES_KEY)
    if not isinstance(attributes, Mapping):
        return False
    return is_filled(attributes.get(name))


def pending_processes(context: Mapping[str, Any]) -> List[str]:
    """Return prioritised process names whose attributes are still missing, in order."""
    pending: List[str] = []
    for index, item in enumerate(scope_processes(context), start=1):
        name = process_name(item)
        if name is None:
            pending.append(f"processo #{index} sem nome")
            continue
        if not process_attributes_filled(context, name):
            pending.append(name)
    return pending


__all__ = [
    "ATTRIBUTES_KEY",
    "PRIORITIZATION_GATE",
    "REQUIRED_FIELDS",
    "STAGE_SEQUENCE",
    "STAGE_TRANSITIONS",
    "RequiredField",
    "StageTransition",
    "coerce_stage",
    "field_value",
    "find_transition",
    "is_filled",
    "missing_required_fields",
    "next_stage",
    "pending_processes",
    "process_attributes_filled",
    "process_name",
    "scope_processes",
]
