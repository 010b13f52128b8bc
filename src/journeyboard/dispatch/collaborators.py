"""Deliverable generation and progress awarding used by the dispatcher."""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol
from uuid import uuid4

from ..memory.schema import TimelineEvent
from ..memory.store import MemoryStore

LOGGER = logging.getLogger(__name__)

XP_PER_LEVEL = 500
XP_TABLE: Dict[str, int] = {
    "anamnese": 100,
    "modelagem": 250,
    "priorizacao": 50,
    "execucao": 300,
}

DELIVERABLE_TITLES: Dict[str, str] = {
    "anamnese": "Anamnese Empresarial",
    "canvas": "Business Model Canvas",
    "cadeia_valor": "Cadeia de Valor",
    "matriz_priorizacao": "Matriz de Priorização",
    "escopo_projeto": "Escopo do Projeto",
    "diagnostico_exec": "Diagnóstico Executivo",
    "bpmn_as_is": "Mapa de Processo (AS-IS)",
    "bpmn_to_be": "Mapa de Processo (TO-BE)",
    "plano_acao": "Plano de Ação",
    "evidencia_memo": "Memorando de Evidência",
}


@dataclass(slots=True)
class GeneratedDeliverable:
    title: str
    html_body: str
    kind: str


@dataclass(slots=True)
class ProgressAward:
    xp_gained: int
    leveled_up: bool
    level: int

    def as_dict(self) -> Dict[str, Any]:
        return {"xp_gained": self.xp_gained, "leveled_up": self.leveled_up, "level": self.level}


class DeliverableGenerator(Protocol):
    def generate(self, kind: str, context: Mapping[str, Any]) -> Optional[GeneratedDeliverable]:
        """Render a deliverable of ``kind``; ``None`` means nothing could be produced."""


class ProgressAwarder(Protocol):
    def award(self, session_id: str, event_key: str) -> Optional[ProgressAward]:
        """Grant progress for ``event_key``; ``None`` when the key earns nothing."""


def deliverable_title(kind: str) -> str:
    return DELIVERABLE_TITLES.get(kind) or kind.replace("_", " ").strip().title() or "Entregável"


class OfflineDeliverableGenerator:
    """Deterministic generator that lays out the collected context as HTML."""

    def generate(self, kind: str, context: Mapping[str, Any]) -> Optional[GeneratedDeliverable]:
        title = deliverable_title(kind)
        rows = []
        for key in sorted(context):
            value = context[key]
            if value in (None, "", [], {}):
                continue
            rows.append(
                f"<tr><th>{html.escape(str(key))}</th><td>{html.escape(_render_value(value))}</td></tr>"
            )
        body = "\n".join(
            [
                f"<h1>{html.escape(title)}</h1>",
                "<table>",
                *rows,
                "</table>",
            ]
        )
        return GeneratedDeliverable(title=title, html_body=body, kind=kind)


def _render_value(value: Any) -> str:
    if isinstance(value, Mapping):
        return "; ".join(f"{key}: {_render_value(item)}" for key, item in value.items())
    if isinstance(value, (list, tuple)):
        return ", ".join(_render_value(item) for item in value)
    return str(value)


class TimelineProgressAwarder:
    """Keep XP as ``progress.awarded`` timeline events; level = 1 + xp // 500."""

    def __init__(self, store: MemoryStore, *, xp_table: Optional[Mapping[str, int]] = None) -> None:
        self._store = store
        self._xp_table = dict(xp_table or XP_TABLE)

    def total_xp(self, session_id: str) -> int:
        events = self._store.list_events(session_id, kind="progress.awarded")
        return sum(int(event.payload.get("xp", 0)) for event in events)

    def award(self, session_id: str, event_key: str) -> Optional[ProgressAward]:
        xp = self._xp_table.get(event_key)
        if not xp:
            LOGGER.debug("No XP configured for %s", event_key)
            return None
        before = self.total_xp(session_id)
        after = before + xp
        self._store.append_event(
            TimelineEvent(
                id=uuid4().hex,
                session_id=session_id,
                kind="progress.awarded",
                payload={"event_key": event_key, "xp": xp, "total_xp": after},
            )
        )
        level_before = before // XP_PER_LEVEL + 1
        level_after = after // XP_PER_LEVEL + 1
        return ProgressAward(xp_gained=xp, leveled_up=level_after > level_before, level=level_after)


__all__ = [
    "DeliverableGenerator",
    "GeneratedDeliverable",
    "OfflineDeliverableGenerator",
    "ProgressAward",
    "ProgressAwarder",
    "TimelineProgressAwarder",
    "XP_PER_LEVEL",
    "XP_TABLE",
    "deliverable_title",
]
