"""Canonical form and content hash of a submitted plan."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

TITLE_ALIASES: tuple[str, ...] = ("title", "titulo", "what", "o_que")
DESCRIPTION_ALIASES: tuple[str, ...] = ("description", "descricao", "why", "por_que")
ASSIGNEE_ALIASES: tuple[str, ...] = ("assignee", "responsavel", "who", "quem", "owner")
DUE_ALIASES: tuple[str, ...] = ("due", "due_at", "when", "quando")

HASH_ALGORITHMS: tuple[str, ...] = ("djb2", "blake2b64")
DEFAULT_HASH_ALGORITHM = "djb2"


def pick_alias(card: Mapping[str, Any], aliases: Sequence[str]) -> str:
    """Return the first non-empty value among ``aliases`` (key case ignored)."""
    lowered = {str(key).lower(): value for key, value in card.items()}
    for alias in aliases:
        value = lowered.get(alias)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


@dataclass(slots=True)
class PlanSubmission:
    """Loosely-structured plan as produced by the planning assistant."""

    type: str = ""
    area: str = ""
    cards: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: "PlanSubmission | Mapping[str, Any] | None") -> "PlanSubmission":
        if isinstance(payload, PlanSubmission):
            return payload
        if not isinstance(payload, Mapping):
            return cls()
        plan_type = payload.get("type") or payload.get("tipo") or ""
        area = payload.get("area") or ""
        raw_cards = payload.get("cards") or []
        cards = [dict(card) for card in raw_cards if isinstance(card, Mapping)]
        return cls(type=str(plan_type), area=str(area), cards=cards)

    @property
    def plan_key(self) -> str:
        """Lineage key grouping successive generations of the same plan."""
        return f"{normalize_text(self.type)}::{normalize_text(self.area)}"


def canonical_titles(cards: Sequence[Mapping[str, Any]]) -> List[str]:
    titles = (normalize_text(pick_alias(card, TITLE_ALIASES)) for card in cards)
    return sorted(title for title in titles if title)


def canonicalize(plan: PlanSubmission | Mapping[str, Any]) -> str:
    """Reduce ``plan`` to ``type::area::title|title`` ignoring volatile fields."""
    submission = PlanSubmission.from_payload(plan)
    titles = "|".join(canonical_titles(submission.cards))
    return f"{submission.plan_key}::{titles}"


def djb2_hash(value: str) -> str:
    """32-bit ``h * 33 + c`` hash over UTF-16 code units, formatted ``h<hex>``."""
    digest = 5381
    encoded = value.encode("utf-16-le")
    for index in range(0, len(encoded), 2):
        unit = encoded[index] | (encoded[index + 1] << 8)
        digest = (digest * 33 + unit) & 0xFFFFFFFF
    return f"h{digest:x}"


def blake2b64_hash(value: str) -> str:
    digest = hashlib.blake2b(value.encode("utf-8"), digest_size=8).hexdigest()
    return f"h{digest}"


def plan_hash(
    plan: PlanSubmission | Mapping[str, Any],
    *,
    algorithm: Optional[str] = None,
) -> str:
    """Hash the canonical form of ``plan``; equal canonical strings hash equally."""
    name = (algorithm or DEFAULT_HASH_ALGORITHM).strip().lower()
    canonical = canonicalize(plan)
    if name == "djb2":
        return djb2_hash(canonical)
    if name == "blake2b64":
        return blake2b64_hash(canonical)
    valid = ", ".join(HASH_ALGORITHMS)
    raise ValueError(f"Unknown plan hash algorithm '{algorithm}'. Expected one of: {valid}")


__all__ = [
    "ASSIGNEE_ALIASES",
    "DESCRIPTION_ALIASES",
    "DUE_ALIASES",
    "DEFAULT_HASH_ALGORITHM",
    "HASH_ALGORITHMS",
    "PlanSubmission",
    "TITLE_ALIASES",
    "blake2b64_hash",
    "canonical_titles",
    "canonicalize",
    "djb2_hash",
    "normalize_text",
    "pick_alias",
    "plan_hash",
]
