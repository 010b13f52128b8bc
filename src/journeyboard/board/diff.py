"""Classify plan cards against the cards already on the board."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import BaseModel

from .canonical import DESCRIPTION_ALIASES, TITLE_ALIASES, normalize_text, pick_alias

CardLike = Any


@dataclass(frozen=True, slots=True)
class NormalizedCard:
    title: str
    description: str
    original: CardLike


@dataclass(frozen=True, slots=True)
class ModifiedCard:
    """Existing card whose description changed in the new plan."""

    card_id: Optional[str]
    old_description: str
    new_description: str
    original: CardLike


@dataclass(slots=True)
class PlanDiff:
    added: List[CardLike] = field(default_factory=list)
    modified: List[ModifiedCard] = field(default_factory=list)
    removed: List[CardLike] = field(default_factory=list)
    unchanged: List[CardLike] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.removed)

    def counts(self) -> Dict[str, int]:
        return {
            "added": len(self.added),
            "modified": len(self.modified),
            "removed": len(self.removed),
            "unchanged": len(self.unchanged),
        }


def _as_mapping(card: CardLike) -> Mapping[str, Any]:
    if isinstance(card, BaseModel):
        return card.model_dump()
    if isinstance(card, Mapping):
        return card
    return {}


def _is_deprecated(card: CardLike) -> bool:
    return bool(_as_mapping(card).get("deprecated"))


def _card_id(card: CardLike) -> Optional[str]:
    value = _as_mapping(card).get("id")
    return str(value) if value is not None else None


def normalize_card(card: CardLike, *, default_title: str = "") -> NormalizedCard:
    """Normalise ``card``; a blank title reads as ``default_title``."""
    data = _as_mapping(card)
    title = pick_alias(data, TITLE_ALIASES) or default_title
    return NormalizedCard(
        title=normalize_text(title),
        description=normalize_text(pick_alias(data, DESCRIPTION_ALIASES)),
        original=card,
    )


def diff_cards(
    existing_cards: Sequence[CardLike],
    new_cards: Sequence[CardLike],
    *,
    default_title: str = "",
) -> PlanDiff:
    """Match cards by normalised title and sort them into the four buckets.

    Deprecated existing cards are ignored. Incoming cards without a title are
    matched under ``default_title``, the title they are stored with. When
    several cards on either side share a title the first one wins; there is
    no fuzzy matching.
    """
    existing = [
        normalize_card(card, default_title=default_title)
        for card in existing_cards
        if not _is_deprecated(card)
    ]
    incoming: List[NormalizedCard] = []
    seen: set[str] = set()
    for card in new_cards:
        entry = normalize_card(card, default_title=default_title)
        if entry.title in seen:
            continue
        seen.add(entry.title)
        incoming.append(entry)

    existing_by_title: Dict[str, NormalizedCard] = {}
    for entry in existing:
        existing_by_title.setdefault(entry.title, entry)

    diff = PlanDiff()
    for entry in incoming:
        match = existing_by_title.get(entry.title)
        if match is None:
            diff.added.append(entry.original)
        elif match.description != entry.description:
            diff.modified.append(
                ModifiedCard(
                    card_id=_card_id(match.original),
                    old_description=match.description,
                    new_description=pick_alias(_as_mapping(entry.original), DESCRIPTION_ALIASES),
                    original=match.original,
                )
            )
        else:
            diff.unchanged.append(match.original)

    for entry in existing:
        if entry.title not in seen:
            diff.removed.append(entry.original)
    return diff


__all__ = ["ModifiedCard", "NormalizedCard", "PlanDiff", "diff_cards", "normalize_card"]
