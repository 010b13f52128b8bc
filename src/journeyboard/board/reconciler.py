"""Merge regenerated plans into the persisted task board."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from uuid import uuid4

from ..errors import NotFoundError
from ..memory.schema import CardSource, CardStatus, PlanCard, TimelineEvent
from ..memory.store import MemoryStore
from .canonical import (
    ASSIGNEE_ALIASES,
    DEFAULT_HASH_ALGORITHM,
    DESCRIPTION_ALIASES,
    DUE_ALIASES,
    TITLE_ALIASES,
    PlanSubmission,
    pick_alias,
    plan_hash,
)
from .dates import DEFAULT_FALLBACK_DAYS, resolve_due_date
from .diff import PlanDiff, diff_cards

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utc_clock() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class BoardSettings:
    """Tunables for how plan cards are materialised."""

    hash_algorithm: str = DEFAULT_HASH_ALGORITHM
    default_assignee: str = "Time"
    default_title: str = "Ação"
    fallback_due_days: int = DEFAULT_FALLBACK_DAYS

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "BoardSettings":
        board_cfg = config.get("board") or {}
        defaults = cls()
        return cls(
            hash_algorithm=str(board_cfg.get("hash_algorithm") or defaults.hash_algorithm),
            default_assignee=str(board_cfg.get("default_assignee") or defaults.default_assignee),
            default_title=str(board_cfg.get("default_title") or defaults.default_title),
            fallback_due_days=int(board_cfg.get("fallback_due_days") or defaults.fallback_due_days),
        )


@dataclass(slots=True)
class ReconcileResult:
    """Counts of effective writes made by one reconciliation."""

    plan_hash: str
    plan_version: int
    created: int = 0
    updated: int = 0
    deprecated: int = 0
    unchanged: int = 0
    created_ids: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def writes(self) -> int:
        return self.created + self.updated + self.deprecated

    def as_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "deprecated": self.deprecated,
            "unchanged": self.unchanged,
            "plan_hash": self.plan_hash,
            "plan_version": self.plan_version,
            "errors": dict(self.errors),
        }


class BoardReconciler:
    """Idempotent plan → board merge with soft deprecation.

    Cards from successive generations of a plan (same session, type and area)
    are matched by normalised title. Insert, update and deprecate run as
    independent batches so one failing batch never rolls back the others.
    """

    def __init__(
        self,
        store: MemoryStore,
        *,
        settings: Optional[BoardSettings] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._store = store
        self._settings = settings or BoardSettings()
        self._clock = clock or _utc_clock

    @property
    def settings(self) -> BoardSettings:
        return self._settings

    def reconcile(self, session_id: str, plan: PlanSubmission | Mapping[str, Any]) -> ReconcileResult:
        submission = PlanSubmission.from_payload(plan)
        digest = plan_hash(submission, algorithm=self._settings.hash_algorithm)
        if not submission.cards:
            LOGGER.info("Plan %s for session %s has no cards; nothing to reconcile", digest, session_id)
            return ReconcileResult(plan_hash=digest, plan_version=0)

        lineage = self._store.list_cards(
            session_id, plan_key=submission.plan_key, include_deprecated=True
        )
        if not lineage:
            result = self._materialise(session_id, submission, digest)
        else:
            result = self._merge(session_id, submission, digest, lineage)

        if result.writes:
            self._record(session_id, submission, result)
        return result

    def list_board(self, session_id: str, *, include_deprecated: bool = False) -> List[PlanCard]:
        return self._store.list_cards(session_id, include_deprecated=include_deprecated)

    def move_card(self, card_id: str, status: CardStatus | str) -> PlanCard:
        """Change a card's column; version and deprecation stay untouched."""
        target = status if isinstance(status, CardStatus) else CardStatus(str(status).strip().lower())
        if not self._store.update_card_status(card_id, target):
            raise NotFoundError("card", card_id)
        card = self._store.get_card(card_id)
        if card is None:
            raise NotFoundError("card", card_id)
        return card

    # Generations ----------------------------------------------------------------------
    def _materialise(self, session_id: str, submission: PlanSubmission, digest: str) -> ReconcileResult:
        result = ReconcileResult(plan_hash=digest, plan_version=1)
        cards = [
            self._build_card(session_id, submission, card, digest, 1, CardSource.ORIGINAL)
            for card in submission.cards
        ]
        try:
            result.created_ids = self._store.insert_cards(cards)
            result.created = len(result.created_ids)
        except Exception as error:  # noqa: BLE001 - reported per batch
            LOGGER.exception("Failed to insert first generation of plan %s", digest)
            result.errors["insert"] = str(error)
        LOGGER.info("Plan %s v1 for session %s: created %d card(s)", digest, session_id, result.created)
        return result

    def _merge(
        self,
        session_id: str,
        submission: PlanSubmission,
        digest: str,
        lineage: Sequence[PlanCard],
    ) -> ReconcileResult:
        diff = diff_cards(lineage, submission.cards, default_title=self._settings.default_title)
        current_version = max(
            max(card.plan_version, card.deprecated_version or 0) for card in lineage
        )
        LOGGER.info("Plan %s diff for session %s: %s", digest, session_id, diff.counts())
        if not diff.has_changes:
            return ReconcileResult(
                plan_hash=digest,
                plan_version=current_version,
                unchanged=len(diff.unchanged),
            )

        next_version = current_version + 1
        result = ReconcileResult(
            plan_hash=digest,
            plan_version=next_version,
            unchanged=len(diff.unchanged),
        )
        self._insert_added(session_id, submission, digest, diff, next_version, result)
        self._update_modified(diff, next_version, result)
        self._deprecate_removed(diff, next_version, result)
        return result

    def _insert_added(
        self,
        session_id: str,
        submission: PlanSubmission,
        digest: str,
        diff: PlanDiff,
        version: int,
        result: ReconcileResult,
    ) -> None:
        if not diff.added:
            return
        cards = [
            self._build_card(session_id, submission, card, digest, version, CardSource.INCREMENTAL)
            for card in diff.added
        ]
        try:
            result.created_ids = self._store.insert_cards(cards)
            result.created = len(result.created_ids)
        except Exception as error:  # noqa: BLE001 - reported per batch
            LOGGER.exception("Failed to insert %d added card(s)", len(cards))
            result.errors["insert"] = str(error)

    def _update_modified(self, diff: PlanDiff, version: int, result: ReconcileResult) -> None:
        updates = [(item.card_id, item.new_description) for item in diff.modified if item.card_id]
        if not updates:
            return
        try:
            result.updated = self._store.update_card_descriptions(updates, version)
        except Exception as error:  # noqa: BLE001 - reported per batch
            LOGGER.exception("Failed to update %d modified card(s)", len(updates))
            result.errors["update"] = str(error)

    def _deprecate_removed(self, diff: PlanDiff, version: int, result: ReconcileResult) -> None:
        card_ids = [card.id for card in diff.removed if isinstance(card, PlanCard)]
        if not card_ids:
            return
        try:
            result.deprecated = self._store.deprecate_cards(card_ids, version)
        except Exception as error:  # noqa: BLE001 - reported per batch
            LOGGER.exception("Failed to deprecate %d removed card(s)", len(card_ids))
            result.errors["deprecate"] = str(error)

    # Helpers --------------------------------------------------------------------------
    def _build_card(
        self,
        session_id: str,
        submission: PlanSubmission,
        card: Mapping[str, Any],
        digest: str,
        version: int,
        source: CardSource,
    ) -> PlanCard:
        now = self._clock()
        return PlanCard(
            id=uuid4().hex,
            session_id=session_id,
            plan_key=submission.plan_key,
            title=pick_alias(card, TITLE_ALIASES) or self._settings.default_title,
            description=pick_alias(card, DESCRIPTION_ALIASES),
            assignee=pick_alias(card, ASSIGNEE_ALIASES) or self._settings.default_assignee,
            due_at=resolve_due_date(
                pick_alias(card, DUE_ALIASES),
                now=now,
                fallback_days=self._settings.fallback_due_days,
            ),
            status=CardStatus.TODO,
            plan_hash=digest,
            plan_version=version,
            source=source,
            created_at=now,
            updated_at=now,
        )

    def _record(self, session_id: str, submission: PlanSubmission, result: ReconcileResult) -> None:
        payload = result.as_dict()
        payload["plan_key"] = submission.plan_key
        try:
            self._store.append_event(
                TimelineEvent(
                    id=uuid4().hex,
                    session_id=session_id,
                    kind="board.reconciled",
                    payload=payload,
                )
            )
        except Exception:  # noqa: BLE001 - timeline is best-effort
            LOGGER.exception("Failed to record reconciliation of plan %s", result.plan_hash)


__all__ = ["BoardReconciler", "BoardSettings", "ReconcileResult"]
