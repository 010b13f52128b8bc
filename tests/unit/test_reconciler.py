from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from journeyboard.board.canonical import djb2_hash
from journeyboard.board.reconciler import BoardReconciler, BoardSettings
from journeyboard.errors import NotFoundError
from journeyboard.memory.schema import CardSource, CardStatus
from journeyboard.memory.store import MemoryStore

NOW = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
SESSION = "sess-1"


def _plan(*cards):
    return {"type": "5w2h", "area": "vendas", "cards": list(cards)}


@pytest.fixture()
def reconciler(store: MemoryStore) -> BoardReconciler:
    return BoardReconciler(store, clock=lambda: NOW)


def test_first_generation_materialises_every_card(store: MemoryStore, reconciler: BoardReconciler) -> None:
    result = reconciler.reconcile(
        SESSION,
        _plan(
            {"title": "Ligar para leads", "due": "+1w"},
            {"titulo": "", "quem": "Carla", "quando": "sexta"},
        ),
    )

    assert (result.created, result.updated, result.deprecated) == (2, 0, 0)
    assert result.plan_version == 1
    assert result.ok

    cards = store.list_cards(SESSION)
    assert [card.title for card in cards] == ["Ligar para leads", "Ação"]
    first, second = cards
    assert first.assignee == "Time"
    assert first.due_at == NOW + timedelta(weeks=1)
    assert first.source is CardSource.ORIGINAL
    assert first.status is CardStatus.TODO
    assert first.plan_hash == result.plan_hash
    assert second.assignee == "Carla"
    assert second.due_at == NOW + timedelta(days=7)


def test_identical_plan_is_idempotent(store: MemoryStore, reconciler: BoardReconciler) -> None:
    plan = _plan({"title": "Ligar para leads", "description": "Top 20"})
    first = reconciler.reconcile(SESSION, plan)
    second = reconciler.reconcile(SESSION, plan)

    assert second.plan_hash == first.plan_hash
    assert (second.created, second.updated, second.deprecated) == (0, 0, 0)
    assert second.unchanged == 1
    assert second.plan_version == 1
    assert store.count_cards(SESSION) == 1
    assert len(store.list_events(SESSION, kind="board.reconciled")) == 1


def test_rename_deprecates_old_card_and_bumps_version(store: MemoryStore, reconciler: BoardReconciler) -> None:
    first = reconciler.reconcile(SESSION, _plan({"title": "Ligar para leads"}))
    assert (first.created, first.updated, first.plan_version) == (1, 0, 1)

    second = reconciler.reconcile(SESSION, _plan({"title": "Ligar para leads frios"}))
    assert (second.created, second.updated, second.deprecated) == (1, 0, 1)
    assert second.plan_version == 2
    assert second.plan_hash != first.plan_hash

    everything = store.list_cards(SESSION, include_deprecated=True)
    assert len(everything) == 2
    old = next(card for card in everything if card.title == "Ligar para leads")
    new = next(card for card in everything if card.title == "Ligar para leads frios")
    assert old.deprecated and old.deprecated_version == 2
    assert new.source is CardSource.INCREMENTAL
    assert new.plan_version == 2
    assert [card.title for card in store.list_cards(SESSION)] == ["Ligar para leads frios"]


def test_description_change_updates_in_place(store: MemoryStore, reconciler: BoardReconciler) -> None:
    reconciler.reconcile(SESSION, _plan({"title": "Ligar", "description": "Top 20"}))
    card_id = store.list_cards(SESSION)[0].id
    store.update_card_status(card_id, CardStatus.DOING)

    result = reconciler.reconcile(SESSION, _plan({"title": "Ligar", "descricao": "Top 50"}))

    assert (result.created, result.updated, result.deprecated) == (0, 1, 0)
    card = store.get_card(card_id)
    assert card is not None
    assert card.description == "Top 50"
    assert card.plan_version == 2
    assert card.status is CardStatus.DOING


def test_versions_increase_by_one_and_cards_are_never_deleted(
    store: MemoryStore, reconciler: BoardReconciler
) -> None:
    generations = [
        _plan({"title": "A"}, {"title": "B"}),
        _plan({"title": "A"}, {"title": "C"}),
        _plan({"title": "D"}),
        _plan({"title": "D", "description": "novo"}),
    ]
    versions = []
    counts = []
    for plan in generations:
        versions.append(reconciler.reconcile(SESSION, plan).plan_version)
        counts.append(store.count_cards(SESSION))

    assert versions == [1, 2, 3, 4]
    assert counts == sorted(counts)
    assert counts[-1] == 4
    live = store.list_cards(SESSION)
    assert [card.title for card in live] == ["D"]


def test_plans_with_other_area_form_a_separate_lineage(store: MemoryStore, reconciler: BoardReconciler) -> None:
    reconciler.reconcile(SESSION, _plan({"title": "A"}))
    other = reconciler.reconcile(SESSION, {"type": "5w2h", "area": "marketing", "cards": [{"title": "B"}]})

    assert other.plan_version == 1
    assert other.deprecated == 0
    assert store.count_cards(SESSION) == 2


def test_empty_plan_is_a_no_op(store: MemoryStore, reconciler: BoardReconciler) -> None:
    result = reconciler.reconcile(SESSION, _plan())
    assert result.created == 0
    assert result.ok
    assert store.count_cards(SESSION) == 0
    assert store.list_events(SESSION) == []


def test_failing_batch_does_not_block_the_others(
    store: MemoryStore, reconciler: BoardReconciler, monkeypatch: pytest.MonkeyPatch
) -> None:
    reconciler.reconcile(SESSION, _plan({"title": "A", "description": "x"}, {"title": "B"}))

    def boom(*_args, **_kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(store, "deprecate_cards", boom)
    result = reconciler.reconcile(SESSION, _plan({"title": "A", "description": "y"}, {"title": "C"}))

    assert result.errors == {"deprecate": "disk full"}
    assert not result.ok
    assert result.created == 1
    assert result.updated == 1
    assert result.deprecated == 0
    titles = sorted(card.title for card in store.list_cards(SESSION))
    assert titles == ["A", "B", "C"]


def test_default_hash_is_djb2_and_blake2b64_can_be_selected(store: MemoryStore) -> None:
    default = BoardReconciler(store, clock=lambda: NOW).reconcile(SESSION, _plan({"title": "A"}))
    assert default.plan_hash == djb2_hash("5w2h::vendas::a")

    reconciler = BoardReconciler(store, settings=BoardSettings(hash_algorithm="blake2b64"), clock=lambda: NOW)
    result = reconciler.reconcile("sess-2", _plan({"title": "A"}))
    assert result.plan_hash.startswith("h")
    assert len(result.plan_hash) == 17


def test_settings_from_config_fall_back_to_defaults() -> None:
    settings = BoardSettings.from_config({"board": {"default_assignee": "Equipe"}})
    assert settings.default_assignee == "Equipe"
    assert settings.hash_algorithm == "djb2"
    assert settings.fallback_due_days == 7


def test_move_card_changes_status_only(store: MemoryStore, reconciler: BoardReconciler) -> None:
    reconciler.reconcile(SESSION, _plan({"title": "A"}))
    card = store.list_cards(SESSION)[0]

    moved = reconciler.move_card(card.id, "Done")

    assert moved.status is CardStatus.DONE
    assert moved.plan_version == card.plan_version
    assert not moved.deprecated
    with pytest.raises(NotFoundError):
        reconciler.move_card("missing", CardStatus.DOING)
    with pytest.raises(ValueError):
        reconciler.move_card(card.id, "archived")


def test_version_counts_deprecated_generations(store: MemoryStore, reconciler: BoardReconciler) -> None:
    reconciler.reconcile(SESSION, _plan({"title": "A"}, {"title": "B"}))
    assert reconciler.reconcile(SESSION, _plan({"title": "A"})).plan_version == 2

    third = reconciler.reconcile(SESSION, _plan({"title": "A"}, {"title": "C"}))

    assert third.plan_version == 3
    assert third.created == 1


def test_blank_title_cards_are_idempotent(store: MemoryStore, reconciler: BoardReconciler) -> None:
    plan = _plan({"title": "A"}, {"titulo": "", "quem": "Carla"})
    first = reconciler.reconcile(SESSION, plan)
    second = reconciler.reconcile(SESSION, plan)

    assert first.created == 2
    assert second.writes == 0
    assert second.unchanged == 2
    assert second.plan_version == 1
    assert store.count_cards(SESSION) == 2


def test_duplicate_titles_do_not_churn_versions(store: MemoryStore, reconciler: BoardReconciler) -> None:
    reconciler.reconcile(SESSION, _plan({"title": "A", "description": "x"}))
    plan = _plan({"title": "A", "description": "x"}, {"title": "A", "description": "y"})

    results = [reconciler.reconcile(SESSION, plan) for _ in range(3)]

    assert [result.writes for result in results] == [0, 0, 0]
    assert {result.plan_version for result in results} == {1}
    card = store.list_cards(SESSION)[0]
    assert card.description == "x"
